# ecoanalytics/storage.py
"""
Job/status store with two interchangeable backends.

- MemStorage: process-local dicts guarded by a lock (dev/tests).
- DatabaseStorage: SQLAlchemy-backed, see ecoanalytics.db / ecoanalytics.models.

Both expose the same methods and return JSON-ready dicts with camelCase keys
and ISO-8601 UTC timestamps ("...Z"). Select one with create_storage(kind);
the app reads STORAGE_BACKEND (database|memory) once at import.

Model-status upserts are read-then-write with no transaction spanning both
steps; concurrent trainings of the same model type can race.
"""

import copy
import datetime
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from ecoanalytics import db as dbmod
from ecoanalytics import models
from ecoanalytics.models import utcnow
from ecoanalytics.schemas import MODEL_TYPES

DEFAULT_VERSION = "1.0"

JOB_QUEUED = "queued"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_TERMINAL = (JOB_COMPLETED, JOB_FAILED)

STATUS_NOT_TRAINED = "not_trained"
STATUS_TRAINING = "training"
STATUS_TRAINED = "trained"
STATUS_ERROR = "error"

_JOB_UPDATABLE = {"status", "processed_rows", "results", "error_message", "completed_at"}


def _iso(ts: Optional[datetime.datetime]) -> Optional[str]:
    return ts.isoformat() + "Z" if ts is not None else None


def _prediction_to_dict(p: models.ModelPrediction) -> Dict[str, Any]:
    return {
        "id": p.id,
        "modelType": p.model_type,
        "inputData": copy.deepcopy(p.input_data),
        "prediction": copy.deepcopy(p.prediction),
        "confidence": p.confidence,
        "createdAt": _iso(p.created_at),
    }


def _job_to_dict(j: models.BatchJob) -> Dict[str, Any]:
    return {
        "id": j.id,
        "filename": j.filename,
        "modelType": j.model_type,
        "status": j.status,
        "totalRows": j.total_rows,
        "processedRows": j.processed_rows,
        "results": copy.deepcopy(j.results),
        "errorMessage": j.error_message,
        "createdAt": _iso(j.created_at),
        "completedAt": _iso(j.completed_at),
    }


def _status_to_dict(s: models.ModelStatus) -> Dict[str, Any]:
    return {
        "id": s.id,
        "modelType": s.model_type,
        "status": s.status,
        "accuracy": s.accuracy,
        "lastTrained": _iso(s.last_trained),
        "version": s.version,
        "updatedAt": _iso(s.updated_at),
    }


def _check_job_fields(fields: Dict[str, Any]):
    unknown = set(fields) - _JOB_UPDATABLE
    if unknown:
        raise ValueError(f"Cannot update batch job fields: {sorted(unknown)}")


class MemStorage:
    """In-memory store. ORM classes are used as plain (never persisted) records."""

    def __init__(self):
        self._lock = threading.Lock()
        self._predictions: Dict[int, models.ModelPrediction] = {}
        self._jobs: Dict[int, models.BatchJob] = {}
        self._statuses: Dict[str, models.ModelStatus] = {}
        self._next_ids = {"prediction": 1, "job": 1, "status": 1}

    def _next_id(self, table: str) -> int:
        nid = self._next_ids[table]
        self._next_ids[table] = nid + 1
        return nid

    # --- predictions
    def create_model_prediction(self, model_type: str, input_data: Dict[str, Any],
                                prediction: Dict[str, Any], confidence: Optional[float]) -> Dict[str, Any]:
        with self._lock:
            rec = models.ModelPrediction(
                id=self._next_id("prediction"),
                model_type=model_type,
                input_data=copy.deepcopy(input_data),
                prediction=copy.deepcopy(prediction),
                confidence=confidence,
                created_at=utcnow(),
            )
            self._predictions[rec.id] = rec
            return _prediction_to_dict(rec)

    def get_model_predictions(self, model_type: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            recs = [p for p in self._predictions.values() if not model_type or p.model_type == model_type]
            recs.sort(key=lambda p: (p.created_at, p.id), reverse=True)
            return [_prediction_to_dict(p) for p in recs]

    # --- batch jobs
    def create_batch_job(self, filename: str, model_type: str, total_rows: int) -> Dict[str, Any]:
        with self._lock:
            job = models.BatchJob(
                id=self._next_id("job"),
                filename=filename,
                model_type=model_type,
                status=JOB_QUEUED,
                total_rows=total_rows,
                processed_rows=0,
                results=None,
                error_message=None,
                created_at=utcnow(),
                completed_at=None,
            )
            self._jobs[job.id] = job
            return _job_to_dict(job)

    def get_batch_job(self, job_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            job = self._jobs.get(job_id)
            return _job_to_dict(job) if job else None

    def update_batch_job(self, job_id: int, **fields) -> Optional[Dict[str, Any]]:
        _check_job_fields(fields)
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return None
            for key, value in fields.items():
                setattr(job, key, copy.deepcopy(value))
            return _job_to_dict(job)

    def get_batch_jobs(self) -> List[Dict[str, Any]]:
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: (j.created_at, j.id), reverse=True)
            return [_job_to_dict(j) for j in jobs]

    # --- model status
    def _ensure_seeded(self):
        for model_type in MODEL_TYPES:
            if model_type not in self._statuses:
                self._statuses[model_type] = models.ModelStatus(
                    id=self._next_id("status"),
                    model_type=model_type,
                    status=STATUS_NOT_TRAINED,
                    accuracy=None,
                    last_trained=None,
                    version=DEFAULT_VERSION,
                    updated_at=utcnow(),
                )

    def get_model_status(self, model_type: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_seeded()
            s = self._statuses.get(model_type)
            return _status_to_dict(s) if s else None

    def get_all_model_statuses(self) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_seeded()
            return [_status_to_dict(s) for s in sorted(self._statuses.values(), key=lambda s: s.id)]

    def upsert_model_status(self, model_type: str, status: str, accuracy: Optional[float] = None,
                            last_trained: Optional[datetime.datetime] = None,
                            version: str = DEFAULT_VERSION) -> Dict[str, Any]:
        with self._lock:
            self._ensure_seeded()
            existing = self._statuses.get(model_type)
            rec = models.ModelStatus(
                id=existing.id if existing else self._next_id("status"),
                model_type=model_type,
                status=status,
                accuracy=accuracy,
                last_trained=last_trained,
                version=version,
                updated_at=utcnow(),
            )
            self._statuses[model_type] = rec
            return _status_to_dict(rec)


@contextmanager
def _session_scope():
    db = dbmod.SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


class DatabaseStorage:
    """SQLAlchemy-backed store. Errors propagate to the caller after rollback."""

    # --- predictions
    def create_model_prediction(self, model_type: str, input_data: Dict[str, Any],
                                prediction: Dict[str, Any], confidence: Optional[float]) -> Dict[str, Any]:
        with _session_scope() as db:
            rec = models.ModelPrediction(
                model_type=model_type,
                input_data=input_data,
                prediction=prediction,
                confidence=confidence,
            )
            db.add(rec)
            db.flush()
            return _prediction_to_dict(rec)

    def get_model_predictions(self, model_type: Optional[str] = None) -> List[Dict[str, Any]]:
        with _session_scope() as db:
            q = db.query(models.ModelPrediction)
            if model_type:
                q = q.filter(models.ModelPrediction.model_type == model_type)
            q = q.order_by(models.ModelPrediction.created_at.desc(), models.ModelPrediction.id.desc())
            return [_prediction_to_dict(p) for p in q.all()]

    # --- batch jobs
    def create_batch_job(self, filename: str, model_type: str, total_rows: int) -> Dict[str, Any]:
        with _session_scope() as db:
            job = models.BatchJob(
                filename=filename,
                model_type=model_type,
                status=JOB_QUEUED,
                total_rows=total_rows,
                processed_rows=0,
            )
            db.add(job)
            db.flush()
            return _job_to_dict(job)

    def get_batch_job(self, job_id: int) -> Optional[Dict[str, Any]]:
        with _session_scope() as db:
            job = db.get(models.BatchJob, job_id)
            return _job_to_dict(job) if job else None

    def update_batch_job(self, job_id: int, **fields) -> Optional[Dict[str, Any]]:
        _check_job_fields(fields)
        with _session_scope() as db:
            job = db.get(models.BatchJob, job_id)
            if not job:
                return None
            for key, value in fields.items():
                setattr(job, key, value)
            db.flush()
            return _job_to_dict(job)

    def get_batch_jobs(self) -> List[Dict[str, Any]]:
        with _session_scope() as db:
            q = db.query(models.BatchJob).order_by(models.BatchJob.created_at.desc(), models.BatchJob.id.desc())
            return [_job_to_dict(j) for j in q.all()]

    # --- model status
    def _ensure_seeded(self, db):
        existing = {s.model_type for s in db.query(models.ModelStatus.model_type).all()}
        for model_type in MODEL_TYPES:
            if model_type not in existing:
                db.add(models.ModelStatus(
                    model_type=model_type,
                    status=STATUS_NOT_TRAINED,
                    version=DEFAULT_VERSION,
                ))
        db.flush()

    def get_model_status(self, model_type: str) -> Optional[Dict[str, Any]]:
        with _session_scope() as db:
            self._ensure_seeded(db)
            s = db.query(models.ModelStatus).filter(models.ModelStatus.model_type == model_type).first()
            return _status_to_dict(s) if s else None

    def get_all_model_statuses(self) -> List[Dict[str, Any]]:
        with _session_scope() as db:
            self._ensure_seeded(db)
            return [_status_to_dict(s) for s in db.query(models.ModelStatus).order_by(models.ModelStatus.id).all()]

    def upsert_model_status(self, model_type: str, status: str, accuracy: Optional[float] = None,
                            last_trained: Optional[datetime.datetime] = None,
                            version: str = DEFAULT_VERSION) -> Dict[str, Any]:
        with _session_scope() as db:
            self._ensure_seeded(db)
            s = db.query(models.ModelStatus).filter(models.ModelStatus.model_type == model_type).first()
            if s is None:
                s = models.ModelStatus(model_type=model_type)
                db.add(s)
            s.status = status
            s.accuracy = accuracy
            s.last_trained = last_trained
            s.version = version
            s.updated_at = utcnow()
            db.flush()
            return _status_to_dict(s)


def create_storage(kind: str = "database"):
    """Build the store selected by kind ("database" or "memory")."""
    kind = (kind or "database").lower()
    if kind == "memory":
        return MemStorage()
    if kind == "database":
        dbmod.init_db()
        return DatabaseStorage()
    raise ValueError(f"Unknown storage backend: {kind}")
