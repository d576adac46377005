# ecoanalytics/jobs.py
"""
Background work: batch CSV jobs and simulated model training.

- run_batch_job: executed as a FastAPI background task after the upload
  response; the job row already exists in "queued" state.
- TrainingScheduler: one cancellable delayed task per model type.
- start_training / recover_interrupted_training: model-status transitions.

Pending training timers live in process memory only. A restart drops them,
so startup moves leftover "training" rows to "error". With the database
backend several workers (or serverless instances) share those rows; recovery
only resets rows older than the training delay plus RECOVERY_GRACE_SECONDS so
it does not clobber a run another process still owns.
"""

import datetime
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import numpy as np

# Import the module (not bare functions) so monkeypatching in tests works
import ecoanalytics.processors.data_processor as _data_processor
from ecoanalytics import monitoring
from ecoanalytics.models import utcnow
from ecoanalytics.storage import (
    JOB_PROCESSING,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_TERMINAL,
    STATUS_TRAINING,
    STATUS_TRAINED,
    STATUS_ERROR,
)

logger = monitoring.logger

_rng = np.random.default_rng()

# extra age, on top of the training delay, before a "training" row counts as abandoned
RECOVERY_GRACE_SECONDS = 30.0


# ---------------------------------------------------------------------------
# Batch jobs
# ---------------------------------------------------------------------------
def run_batch_job(store, job_id: int, model_type: str, rows: List[Dict[str, Any]]) -> None:
    """
    queued -> processing -> completed | failed.

    Row-level errors are recorded in the results and do not fail the job.
    A job-level exception marks the job failed, keeping the rows finished so far.
    """
    start = time.time()
    job = store.get_batch_job(job_id)
    if job is None:
        logger.error("Batch job not found", extra={"job_id": job_id})
        return
    if job["status"] in JOB_TERMINAL:
        logger.warning("Batch job already finished; not reprocessing",
                       extra={"job_id": job_id, "status": job["status"]})
        return

    logger.info("Starting batch job", extra={"job_id": job_id, "model_type": model_type, "rows": len(rows)})
    results: List[Dict[str, Any]] = []
    try:
        store.update_batch_job(job_id, status=JOB_PROCESSING)
        for result in _data_processor.iter_results(model_type, rows):
            results.append(result)
            monitoring.inc_batch_row(model_type, result["status"])

        store.update_batch_job(
            job_id,
            status=JOB_COMPLETED,
            processed_rows=len(results),
            results=results,
            completed_at=utcnow(),
        )
        monitoring.observe_batch_job(start, model_type, JOB_COMPLETED)
        logger.info("Batch job completed", extra={"job_id": job_id, "processed_rows": len(results)})
    except Exception as e:
        logger.exception("Batch job failed", extra={"job_id": job_id, "model_type": model_type})
        monitoring.observe_batch_job(start, model_type, JOB_FAILED)
        try:
            store.update_batch_job(
                job_id,
                status=JOB_FAILED,
                processed_rows=len(results),
                results=results or None,
                error_message=str(e) or e.__class__.__name__,
                completed_at=utcnow(),
            )
        except Exception:
            logger.exception("Could not mark batch job failed", extra={"job_id": job_id})


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------
class TrainingScheduler:
    """
    Delayed callbacks keyed by model type.

    Scheduling a model type that already has a pending task cancels the old
    one. A timer that fires after being cancelled or replaced does nothing.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._timers: Dict[str, threading.Timer] = {}

    def schedule(self, model_type: str, callback: Callable[[], None], delay: float) -> None:
        with self._lock:
            previous = self._timers.pop(model_type, None)
            if previous is not None:
                previous.cancel()
            timer = threading.Timer(delay, self._fire, args=(model_type, callback))
            timer.daemon = True
            self._timers[model_type] = timer
            monitoring.set_pending_training(len(self._timers))
        timer.start()

    def _fire(self, model_type: str, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._timers.get(model_type) is not threading.current_thread():
                return
            del self._timers[model_type]
            monitoring.set_pending_training(len(self._timers))
        callback()

    def cancel(self, model_type: str) -> bool:
        with self._lock:
            timer = self._timers.pop(model_type, None)
            monitoring.set_pending_training(len(self._timers))
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self) -> List[str]:
        with self._lock:
            return sorted(self._timers)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            monitoring.set_pending_training(0)
        for timer in timers:
            timer.cancel()


def _complete_training(store, model_type: str, rng: Optional[np.random.Generator] = None) -> None:
    rng = rng or _rng
    try:
        accuracy = 75 + float(rng.uniform(0, 20))
        store.upsert_model_status(model_type, STATUS_TRAINED, accuracy=accuracy, last_trained=utcnow())
        monitoring.inc_training(model_type, STATUS_TRAINED)
        logger.info("Training finished", extra={"model_type": model_type, "accuracy": accuracy})
    except Exception:
        logger.exception("Training completion failed", extra={"model_type": model_type})
        monitoring.inc_training(model_type, STATUS_ERROR)
        try:
            store.upsert_model_status(model_type, STATUS_ERROR)
        except Exception:
            logger.exception("Could not record training error", extra={"model_type": model_type})


def start_training(store, scheduler: TrainingScheduler, model_type: str, delay: float,
                   rng: Optional[np.random.Generator] = None) -> Dict[str, Any]:
    """Mark model_type as training now; flip it to trained after `delay` seconds."""
    status = store.upsert_model_status(model_type, STATUS_TRAINING)
    scheduler.schedule(model_type, lambda: _complete_training(store, model_type, rng), delay)
    logger.info("Training started", extra={"model_type": model_type, "delay_seconds": delay})
    return status


def _updated_before(status: Dict[str, Any], cutoff: datetime.datetime) -> bool:
    updated = status.get("updatedAt")
    if not updated:
        return True
    return datetime.datetime.fromisoformat(updated.rstrip("Z")) <= cutoff


def recover_interrupted_training(store, stale_after: float = 0.0) -> List[str]:
    """
    Move model statuses stuck in "training" (timer lost on restart) to "error".

    Only rows last written more than `stale_after` seconds ago are touched. With
    a shared database, a row another live process is still training stays put
    as long as `stale_after` exceeds the training delay. A row whose process
    died inside that window is left until a later startup or a retrain.
    """
    cutoff = utcnow() - datetime.timedelta(seconds=stale_after)
    recovered = []
    for status in store.get_all_model_statuses():
        if status["status"] == STATUS_TRAINING and _updated_before(status, cutoff):
            store.upsert_model_status(status["modelType"], STATUS_ERROR, version=status["version"] or "1.0")
            recovered.append(status["modelType"])
    if recovered:
        logger.warning("Reset interrupted training runs", extra={"model_types": recovered})
    return recovered
