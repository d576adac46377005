# ecoanalytics/app.py
"""
REST API for the sustainability analytics dashboard.

Run: uvicorn ecoanalytics.app:app

Env vars:
- STORAGE_BACKEND (default: database) - "database" or "memory"
- TRAINING_DELAY_SECONDS (default: 3)
- MAX_UPLOAD_BYTES (default: 10 MiB)
- CORS_ORIGINS (default: *) - comma-separated
"""
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

# Load .env BEFORE any package imports (they read env vars at import time)
from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import FastAPI, Request, BackgroundTasks, File, Form, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, PlainTextResponse

import ecoanalytics.processors.predictors as _predictors
import ecoanalytics.processors.data_processor as _data_processor
from ecoanalytics import jobs
from ecoanalytics import monitoring
from ecoanalytics import storage as storagemod
from ecoanalytics.schemas import (
    MODEL_TYPES,
    PackagingInput,
    CarbonFootprintInput,
    ProductInput,
    ESGInput,
)

STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "database")
TRAINING_DELAY_SECONDS = float(os.getenv("TRAINING_DELAY_SECONDS", "3"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

E_VALIDATION = "E_VALIDATION"
E_NOT_FOUND = "E_NOT_FOUND"
E_INTERNAL = "E_INTERNAL"

# selected once per process
store = storagemod.create_storage(STORAGE_BACKEND)
scheduler = jobs.TrainingScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        jobs.recover_interrupted_training(
            store, stale_after=TRAINING_DELAY_SECONDS + jobs.RECOVERY_GRACE_SECONDS
        )
    except Exception:
        monitoring.logger.exception("Could not recover interrupted training runs")
    yield
    scheduler.shutdown()


app = FastAPI(title="EcoAnalytics API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ORIGINS != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "error_code": error_code, "message": message},
    )


def _internal_error(what: str) -> JSONResponse:
    monitoring.logger.exception(f"Unexpected error in {what} handler")
    return _error(500, E_INTERNAL, "Internal server error")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "status": "error",
            "error_code": E_VALIDATION,
            "message": "Invalid request",
            "details": {"errors": _jsonable_errors(exc)},
        },
    )


def _jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]


# ---------------------------------------------------------------------------
# Metrics middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        monitoring.logger.exception("Unhandled exception in request", extra={"path": request.url.path})
        raise
    finally:
        # route template keeps label cardinality bounded (/api/batch/jobs/{job_id})
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        monitoring.observe_request(start, endpoint, method, status)


# ---------------------------------------------------------------------------
# Model status / training
# ---------------------------------------------------------------------------
@app.get("/api/models/status")
def list_model_statuses():
    try:
        return JSONResponse(status_code=200, content=store.get_all_model_statuses())
    except Exception:
        return _internal_error("/api/models/status")


@app.get("/api/models/status/{model_type}")
def get_model_status(model_type: str):
    try:
        status = store.get_model_status(model_type)
    except Exception:
        return _internal_error("/api/models/status/{model_type}")
    if not status:
        return _error(404, E_NOT_FOUND, "Model not found")
    return JSONResponse(status_code=200, content=status)


@app.post("/api/models/train/{model_type}")
def train_model(model_type: str):
    """
    POST /api/models/train/{model_type}
    Sets status=training now; status=trained with a random accuracy after
    TRAINING_DELAY_SECONDS. The response does not wait for completion.
    """
    if model_type not in MODEL_TYPES:
        return _error(400, E_VALIDATION, "Invalid model type")
    try:
        jobs.start_training(store, scheduler, model_type, TRAINING_DELAY_SECONDS)
    except Exception:
        return _internal_error("/api/models/train/{model_type}")
    return JSONResponse(status_code=200, content={"message": "Training started", "modelType": model_type})


# ---------------------------------------------------------------------------
# Single predictions
# ---------------------------------------------------------------------------
def _predict_and_record(model_type: str, body) -> JSONResponse:
    try:
        prediction = _predictors.predict(model_type, body)
        record = store.create_model_prediction(
            model_type=model_type,
            input_data=body.model_dump(by_alias=True),
            prediction=prediction,
            confidence=_predictors.confidence_for(model_type, prediction),
        )
    except Exception:
        monitoring.inc_prediction(model_type, "error")
        return _internal_error(f"/api/predict/{model_type}")
    monitoring.inc_prediction(model_type, "success")
    return JSONResponse(status_code=200, content={"prediction": prediction, "id": record["id"]})


@app.post("/api/predict/packaging")
def predict_packaging(body: PackagingInput):
    return _predict_and_record("packaging", body)


@app.post("/api/predict/carbon")
def predict_carbon(body: CarbonFootprintInput):
    return _predict_and_record("carbon", body)


@app.post("/api/predict/product")
def predict_product(body: ProductInput):
    return _predict_and_record("product", body)


@app.post("/api/predict/esg")
def predict_esg(body: ESGInput):
    return _predict_and_record("esg", body)


@app.get("/api/predictions")
def list_predictions(model_type: Optional[str] = Query(None, alias="modelType")):
    try:
        return JSONResponse(status_code=200, content=store.get_model_predictions(model_type))
    except Exception:
        return _internal_error("/api/predictions")


# ---------------------------------------------------------------------------
# Batch processing
# ---------------------------------------------------------------------------
def _is_csv(file: UploadFile) -> bool:
    return file.content_type == "text/csv" or (file.filename or "").lower().endswith(".csv")


def _parse_upload(raw: bytes):
    # runs in the threadpool; large uploads must not block the event loop
    return _data_processor.parse_csv(raw.decode("utf-8-sig"))


@app.post("/api/batch/upload")
async def upload_batch(
    background_tasks: BackgroundTasks,
    file: Optional[UploadFile] = File(None),
    model_type: Optional[str] = Form(None, alias="modelType"),
):
    """
    POST /api/batch/upload (multipart: file=<csv>, modelType=<packaging|carbon|product|esg>)
    Returns { "jobId": int, "totalRows": int } once the job is queued; rows are
    processed after the response is sent. Poll GET /api/batch/jobs/{id}.
    """
    if file is None:
        return _error(400, E_VALIDATION, "No file uploaded")
    if not _is_csv(file):
        return _error(400, E_VALIDATION, "Only CSV files are allowed")
    if model_type not in MODEL_TYPES:
        return _error(400, E_VALIDATION, "Invalid model type")

    raw = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(raw) > MAX_UPLOAD_BYTES:
        return _error(400, E_VALIDATION, f"File exceeds {MAX_UPLOAD_BYTES} bytes")
    try:
        rows = await run_in_threadpool(_parse_upload, raw)
    except UnicodeDecodeError:
        return _error(400, E_VALIDATION, "CSV must be UTF-8 encoded")
    except ValueError as e:
        return _error(400, E_VALIDATION, str(e))

    try:
        job = store.create_batch_job(filename=file.filename or "upload.csv", model_type=model_type,
                                     total_rows=len(rows))
    except Exception:
        return _internal_error("/api/batch/upload")

    monitoring.logger.info("Batch job queued", extra={"job_id": job["id"], "model_type": model_type,
                                                       "total_rows": len(rows)})
    background_tasks.add_task(jobs.run_batch_job, store, job["id"], model_type, rows)
    return JSONResponse(status_code=200, content={"jobId": job["id"], "totalRows": len(rows)})


@app.get("/api/batch/jobs")
def list_batch_jobs():
    try:
        return JSONResponse(status_code=200, content=store.get_batch_jobs())
    except Exception:
        return _internal_error("/api/batch/jobs")


@app.get("/api/batch/jobs/{job_id}")
def get_batch_job(job_id: int):
    try:
        job = store.get_batch_job(job_id)
    except Exception:
        return _internal_error("/api/batch/jobs/{job_id}")
    if not job:
        return _error(404, E_NOT_FOUND, "Job not found")
    return JSONResponse(status_code=200, content=job)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    if not monitoring.PROMETHEUS_ENABLED:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = monitoring.prometheus_metrics_response()
    return Response(content=payload, media_type=content_type)
