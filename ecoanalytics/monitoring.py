# ecoanalytics/monitoring.py
"""
Centralized monitoring: Prometheus metrics, structured JSON logging, optional Sentry.

Env vars:
- PROMETHEUS_ENABLED (default: true)
- SENTRY_DSN (optional)
- LOG_AS_JSON (default: true)
- LOG_LEVEL (default: INFO)
- ENVIRONMENT (default: development)
"""

import os
import logging
import time
from typing import Tuple

import sentry_sdk
from pythonjsonlogger import jsonlogger
from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)

# --- ENV flags
PROMETHEUS_ENABLED = os.getenv("PROMETHEUS_ENABLED", "true").lower() in ("1", "true", "yes")
SENTRY_DSN = os.getenv("SENTRY_DSN", None)
LOG_AS_JSON = os.getenv("LOG_AS_JSON", "true").lower() in ("1", "true", "yes")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# --- Logger setup
def setup_logger(name: str = "ecoanalytics", level: int = None) -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO")) if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if LOG_AS_JSON:
            fmt = jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s"
            )
        else:
            fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


logger = setup_logger()

# --- Sentry (optional)
if SENTRY_DSN:
    sentry_sdk.init(dsn=SENTRY_DSN, environment=ENVIRONMENT)
    logger.info("Sentry initialized")


# --- Prometheus metrics
REQUEST_COUNT = Counter(
    "ecoanalytics_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "ecoanalytics_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
)

PREDICTION_COUNTER = Counter(
    "ecoanalytics_predictions_total",
    "Single predictions served",
    ["model_type", "outcome"],
)

BATCH_JOBS_COUNTER = Counter(
    "ecoanalytics_batch_jobs_total",
    "Batch jobs reaching a terminal state",
    ["model_type", "status"],
)

BATCH_ROWS_COUNTER = Counter(
    "ecoanalytics_batch_rows_total",
    "Batch rows processed",
    ["model_type", "status"],
)

BATCH_JOB_LATENCY = Histogram(
    "ecoanalytics_batch_job_latency_seconds",
    "Wall time of a batch job",
    ["model_type"],
)

TRAINING_COUNTER = Counter(
    "ecoanalytics_training_runs_total",
    "Simulated training runs",
    ["model_type", "outcome"],
)

PENDING_TRAINING = Gauge(
    "ecoanalytics_pending_training_tasks",
    "Training tasks scheduled but not yet fired",
)


# --- Helper wrappers (never crash the app)
def observe_request(start_ts: float, endpoint: str, method: str, status: str):
    try:
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_ts)
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
    except Exception:
        pass


def inc_prediction(model_type: str, outcome: str):
    try:
        PREDICTION_COUNTER.labels(model_type=model_type, outcome=outcome).inc()
    except Exception:
        pass


def observe_batch_job(start_ts: float, model_type: str, status: str):
    try:
        BATCH_JOB_LATENCY.labels(model_type=model_type).observe(time.time() - start_ts)
        BATCH_JOBS_COUNTER.labels(model_type=model_type, status=status).inc()
    except Exception:
        pass


def inc_batch_row(model_type: str, status: str):
    try:
        BATCH_ROWS_COUNTER.labels(model_type=model_type, status=status).inc()
    except Exception:
        pass


def inc_training(model_type: str, outcome: str):
    try:
        TRAINING_COUNTER.labels(model_type=model_type, outcome=outcome).inc()
    except Exception:
        pass


def set_pending_training(n: int):
    try:
        PENDING_TRAINING.set(n)
    except Exception:
        pass


def prometheus_metrics_response() -> Tuple[bytes, str]:
    """Return (body_bytes, content_type) for Prometheus scrape."""
    try:
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
    except Exception:
        return b"", CONTENT_TYPE_LATEST
