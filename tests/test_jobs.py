# tests/test_jobs.py
"""
Batch job lifecycle and the training scheduler.
Training tests use sub-second delays and poll for completion.
"""
import datetime
import threading
import time

import numpy as np
import pytest

from ecoanalytics import db as dbmod
from ecoanalytics import jobs
from ecoanalytics import storage
import ecoanalytics.processors.data_processor as data_processor


@pytest.fixture
def store():
    return storage.MemStorage()


def wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


# ---------------------------------------------------------------------------
# run_batch_job
# ---------------------------------------------------------------------------
def test_batch_job_completes_with_all_rows(store):
    rows = [{"Sentiment": "Positive"}, {"Environmental Score": 10}, {}]
    job = store.create_batch_job(filename="esg.csv", model_type="esg", total_rows=len(rows))

    jobs.run_batch_job(store, job["id"], "esg", rows)

    done = store.get_batch_job(job["id"])
    assert done["status"] == "completed"
    assert done["processedRows"] == 3
    assert len(done["results"]) == 3
    assert all(r["status"] == "success" for r in done["results"])
    assert done["completedAt"] is not None
    assert done["errorMessage"] is None


def test_batch_job_row_errors_do_not_fail_job(store):
    rows = [{"electricity": -1}, {"electricity": 1}]
    job = store.create_batch_job(filename="c.csv", model_type="carbon", total_rows=2)
    jobs.run_batch_job(store, job["id"], "carbon", rows)

    done = store.get_batch_job(job["id"])
    assert done["status"] == "completed"
    assert [r["status"] for r in done["results"]] == ["error", "success"]


def test_batch_job_failure_keeps_partial_results(store, monkeypatch):
    def exploding(model_type, rows):
        yield {"input": rows[0], "prediction": {"ok": True}, "status": "success"}
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(data_processor, "iter_results", exploding)
    job = store.create_batch_job(filename="p.csv", model_type="product", total_rows=2)
    jobs.run_batch_job(store, job["id"], "product", [{}, {}])

    failed = store.get_batch_job(job["id"])
    assert failed["status"] == "failed"
    assert failed["errorMessage"] == "disk on fire"
    assert failed["processedRows"] == 1
    assert len(failed["results"]) == 1
    assert failed["completedAt"] is not None


def test_batch_job_failure_before_any_row(store, monkeypatch):
    def broken(model_type, rows):
        raise KeyError()

    monkeypatch.setattr(data_processor, "iter_results", broken)
    job = store.create_batch_job(filename="p.csv", model_type="product", total_rows=1)
    jobs.run_batch_job(store, job["id"], "product", [{}])

    failed = store.get_batch_job(job["id"])
    assert failed["status"] == "failed"
    assert failed["results"] is None
    assert failed["processedRows"] == 0
    assert failed["errorMessage"]


def test_finished_job_is_not_reprocessed(store, monkeypatch):
    job = store.create_batch_job(filename="e.csv", model_type="esg", total_rows=1)
    jobs.run_batch_job(store, job["id"], "esg", [{}])
    first = store.get_batch_job(job["id"])

    def must_not_run(model_type, rows):
        raise AssertionError("job processed twice")

    monkeypatch.setattr(data_processor, "iter_results", must_not_run)
    jobs.run_batch_job(store, job["id"], "esg", [{}, {}])
    assert store.get_batch_job(job["id"]) == first


def test_missing_job_is_ignored(store):
    jobs.run_batch_job(store, 999, "esg", [{}])
    assert store.get_batch_jobs() == []


# ---------------------------------------------------------------------------
# TrainingScheduler
# ---------------------------------------------------------------------------
def test_scheduler_runs_callback_after_delay():
    scheduler = jobs.TrainingScheduler()
    fired = threading.Event()
    scheduler.schedule("esg", fired.set, 0.05)
    assert scheduler.pending() == ["esg"]
    assert fired.wait(2.0)
    assert wait_for(lambda: scheduler.pending() == [])


def test_scheduler_cancel():
    scheduler = jobs.TrainingScheduler()
    fired = threading.Event()
    scheduler.schedule("carbon", fired.set, 0.2)
    assert scheduler.cancel("carbon") is True
    assert scheduler.cancel("carbon") is False
    assert not fired.wait(0.4)
    assert scheduler.pending() == []


def test_rescheduling_replaces_pending_task():
    scheduler = jobs.TrainingScheduler()
    calls = []
    scheduler.schedule("product", lambda: calls.append("first"), 0.1)
    scheduler.schedule("product", lambda: calls.append("second"), 0.15)
    assert scheduler.pending() == ["product"]
    assert wait_for(lambda: calls == ["second"])
    time.sleep(0.2)
    assert calls == ["second"]


def test_shutdown_cancels_everything():
    scheduler = jobs.TrainingScheduler()
    calls = []
    scheduler.schedule("esg", lambda: calls.append("esg"), 0.1)
    scheduler.schedule("carbon", lambda: calls.append("carbon"), 0.1)
    assert scheduler.pending() == ["carbon", "esg"]
    scheduler.shutdown()
    time.sleep(0.25)
    assert calls == []
    assert scheduler.pending() == []


# ---------------------------------------------------------------------------
# Training transitions
# ---------------------------------------------------------------------------
def test_start_training_then_trained(store):
    scheduler = jobs.TrainingScheduler()
    status = jobs.start_training(store, scheduler, "packaging", 0.05)
    assert status["status"] == "training"
    assert store.get_model_status("packaging")["status"] == "training"

    assert wait_for(lambda: store.get_model_status("packaging")["status"] == "trained")
    trained = store.get_model_status("packaging")
    assert 75 <= trained["accuracy"] < 95
    assert trained["lastTrained"] is not None
    # other model types untouched
    assert store.get_model_status("esg")["status"] == "not_trained"


def test_complete_training_uses_given_generator(store):
    jobs._complete_training(store, "esg", rng=np.random.default_rng(1))
    a = store.get_model_status("esg")["accuracy"]
    jobs._complete_training(store, "esg", rng=np.random.default_rng(1))
    assert store.get_model_status("esg")["accuracy"] == pytest.approx(a)


def test_training_completion_failure_sets_error(store, monkeypatch):
    real_upsert = store.upsert_model_status

    def failing_upsert(model_type, status, **kwargs):
        if status == "trained":
            raise RuntimeError("write failed")
        return real_upsert(model_type, status, **kwargs)

    monkeypatch.setattr(store, "upsert_model_status", failing_upsert)
    jobs._complete_training(store, "carbon")
    assert store.get_model_status("carbon")["status"] == "error"


def test_recover_interrupted_training(store):
    store.upsert_model_status("esg", "training")
    store.upsert_model_status("carbon", "trained", accuracy=80.0)

    assert jobs.recover_interrupted_training(store) == ["esg"]
    assert store.get_model_status("esg")["status"] == "error"
    assert store.get_model_status("carbon")["status"] == "trained"
    assert jobs.recover_interrupted_training(store) == []


def test_batch_job_is_processing_while_rows_run(store, monkeypatch):
    seen = []
    real_iter = data_processor.iter_results
    job = store.create_batch_job(filename="e.csv", model_type="esg", total_rows=2)

    def watching(model_type, rows):
        for result in real_iter(model_type, rows):
            seen.append(store.get_batch_job(job["id"])["status"])
            yield result

    monkeypatch.setattr(data_processor, "iter_results", watching)
    assert store.get_batch_job(job["id"])["status"] == "queued"
    jobs.run_batch_job(store, job["id"], "esg", [{}, {}])

    assert seen == ["processing", "processing"]
    assert store.get_batch_job(job["id"])["status"] == "completed"


def test_recovery_leaves_recent_training_rows_alone(store, monkeypatch):
    store.upsert_model_status("esg", "training")
    assert store.get_model_status("esg")["updatedAt"] is not None

    # another process may still own a row written moments ago
    assert jobs.recover_interrupted_training(store, stale_after=60) == []
    assert store.get_model_status("esg")["status"] == "training"

    later = jobs.utcnow() + datetime.timedelta(seconds=120)
    monkeypatch.setattr(jobs, "utcnow", lambda: later)
    assert jobs.recover_interrupted_training(store, stale_after=60) == ["esg"]
    assert store.get_model_status("esg")["status"] == "error"


def test_recovery_window_on_database_backend(tmp_path, monkeypatch):
    dbmod.reconfigure(f"sqlite:///{tmp_path / 'recover.db'}")
    db_store = storage.create_storage("database")
    db_store.upsert_model_status("carbon", "training")

    assert jobs.recover_interrupted_training(db_store, stale_after=60) == []
    later = jobs.utcnow() + datetime.timedelta(seconds=120)
    monkeypatch.setattr(jobs, "utcnow", lambda: later)
    assert jobs.recover_interrupted_training(db_store, stale_after=60) == ["carbon"]
    assert db_store.get_model_status("carbon")["status"] == "error"
