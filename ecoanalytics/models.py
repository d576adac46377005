# ecoanalytics/models.py
from sqlalchemy import Column, Integer, String, DateTime, Text, Float, JSON
import datetime

from ecoanalytics.db import Base


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp (SQLite DateTime columns carry no tz)."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(150), unique=True, nullable=False)
    password = Column(Text, nullable=False)


class ModelPrediction(Base):
    __tablename__ = "model_predictions"

    id = Column(Integer, primary_key=True, index=True)
    model_type = Column(String(32), index=True, nullable=False)
    input_data = Column(JSON, nullable=False)
    prediction = Column(JSON, nullable=False)
    confidence = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class BatchJob(Base):
    __tablename__ = "batch_jobs"

    id = Column(Integer, primary_key=True, index=True)
    filename = Column(Text, nullable=False)
    model_type = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False, default="queued")
    total_rows = Column(Integer, nullable=True)
    processed_rows = Column(Integer, default=0)
    results = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)


class ModelStatus(Base):
    __tablename__ = "model_status"

    id = Column(Integer, primary_key=True, index=True)
    model_type = Column(String(32), unique=True, index=True, nullable=False)
    status = Column(String(32), nullable=False, default="not_trained")
    accuracy = Column(Float, nullable=True)
    last_trained = Column(DateTime, nullable=True)
    version = Column(String(16), default="1.0")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
