# api/index.py
"""
Vercel Serverless Function adapter.

Vercel's Python runtime looks for a variable named `app` (ASGI) or `handler` (WSGI).
FastAPI is ASGI, so we just re-export it as `app`.
"""
import sys
import os

# Ensure project root is on the Python path so `ecoanalytics.*` imports resolve.
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Force env vars for serverless context
os.environ.setdefault("PROMETHEUS_ENABLED", "false")

# Use /tmp for SQLite on Vercel (filesystem is read-only except /tmp)
if not os.environ.get("DATABASE_URL"):
    os.environ["DATABASE_URL"] = "sqlite:////tmp/ecoanalytics.db"

# Training timers do not survive between invocations; keep the window short
os.environ.setdefault("TRAINING_DELAY_SECONDS", "1")

from dotenv import load_dotenv
load_dotenv(os.path.join(ROOT, ".env"), override=True)

from ecoanalytics.app import app  # noqa: F401,E402 - Vercel uses this
