# tests/conftest.py
import os

# keep the app module's import-time store in memory; tests swap in their own
os.environ.setdefault("STORAGE_BACKEND", "memory")
