# Ensure the `backend` directory is importable so `transcript_pipeline` resolves
from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

# Add the backend directory to PYTHONPATH so imports like `from transcript_pipeline.*` work
ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT_DIR))

# Use an in-memory SQLite DB and an in-process broker during tests unless overridden
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DB_ECHO", "0")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "transcript_pipeline_test_logs"))
os.environ.setdefault("ASSEMBLYAI_API_KEY", "test-assembly-key")
os.environ.setdefault("LLM_API_KEY", "test-llm-key")
