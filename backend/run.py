#!/usr/bin/env python3
# backend/run.py
"""
Development server runner for the booking engine.

Serves catalog and notifier from in-memory fakes unless told otherwise, so
a local run needs neither collaborator nor a Celery broker.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("USE_FAKE_INTEGRATIONS", "true")

import uvicorn  # noqa: E402

if __name__ == "__main__":
    print("Starting Parq booking engine at http://localhost:8000 (docs at /docs)")
    uvicorn.run("parq.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
