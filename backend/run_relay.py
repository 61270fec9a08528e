#!/usr/bin/env python3
# backend/run_relay.py
"""
Development server runner for the chat relay.

Uses DATABASE_URL from the environment or backend/.env; defaults to a local
SQLite file.
"""
import os
from pathlib import Path
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

import uvicorn

if __name__ == "__main__":
    print("🌐 Access at: http://localhost:8000")
    print("📚 API Docs: http://localhost:8000/docs")

    uvicorn.run(
        "relay.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "").lower() in {"1", "true", "yes"},
        log_level="info",
        timeout_graceful_shutdown=5,  # Force shutdown after 5s instead of hanging
    )
