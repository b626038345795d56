#!/usr/bin/env python3
"""Serve the shift API with Uvicorn."""

import os

import uvicorn
from dotenv import load_dotenv

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

if __name__ == "__main__":
    load_dotenv(os.path.join(PROJECT_ROOT, ".env"))

    APP_HOST = os.getenv("APP_HOST", "127.0.0.1")
    APP_PORT = int(os.getenv("APP_PORT", "8000"))
    APP_RELOAD = os.getenv("APP_RELOAD", "True").lower() in ("true", "1", "t")
    # Uvicorn and the app share one level knob
    APP_LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

    print(f"Starting shift API on {APP_HOST}:{APP_PORT} (reload={APP_RELOAD}, log={APP_LOG_LEVEL})")

    uvicorn.run(
        "main:app",
        host=APP_HOST,
        port=APP_PORT,
        reload=APP_RELOAD,
        log_level=APP_LOG_LEVEL,
        app_dir=PROJECT_ROOT,
        reload_dirs=[PROJECT_ROOT],
    )
