#!/usr/bin/env python3
"""
Quick runner for Courtcase Service
==================================

Usage:
    python -m courtcase.run

HOST / PORT override the bind address; RELOAD=false disables auto-reload.
"""

import os

import uvicorn

from .config import get_settings

if __name__ == "__main__":
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    print(f"Starting Courtcase Service v{get_settings().service_version}...")
    print(f"API docs: http://localhost:{port}/docs")
    print(f"Health:   http://localhost:{port}/health")
    print()

    uvicorn.run(
        "courtcase.api:app",
        host=host,
        port=port,
        log_level=get_settings().log_level.lower(),
        reload=os.environ.get("RELOAD", "true").lower() == "true",
    )
