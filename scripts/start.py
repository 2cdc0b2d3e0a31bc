#!/usr/bin/env python3
"""
Production startup script.

Starts gunicorn on app.wsgi:app, replacing this process via os.execvp so
gunicorn is PID 1 and receives signals directly.

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys


def main() -> None:
    port = os.environ.get("PORT", "").strip()
    if not port:
        print("WARNING: PORT not set, using default 8080", flush=True)
        port = "8080"

    try:
        port_int = int(port)
        if port_int < 1 or port_int > 65535:
            raise ValueError("Port out of range")
    except ValueError:
        print(f"ERROR: Invalid PORT value '{port}'. Must be integer 1-65535.", flush=True)
        sys.exit(1)

    workers = os.environ.get("WEB_CONCURRENCY", "").strip() or "2"

    print(f"PORT={port} validated", flush=True)
    print("=== Starting gunicorn ===", flush=True)
    print(f"Gunicorn binding to 0.0.0.0:{port}", flush=True)
    print("Health check endpoint ready at /healthz", flush=True)

    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", workers,
            "--timeout", "60",
            "--preload",
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


if __name__ == "__main__":
    main()
