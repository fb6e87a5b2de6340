"""
main.py: server launcher and entry point.

Run this file to start the Clinic Insights API:

    python main.py

Interactive API docs are served at http://127.0.0.1:8000/docs

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("CLINIC_HOST", "127.0.0.1")
PORT = int(os.getenv("CLINIC_PORT", "8000"))


def main() -> None:
    """Start the Clinic Insights API server."""
    print("=" * 60)
    print("  Clinic Insights: client behavior profiling")
    print("=" * 60)
    print(f"  Server  : http://{HOST}:{PORT}")
    print(f"  API docs: http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    # Blocks until CTRL+C
    uvicorn.run(
        "app:app",
        host=HOST,
        port=PORT,
        reload=os.getenv("CLINIC_RELOAD", "false").lower() in {"1", "true", "yes"},
        log_level="info",
    )


if __name__ == "__main__":
    main()
