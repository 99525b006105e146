"""
Run a Celery worker (with embedded beat) for generation and sweep jobs.
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from matchmaker.core.celery_app import celery_app
from matchmaker.core.logging_config import setup_logging

if __name__ == "__main__":
    setup_logging()
    print("=" * 60)
    print("Matchmaker - Celery Worker")
    print("=" * 60)
    print("Starting Celery worker...")
    print("Worker runs nightly proposal generation and the expiration sweep")
    print("=" * 60)

    argv = [
        "worker",
        "--loglevel=info",
        "--concurrency=2",
        "--pool=solo" if os.name == "nt" else "--pool=prefork"  # Use solo pool on Windows
    ]
    if "--no-beat" not in sys.argv:
        argv.append("--beat")

    # Start Celery worker
    celery_app.worker_main(argv)
