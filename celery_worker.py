#!/usr/bin/env python3
"""
Celery worker script for the marketplace promotions service.
Run this script to start the Celery worker for push delivery and the
hourly store expiration sweep.
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    from core.celery import celery_app

    # Worker with embedded beat so expiration notices run on schedule
    celery_app.start([
        "worker",
        "--beat",
        "--loglevel=info",
        f"--concurrency={os.getenv('CELERY_CONCURRENCY', '4')}",
        "--without-gossip",
        "--without-mingle",
        "--without-heartbeat",
    ])
