#!/usr/bin/env python3
"""
Celery worker script for the storefront checkout service.
Runs the worker with an embedded beat scheduler so checkout reconciliation
happens on its configured interval.
"""

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    from core.logging import configure_logging
    from core.celery import celery_app

    configure_logging()

    celery_app.start([
        "worker",
        "--beat",
        "--loglevel=info",
        "--concurrency=4",
        "--without-gossip",
        "--without-mingle",
        "--without-heartbeat",
    ])
