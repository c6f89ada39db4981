#!/usr/bin/env python3
"""
Run one scheduled job once, for cron or container-job invocation.

Usage (from backend/):
    python -m scripts.run_job refresh_tokens
    python -m scripts.run_job publish
    python -m scripts.run_job --list
"""

import argparse
import logging
import sys

from app.core.logging import setup_logging
from app.tasks.health_check import channel_health_check_job, cleanup_notifications_job
from app.tasks.publish_tasks import publish_due_content_job
from app.tasks.token_tasks import cleanup_expired_states_job, refresh_expiring_tokens_job

JOBS = {
    "refresh_tokens": refresh_expiring_tokens_job,
    "cleanup_states": cleanup_expired_states_job,
    "publish": publish_due_content_job,
    "health_check": channel_health_check_job,
    "cleanup_notifications": cleanup_notifications_job,
}

logger = logging.getLogger("scheduler")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run a scheduled job once")
    parser.add_argument("job", nargs="?", choices=sorted(JOBS), help="Job to run")
    parser.add_argument("--list", action="store_true", help="List available jobs")
    args = parser.parse_args(argv)

    if args.list or not args.job:
        for name in sorted(JOBS):
            print(name)
        return 0

    setup_logging()
    try:
        JOBS[args.job]()
    except Exception:
        # Already logged with traceback by the job wrapper
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
