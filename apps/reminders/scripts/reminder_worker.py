"""Reminder delivery worker.

Runs in a loop (or once with --once) to send due WhatsApp reminders and
surveys for every barbershop, or for a single one with --barbershop-id.

    python -m apps.reminders.scripts.reminder_worker --interval 60
"""
from __future__ import annotations
import sys
import time
import argparse
from typing import Any, Dict

from flask import current_app

from apps.reminders.app import create_app
from apps.reminders.config import get_config
from apps.reminders import db
from apps.reminders.utils.errors import TenantNotFound
from apps.reminders.utils.reminder_delivery import process_queue_for_barbershop, run_for_all_barbershops


def run_once(barbershop_id: str | None = None) -> Dict[str, Any]:
    """One pass over the queue. Returns the run summary."""
    if barbershop_id:
        return process_queue_for_barbershop(barbershop_id)
    return run_for_all_barbershops()


def run_loop(interval: int, barbershop_id: str | None = None):
    """Run worker continuously."""
    while True:
        try:
            summary = run_once(barbershop_id)
            current_app.logger.info(
                "Reminder worker pass: %s processed, %s skipped",
                summary.get('processed', 0),
                summary.get('skipped', 0),
            )
        except Exception:
            # Keep running even if a pass fails
            db.session.rollback()
            current_app.logger.exception("Reminder worker pass failed")
        time.sleep(interval)


def main() -> int:
    parser = argparse.ArgumentParser(description="Reminder delivery worker")
    parser.add_argument('--once', action='store_true', help='Run a single pass then exit')
    parser.add_argument('--interval', type=int, default=None,
                        help='Seconds to wait between passes (default: REMINDER_POLL_INTERVAL_SECONDS)')
    parser.add_argument('--barbershop-id', default=None, help='Only process this barbershop')
    args = parser.parse_args()

    app = create_app(get_config())
    with app.app_context():
        if args.once:
            try:
                summary = run_once(args.barbershop_id)
            except TenantNotFound as e:
                app.logger.error("Reminder worker: %s", e)
                return 1
            app.logger.info(
                "Reminder worker pass: %s processed, %s skipped",
                summary.get('processed', 0),
                summary.get('skipped', 0),
            )
            return 0
        interval = args.interval or int(app.config.get('REMINDER_POLL_INTERVAL_SECONDS', 300))
        run_loop(interval=interval, barbershop_id=args.barbershop_id)
    return 0


if __name__ == '__main__':
    sys.exit(main())
