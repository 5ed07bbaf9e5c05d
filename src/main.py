"""Command line entry point for the Xero paid-invoice reconciler.

Install a cron entry such as:

    * * * * * cd /srv/reconciler && python -m src.main run-due

`run-due` only checks Xero when the 30 minute schedule says a run is due.
"""

from __future__ import annotations

import argparse
import logging
import os
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def format_timestamp(epoch: Optional[int]) -> str:
    if not epoch:
        return "Not scheduled"
    return datetime.fromtimestamp(epoch).strftime("%Y-%m-%d %H:%M:%S")


def run_check(services) -> int:
    """Run the reconciliation now and push the schedule one interval out."""
    summary = services.engine.check_paid_invoices()
    next_run = services.schedule.mark_run()
    print(
        f"Checked {summary.checked} orders: {summary.completed} completed, "
        f"{summary.unpaid} unpaid, {summary.failed} failed"
    )
    print(f"Next scheduled check: {format_timestamp(next_run)}")
    return 0


def run_due(services) -> int:
    """Run the reconciliation only when the schedule says it is due."""
    if not services.schedule.is_due():
        logger.debug(
            f"Check not due until {format_timestamp(services.schedule.next_run_at())}"
        )
        return 0
    return run_check(services)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Complete WooCommerce orders whose Xero invoices are paid"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("check", help="Check Xero for paid invoices now")
    subparsers.add_parser("run-due", help="Check Xero if the 30 minute schedule is due (for cron)")
    subparsers.add_parser("schedule", help="Show the next scheduled check")
    subparsers.add_parser("refresh", help="Refresh the Xero access token")
    subparsers.add_parser("init-db", help="Initialize database tables and exit")

    process = subparsers.add_parser("process-invoice", help="Complete the order for a paid invoice number")
    process.add_argument("invoice_number", help="Invoice number, e.g. WebSales158270")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "init-db":
        from src.xero.database import init_db

        if not init_db():
            print("ERROR: DATABASE_URL not set or database unavailable.")
            return 1
        print("Database initialized: xero_credentials, xero_activity_log tables ready")
        return 0

    from src.services import get_services

    services = get_services()

    if args.command == "check":
        return run_check(services)

    if args.command == "run-due":
        return run_due(services)

    if args.command == "schedule":
        print(f"Next scheduled check: {format_timestamp(services.schedule.ensure_scheduled())}")
        return 0

    if args.command == "refresh":
        result = services.token_manager.refresh_access_token()
        if not result.success:
            print(f"ERROR: {result.message}")
            return 1
        status = services.token_manager.get_token_status()
        print(f"Token refreshed successfully! Expires in {status['expires_in_minutes']} minutes")
        return 0

    if args.command == "process-invoice":
        result = services.processor.process_paid_invoice(args.invoice_number)
        if not result.success:
            print(f"ERROR: {result.message}")
            return 1
        print(f"Order {result.value.id} is completed")
        return 0

    return 1


if __name__ == "__main__":
    exit(main())
