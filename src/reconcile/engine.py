"""Scheduled reconciliation of pending orders against Xero invoice status."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable

from src.orders.invoice_number import ensure_invoice_number
from src.orders.store import (
    STATUS_ON_HOLD,
    STATUS_PENDING,
    Order,
    OrderStore,
    OrderStoreError,
)
from src.reconcile.activity_log import ActivityLog
from src.reconcile.completion import InvoiceCompletionProcessor
from src.xero.invoices import STATUS_PAID, InvoiceStatusClient

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 90
AWAITING_PAYMENT_STATUSES = (STATUS_PENDING, STATUS_ON_HOLD)


@dataclass
class ReconciliationSummary:
    """Counts from one reconciliation run."""

    checked: int = 0
    completed: int = 0
    unpaid: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class ReconciliationEngine:
    """Polls Xero for the invoices of orders still awaiting payment."""

    def __init__(
        self,
        order_store: OrderStore,
        status_client: InvoiceStatusClient,
        processor: InvoiceCompletionProcessor,
        activity_log: ActivityLog,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.order_store = order_store
        self.status_client = status_client
        self.processor = processor
        self.activity_log = activity_log
        self.now = now

    def check_paid_invoices(self) -> ReconciliationSummary:
        """
        Check every pending/on-hold order from the last 90 days that has a Xero invoice.

        A failure on one order is logged and the run moves on to the next.
        """
        summary = ReconciliationSummary()
        self.activity_log.record(
            "Starting scheduled Xero check", True,
            details=f"Checking invoices from last {LOOKBACK_DAYS} days",
        )

        created_after = self.now() - timedelta(days=LOOKBACK_DAYS)
        try:
            orders = self.order_store.find_awaiting_payment(AWAITING_PAYMENT_STATUSES, created_after)
        except OrderStoreError as e:
            self.activity_log.record("Failed to load pending orders", False, details=str(e))
            return summary

        if not orders:
            self.activity_log.record("No pending orders found", True, details="No orders to check")
            return summary

        self.activity_log.record("Found orders to check", True, details=f"Checking {len(orders)} orders")

        for order in orders:
            summary.checked += 1
            try:
                outcome = self._check_order(order)
            except Exception as e:
                logger.exception(f"Error checking order {order.id}")
                self.activity_log.record("Error checking invoice", False, order_id=order.id, details=str(e))
                outcome = "failed"
            setattr(summary, outcome, getattr(summary, outcome) + 1)

        self.activity_log.record(
            "Completed scheduled Xero check", True,
            details=f"Finished checking {len(orders)} orders",
        )
        return summary

    def _check_order(self, order: Order) -> str:
        """Returns the summary field this order counts towards."""
        invoice_id = order.xero_invoice_id
        if not invoice_id:
            return "unpaid"

        status = self.status_client.get_invoice_status(invoice_id)
        if not status.success:
            self.activity_log.record(
                "Error checking invoice", False, order_id=order.id, details=status.message,
            )
            return "failed"

        if status.value != STATUS_PAID:
            return "unpaid"

        invoice_number = ensure_invoice_number(order, self.order_store)
        self.processor.complete_order(order, invoice_number, source="scheduled check")
        return "completed"
