"""Marks orders completed once their Xero invoice is paid."""

from __future__ import annotations

import logging

from src.orders.invoice_number import parse_invoice_number
from src.orders.store import STATUS_COMPLETED, Order, OrderStore
from src.reconcile.activity_log import ActivityLog
from src.xero.results import ErrorKind, Result

logger = logging.getLogger(__name__)


def completion_note(invoice_number: str) -> str:
    return f"Order marked as completed - Xero invoice {invoice_number} was paid."


class InvoiceCompletionProcessor:
    """
    Single entry point for completing an order from a paid invoice.

    Shared by the scheduled reconciliation and the webhook receiver. Every
    outcome writes exactly one activity log entry.
    """

    def __init__(self, order_store: OrderStore, activity_log: ActivityLog):
        self.order_store = order_store
        self.activity_log = activity_log

    def process_paid_invoice(self, invoice_number: str) -> Result:
        """
        Complete the order behind a WebSales<order_id> invoice number.

        Returns:
            Result with the Order on success (including when it was already
            completed), or a Failure tagged InvalidFormat, OrderNotFound or
            NoInvoiceLinked.
        """
        order_id = parse_invoice_number(invoice_number)
        if order_id is None:
            self.activity_log.record(
                "Invalid invoice format", False, invoice_number,
                details="Not a WebSales invoice - skipping",
            )
            return Result.fail(ErrorKind.INVALID_FORMAT, f"Not a WebSales invoice: {invoice_number}")

        order = self.order_store.get(order_id)
        if order is None:
            self.activity_log.record(
                "Order not found", False, invoice_number, order_id, details="Invalid order ID",
            )
            return Result.fail(ErrorKind.ORDER_NOT_FOUND, f"Order {order_id} not found")

        # Guard against unrelated orders that happen to match the numbering scheme
        if not order.xero_invoice_id:
            self.activity_log.record(
                "Order has no Xero invoice", False, invoice_number, order_id,
                details="Missing _xero_invoice_id meta",
            )
            return Result.fail(ErrorKind.NO_INVOICE_LINKED, f"Order {order_id} has no Xero invoice")

        return self._complete(order, invoice_number, "Order completed successfully",
                              "Order status updated to completed")

    def complete_order(self, order: Order, invoice_number: str, source: str = "") -> Result:
        """
        Complete an order the caller already holds.

        The order is re-read first so an overlapping run that already completed
        it results in a no-op.
        """
        current = self.order_store.get(order.id) or order
        message = f"Order completed via {source}" if source else "Order completed successfully"
        return self._complete(current, invoice_number, message, "Invoice was paid in Xero")

    def _complete(self, order: Order, invoice_number: str, message: str, details: str) -> Result:
        if order.status == STATUS_COMPLETED:
            self.activity_log.record(
                "Order already completed", True, invoice_number, order.id, details="No action needed",
            )
            return Result.ok(order)

        self.order_store.update_status(order.id, STATUS_COMPLETED, completion_note(invoice_number))
        order.status = STATUS_COMPLETED
        self.activity_log.record(message, True, invoice_number, order.id, details=details)
        return Result.ok(order)
