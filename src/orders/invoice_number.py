"""Invoice numbers derived from order IDs (WebSales<order_id>)."""

from __future__ import annotations

import re
from typing import Optional

from src.orders.store import INVOICE_NUMBER_META, Order, OrderStore

INVOICE_PREFIX = "WebSales"
INVOICE_NUMBER_PATTERN = re.compile(r"WebSales([0-9]+)")


def format_invoice_number(order_id: int) -> str:
    return f"{INVOICE_PREFIX}{int(order_id)}"


def parse_invoice_number(invoice_number: str) -> Optional[int]:
    """
    Extract the order ID from an invoice number.

    Returns:
        The order ID, or None if the value is not a WebSales invoice number.
    """
    match = INVOICE_NUMBER_PATTERN.fullmatch(invoice_number or "")
    if not match:
        return None
    return int(match.group(1))


def ensure_invoice_number(order: Order, store: OrderStore) -> str:
    """
    Return the order's invoice number, deriving and caching it on first use.
    """
    if order.xero_invoice_number:
        return order.xero_invoice_number

    invoice_number = format_invoice_number(order.id)
    store.set_meta(order.id, INVOICE_NUMBER_META, invoice_number)
    order.meta[INVOICE_NUMBER_META] = invoice_number
    return invoice_number
