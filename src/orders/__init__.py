"""Order storage used by the Xero reconciler."""

from src.orders.invoice_number import (
    ensure_invoice_number,
    format_invoice_number,
    parse_invoice_number,
)
from src.orders.store import InMemoryOrderStore, Order, OrderStore, OrderStoreError

__all__ = [
    "ensure_invoice_number",
    "format_invoice_number",
    "parse_invoice_number",
    "InMemoryOrderStore",
    "Order",
    "OrderStore",
    "OrderStoreError",
]
