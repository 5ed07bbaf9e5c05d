"""Order store interface and an in-memory implementation."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

INVOICE_ID_META = "_xero_invoice_id"
INVOICE_NUMBER_META = "_xero_invoice_number"

STATUS_PENDING = "pending"
STATUS_ON_HOLD = "on-hold"
STATUS_COMPLETED = "completed"


class OrderStoreError(Exception):
    """The order store could not be read or updated."""

    pass


@dataclass
class Order:
    """A shop order as seen by the reconciler."""

    id: int
    status: str
    created_at: datetime = field(default_factory=datetime.now)
    meta: Dict[str, Any] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    @property
    def xero_invoice_id(self) -> str:
        return str(self.meta.get(INVOICE_ID_META) or "")

    @property
    def xero_invoice_number(self) -> str:
        return str(self.meta.get(INVOICE_NUMBER_META) or "")

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED


class OrderStore:
    """Operations the reconciler needs from the shop's order storage."""

    def find_awaiting_payment(
        self, statuses: Iterable[str], created_after: datetime
    ) -> List[Order]:
        """Orders in one of `statuses`, created after `created_after`, with a linked Xero invoice."""
        raise NotImplementedError

    def get(self, order_id: int) -> Optional[Order]:
        raise NotImplementedError

    def find_by_meta(self, key: str, value: str) -> Optional[Order]:
        raise NotImplementedError

    def set_meta(self, order_id: int, key: str, value: str) -> None:
        raise NotImplementedError

    def update_status(self, order_id: int, status: str, note: str = "") -> None:
        raise NotImplementedError


class InMemoryOrderStore(OrderStore):
    """Dictionary-backed store for local runs and tests."""

    def __init__(self, orders: Optional[Iterable[Order]] = None):
        self._orders: Dict[int, Order] = {o.id: o for o in orders or []}
        self._lock = threading.Lock()
        self.status_updates: List[tuple] = []

    def add(self, order: Order) -> Order:
        with self._lock:
            self._orders[order.id] = order
        return order

    def find_awaiting_payment(
        self, statuses: Iterable[str], created_after: datetime
    ) -> List[Order]:
        wanted = set(statuses)
        with self._lock:
            return [
                o for o in self._orders.values()
                if o.status in wanted and o.created_at > created_after and o.xero_invoice_id
            ]

    def get(self, order_id: int) -> Optional[Order]:
        return self._orders.get(order_id)

    def find_by_meta(self, key: str, value: str) -> Optional[Order]:
        with self._lock:
            for order in self._orders.values():
                if order.meta.get(key) == value:
                    return order
        return None

    def set_meta(self, order_id: int, key: str, value: str) -> None:
        order = self._require(order_id)
        with self._lock:
            order.meta[key] = value

    def update_status(self, order_id: int, status: str, note: str = "") -> None:
        order = self._require(order_id)
        with self._lock:
            order.status = status
            if note:
                order.notes.append(note)
            self.status_updates.append((order_id, status, note))

    def _require(self, order_id: int) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderStoreError(f"Order {order_id} not found")
        return order
