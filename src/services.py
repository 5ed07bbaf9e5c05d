"""Builds the reconciler's components from environment configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from src.orders.store import InMemoryOrderStore, OrderStore
from src.reconcile.activity_log import ActivityLog, DatabaseActivityLog
from src.reconcile.completion import InvoiceCompletionProcessor
from src.reconcile.engine import ReconciliationEngine
from src.reconcile.schedule import CheckSchedule
from src.xero.auth import TokenManager
from src.xero.invoices import InvoiceStatusClient
from src.xero.token_store import TokenStore, get_token_store
from src.xero.webhooks import WebhookReceiver

logger = logging.getLogger(__name__)


@dataclass
class Services:
    token_store: TokenStore
    activity_log: ActivityLog
    order_store: OrderStore
    token_manager: TokenManager
    status_client: InvoiceStatusClient
    processor: InvoiceCompletionProcessor
    engine: ReconciliationEngine
    receiver: WebhookReceiver
    schedule: CheckSchedule


def build_services(
    token_store: Optional[TokenStore] = None,
    order_store: Optional[OrderStore] = None,
    activity_log: Optional[ActivityLog] = None,
    schedule: Optional[CheckSchedule] = None,
) -> Services:
    """Wire the component graph; any piece can be supplied explicitly."""
    from src.xero.database import is_database_configured

    token_store = token_store or get_token_store()
    if activity_log is None:
        activity_log = DatabaseActivityLog() if is_database_configured() else ActivityLog()
    order_store = order_store or default_order_store()

    token_manager = TokenManager(token_store, activity_log)
    status_client = InvoiceStatusClient(token_manager, activity_log)
    processor = InvoiceCompletionProcessor(order_store, activity_log)

    return Services(
        token_store=token_store,
        activity_log=activity_log,
        order_store=order_store,
        token_manager=token_manager,
        status_client=status_client,
        processor=processor,
        engine=ReconciliationEngine(order_store, status_client, processor, activity_log),
        receiver=WebhookReceiver(
            order_store, processor, activity_log,
            signing_key=lambda: token_store.load().signing_key,
        ),
        schedule=schedule or CheckSchedule(),
    )


def default_order_store() -> OrderStore:
    """WooCommerce when WOOCOMMERCE_URL is set, otherwise an empty in-memory store."""
    if os.getenv("WOOCOMMERCE_URL"):
        from src.orders.woocommerce import WooCommerceOrderStore

        return WooCommerceOrderStore.from_env()

    logger.warning("WOOCOMMERCE_URL not set - using an empty in-memory order store")
    return InMemoryOrderStore()


_services: Optional[Services] = None


def get_services() -> Services:
    """Process-wide services, built on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    """Replace (or with None, reset) the process-wide services."""
    global _services
    _services = services
