"""Signed Xero webhook deliveries routed to invoice completion."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from src.orders.invoice_number import ensure_invoice_number
from src.orders.store import INVOICE_ID_META, OrderStore
from src.reconcile.activity_log import ActivityLog
from src.reconcile.completion import InvoiceCompletionProcessor

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-xero-signature"


def compute_signature(body: bytes, key: str) -> str:
    digest = hmac.new(key.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(signature: Optional[str], body: bytes, key: Optional[str]) -> bool:
    """
    Check a delivery's base64 HMAC-SHA256 signature in constant time.

    Always False when no signing key is configured.
    """
    if not key or not signature:
        return False
    expected = compute_signature(body, key)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


@dataclass
class WebhookResponse:
    status_code: int
    payload: Dict[str, Any] = field(default_factory=dict)


UNAUTHORIZED = WebhookResponse(401, {"error": "Unauthorized"})


def is_intent_to_receive(payload: Any) -> bool:
    """Xero's endpoint check: sequence markers and no events."""
    return (
        isinstance(payload, dict)
        and "firstEventSequence" in payload
        and "lastEventSequence" in payload
        and not payload.get("events")
    )


class WebhookReceiver:
    """Verifies Xero webhook deliveries and completes orders for invoice updates."""

    def __init__(
        self,
        order_store: OrderStore,
        processor: InvoiceCompletionProcessor,
        activity_log: ActivityLog,
        signing_key: Callable[[], str],
    ):
        self.order_store = order_store
        self.processor = processor
        self.activity_log = activity_log
        self.signing_key = signing_key

    def handle(self, signature: Optional[str], body: bytes) -> WebhookResponse:
        """
        Process one delivery.

        Returns 401 for a bad signature, 400 for malformed JSON, and 200 for
        every correctly signed payload even if individual events were skipped.
        """
        self.activity_log.record(
            "Raw webhook received", True,
            details=f"Signature present: {'YES' if signature else 'NO'} | Body length: {len(body)}",
        )

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            payload = None

        if is_intent_to_receive(payload):
            if not verify_signature(signature, body, self.signing_key()):
                self.activity_log.record(
                    "Intent verification FAILED", False, details="Bad signature test - returning 401",
                )
                return UNAUTHORIZED
            self.activity_log.record(
                "Intent verification SUCCESS", True, details="Good signature - returning 200",
            )
            return WebhookResponse(200, {"success": True})

        signature_valid = verify_signature(signature, body, self.signing_key())
        self.activity_log.record(
            "Event signature check", signature_valid,
            details=f"Valid: {'YES' if signature_valid else 'NO'}",
        )
        if not signature_valid:
            return UNAUTHORIZED

        if not isinstance(payload, dict):
            self.activity_log.record("JSON parsing failed", False, details="Invalid JSON")
            return WebhookResponse(400, {
                "error": "invalid_json",
                "message": "Invalid JSON payload",
                "status": 400,
            })

        events = payload.get("events")
        if not isinstance(events, list):
            events = []

        self.activity_log.record("Webhook received", True, details=f"Processing events: {len(events)}")

        for event in events:
            try:
                self.process_invoice_event(event)
            except Exception as e:
                logger.exception("Error processing webhook event")
                self.activity_log.record("Error processing webhook event", False, details=str(e))

        return WebhookResponse(200, {"success": True})

    def process_invoice_event(self, event: Any) -> None:
        """Complete the order linked to an invoice UPDATE event; ignore anything else."""
        if not isinstance(event, dict):
            return
        if event.get("eventType") != "UPDATE" or event.get("eventCategory") != "INVOICE":
            return

        invoice_id = event.get("resourceId") or ""
        if not invoice_id:
            self.activity_log.record("No invoice ID in webhook", False, details="Missing resourceId")
            return

        order = self.order_store.find_by_meta(INVOICE_ID_META, invoice_id)
        if order is None:
            self.activity_log.record(
                "Order not found for invoice ID", False, details=f"Invoice ID: {invoice_id}",
            )
            return

        invoice_number = ensure_invoice_number(order, self.order_store)
        self.processor.process_paid_invoice(invoice_number)
