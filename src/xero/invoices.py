"""Xero invoice status lookups."""

from __future__ import annotations

import logging
from typing import Optional

import requests

from src.reconcile.activity_log import ActivityLog
from src.xero.auth import TokenManager, error_detail
from src.xero.config import API_BASE_URL, REQUEST_TIMEOUT
from src.xero.results import ErrorKind, Result

logger = logging.getLogger(__name__)

STATUS_PAID = "PAID"


class InvoiceStatusClient:
    """Reads an invoice's payment status from the Xero Accounting API."""

    def __init__(self, token_manager: TokenManager, activity_log: Optional[ActivityLog] = None):
        self.token_manager = token_manager
        self.activity_log = activity_log or token_manager.activity_log

    def get_invoice_status(self, invoice_id: str) -> Result:
        """
        Get the Status of a Xero invoice (e.g. "AUTHORISED", "PAID").

        A 401 response triggers one token refresh but the lookup is not
        retried; the caller re-invokes to use the new token.

        Returns:
            Result with the status string, or a Failure tagged
            Unauthenticated, MissingTenant, NetworkError, ProviderError or NotFound.
        """
        token = self.token_manager.get_valid_access_token()
        if not token.success:
            self.activity_log.record(
                "No valid access token", False,
                details="Please connect to Xero in plugin settings",
            )
            return Result.fail(ErrorKind.UNAUTHENTICATED, token.message)

        tenant_id = self.token_manager.store.load().tenant_id
        if not tenant_id:
            self.activity_log.record("No tenant ID", False, details="Please reconnect to Xero")
            return Result.fail(ErrorKind.MISSING_TENANT, "No Xero tenant ID. Please reconnect to Xero.")

        try:
            response = requests.get(
                f"{API_BASE_URL}/Invoices/{invoice_id}",
                headers={
                    "Authorization": f"Bearer {token.value}",
                    "xero-tenant-id": tenant_id,
                    "Accept": "application/json",
                },
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            self.activity_log.record("Xero API request failed", False, details=str(e))
            return Result.fail(ErrorKind.NETWORK_ERROR, f"Xero API request failed: {e}")

        if response.status_code != 200:
            message = f"HTTP {response.status_code}"
            if response.status_code == 401:
                message += " (Unauthorized - reconnecting to Xero)"
                self.token_manager.refresh_access_token(stale_token=token.value)

            detail = error_detail(response)
            if detail:
                message += f": {detail}"
            self.activity_log.record("Xero API error", False, details=message)
            return Result.fail(
                ErrorKind.PROVIDER_ERROR, message, status=response.status_code, detail=detail
            )

        try:
            data = response.json()
        except ValueError:
            data = {}

        invoices = data.get("Invoices") if isinstance(data, dict) else None
        if not invoices or not invoices[0].get("Status"):
            return Result.fail(ErrorKind.NOT_FOUND, f"Invoice {invoice_id} not found in Xero")

        return Result.ok(invoices[0]["Status"])
