"""Xero OAuth2 authentication: authorization code exchange and token refresh."""

from __future__ import annotations

import base64
import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Optional
from urllib.parse import urlencode

import requests

from src.reconcile.activity_log import ActivityLog
from src.xero.config import (
    AUTHORIZE_URL,
    CONNECTIONS_URL,
    REQUEST_TIMEOUT,
    SCOPES,
    TOKEN_URL,
    XeroConfigError,
)
from src.xero.results import ErrorKind, Result
from src.xero.token_store import CredentialRecord, TokenStore, TokenStoreError

logger = logging.getLogger(__name__)

# Xero access tokens live for 30 minutes
DEFAULT_EXPIRES_IN = 1800


def get_authorization_url(client_id: str, redirect_uri: str, state: str) -> str:
    """
    Get the URL for initial OAuth authorization.

    Args:
        client_id: Xero app client ID
        redirect_uri: Callback URL registered with the Xero app
        state: CSRF protection token, validated when handling the callback
    """
    if not client_id:
        raise XeroConfigError("Missing required configuration: XERO_CLIENT_ID")
    query = urlencode({
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": SCOPES,
        "state": state,
    })
    return f"{AUTHORIZE_URL}?{query}"


def basic_auth_header(client_id: str, client_secret: str) -> str:
    encoded = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("utf-8")
    return f"Basic {encoded}"


def error_detail(response: requests.Response) -> str:
    """Best-effort provider error message from a failed response."""
    try:
        data = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    if not isinstance(data, dict):
        return ""
    return str(
        data.get("error_description")
        or data.get("Detail")
        or data.get("error")
        or data.get("Message")
        or ""
    )


class TokenManager:
    """
    Obtains, validates and refreshes Xero access tokens.

    Refresh and authorization run under one lock so concurrent callers never
    race on the stored refresh token. Refresh also holds the store's lock,
    which spans processes for the database store.
    """

    def __init__(
        self,
        store: TokenStore,
        activity_log: Optional[ActivityLog] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.activity_log = activity_log or ActivityLog()
        self.clock = clock
        self._lock = threading.RLock()

    def get_valid_access_token(self) -> Result:
        """
        Get a valid access token, refreshing it if expired.

        Fails with Unauthenticated when no token has ever been obtained.
        """
        record = self.store.load()
        if not record.access_token:
            return Result.fail(
                ErrorKind.UNAUTHENTICATED,
                "No access token. Please connect to Xero.",
            )

        if not record.is_expired(self.clock()):
            return Result.ok(record.access_token)

        logger.info("Access token expired, refreshing")
        return self.refresh_access_token(stale_token=record.access_token)

    def refresh_access_token(self, stale_token: Optional[str] = None) -> Result:
        """
        Exchange the stored refresh token for a new access token.

        If stale_token is given and another caller has already replaced it with
        an unexpired token, that token is returned without calling Xero.

        Failures leave the stored credentials untouched.
        """
        with self._lock, self.store.locked() as record:
            if (
                stale_token
                and record.access_token
                and record.access_token != stale_token
                and not record.is_expired(self.clock())
            ):
                logger.debug("Access token already refreshed by another caller")
                return Result.ok(record.access_token)

            if not record.has_refresh_credentials():
                self.activity_log.record(
                    "Token refresh failed", False,
                    details="Missing refresh token or client credentials",
                )
                return Result.fail(
                    ErrorKind.MISSING_CREDENTIALS,
                    "Refresh token, client ID and client secret are required",
                )

            try:
                response = requests.post(
                    TOKEN_URL,
                    headers={
                        "Authorization": basic_auth_header(record.client_id, record.client_secret),
                        "Content-Type": "application/x-www-form-urlencoded",
                    },
                    data={
                        "grant_type": "refresh_token",
                        "refresh_token": record.refresh_token,
                    },
                    timeout=REQUEST_TIMEOUT,
                )
            except requests.RequestException as e:
                self.activity_log.record("Token refresh failed", False, details=str(e))
                return Result.fail(ErrorKind.REFRESH_FAILED, f"Network error during refresh: {e}")

            token_data = self._token_payload(response)
            if token_data is None:
                detail = error_detail(response)
                logger.error(f"Xero refresh failed: status={response.status_code}, detail={detail}")
                self.activity_log.record(
                    "Token refresh failed", False,
                    details=f"Invalid response from Xero (HTTP {response.status_code})",
                )
                return Result.fail(
                    ErrorKind.REFRESH_FAILED,
                    f"Token refresh failed: HTTP {response.status_code}",
                    status=response.status_code,
                    detail=detail,
                )

            expires_in = int(token_data.get("expires_in", DEFAULT_EXPIRES_IN))
            updated = replace(
                record,
                access_token=token_data["access_token"],
                expires_at=int(self.clock()) + expires_in,
                # Xero rotates refresh tokens, other providers may not
                refresh_token=token_data.get("refresh_token") or record.refresh_token,
            )

            try:
                self.store.save(updated)
            except TokenStoreError as e:
                self.activity_log.record("Token refresh failed", False, details=str(e))
                return Result.fail(ErrorKind.REFRESH_FAILED, str(e))

            self.activity_log.record(
                "Token refreshed successfully", True,
                details=f"New token expires in {round(expires_in / 60)} minutes",
            )
            return Result.ok(updated.access_token)

    def complete_authorization(self, code: str, redirect_uri: str) -> Result:
        """
        Exchange an authorization code for tokens and resolve the tenant.

        The credential record is saved once, only after both the token exchange
        and the connections lookup succeed.
        """
        with self._lock:
            record = self.store.load()
            if not record.client_id or not record.client_secret:
                return Result.fail(
                    ErrorKind.MISSING_CREDENTIALS,
                    "Client ID and Secret not configured",
                )

            try:
                response = requests.post(
                    TOKEN_URL,
                    headers={
                        "Authorization": basic_auth_header(record.client_id, record.client_secret),
                        "Content-Type": "application/x-www-form-urlencoded",
                    },
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": redirect_uri,
                    },
                    timeout=REQUEST_TIMEOUT,
                )
            except requests.RequestException as e:
                return Result.fail(ErrorKind.NETWORK_ERROR, f"Network error during token exchange: {e}")

            token_data = self._token_payload(response)
            if token_data is None:
                detail = error_detail(response)
                logger.error(f"Xero code exchange failed: status={response.status_code}, detail={detail}")
                return Result.fail(
                    ErrorKind.PROVIDER_ERROR,
                    f"Failed to get access token: HTTP {response.status_code} {detail}".strip(),
                    status=response.status_code,
                    detail=detail,
                )

            access_token = token_data["access_token"]
            try:
                connections_response = requests.get(
                    CONNECTIONS_URL,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Content-Type": "application/json",
                    },
                    timeout=REQUEST_TIMEOUT,
                )
            except requests.RequestException as e:
                return Result.fail(ErrorKind.NETWORK_ERROR, f"Failed to get tenant info: {e}")

            if connections_response.status_code != 200:
                detail = error_detail(connections_response)
                return Result.fail(
                    ErrorKind.PROVIDER_ERROR,
                    f"Failed to get tenant info: HTTP {connections_response.status_code}",
                    status=connections_response.status_code,
                    detail=detail,
                )

            try:
                connections = connections_response.json()
            except ValueError:
                connections = []

            if not connections or not isinstance(connections, list) or not connections[0].get("tenantId"):
                return Result.fail(ErrorKind.NO_TENANT, "No tenant ID found")

            tenant = connections[0]
            updated = replace(
                record,
                access_token=access_token,
                refresh_token=token_data.get("refresh_token", ""),
                expires_at=int(self.clock()) + int(token_data.get("expires_in", DEFAULT_EXPIRES_IN)),
                tenant_id=tenant["tenantId"],
                tenant_name=tenant.get("tenantName") or "",
            )

            try:
                self.store.save(updated)
            except TokenStoreError as e:
                return Result.fail(ErrorKind.PROVIDER_ERROR, str(e))

            self.activity_log.record(
                "OAuth connection successful", True,
                details=f"Connected to {updated.tenant_name}",
            )
            return Result.ok(updated)

    def disconnect(self) -> CredentialRecord:
        """Clear tokens and tenant, keeping client configuration."""
        with self._lock:
            record = self.store.clear_tokens()
        self.activity_log.record("Disconnected from Xero", True)
        return record

    def get_token_status(self) -> dict:
        """Connection summary for display."""
        record = self.store.load()
        now = self.clock()
        status = {
            "connected": record.is_connected,
            "tenant_name": record.tenant_name,
            "has_client_credentials": bool(record.client_id and record.client_secret),
            "has_signing_key": bool(record.signing_key),
            "expires_at": record.expires_at or None,
            "expires_in_minutes": None,
            "message": "Not connected",
        }
        if record.is_connected:
            expires_in = record.expires_at - now
            if expires_in > 0:
                status["expires_in_minutes"] = round(expires_in / 60)
                status["message"] = f"Connected to {record.tenant_name or 'Xero'}"
            else:
                status["message"] = "Token expired - will auto-refresh on next check"
        return status

    @staticmethod
    def _token_payload(response: requests.Response) -> Optional[dict]:
        """Parsed token response, or None unless it is a 200 carrying access_token."""
        if response.status_code != 200:
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict) or not data.get("access_token"):
            return None
        return data
