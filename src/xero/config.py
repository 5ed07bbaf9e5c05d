"""Xero endpoints and environment configuration."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()

AUTHORIZE_URL = "https://login.xero.com/identity/connect/authorize"
TOKEN_URL = "https://identity.xero.com/connect/token"
CONNECTIONS_URL = "https://api.xero.com/connections"
API_BASE_URL = "https://api.xero.com/api.xro/2.0"

SCOPES = "offline_access accounting.transactions.read accounting.settings.read"

# Applied to every outbound call (token exchange, status lookup, connections)
REQUEST_TIMEOUT = 30

CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


class XeroConfigError(Exception):
    """Required Xero configuration is missing."""

    pass


def get_env_credentials() -> Dict[str, str]:
    """
    Read OAuth client and webhook settings from the environment.

    These seed the stored credential record when it has no values of its own.
    """
    return {
        "client_id": os.getenv("XERO_CLIENT_ID", ""),
        "client_secret": os.getenv("XERO_CLIENT_SECRET", ""),
        "signing_key": os.getenv("XERO_WEBHOOK_KEY", ""),
    }


def get_redirect_uri(default: Optional[str] = None) -> str:
    """OAuth redirect URI, falling back to the app's own callback URL."""
    return os.getenv("XERO_REDIRECT_URI") or default or ""


def get_token_file() -> Path:
    return Path(os.getenv("XERO_TOKEN_FILE", CONFIG_DIR / ".xero_tokens.json"))


def get_schedule_file() -> Path:
    return Path(os.getenv("XERO_SCHEDULE_FILE", CONFIG_DIR / ".xero_schedule.json"))


def get_admin_token() -> str:
    """Shared secret that operator routes require. Empty disables those routes."""
    return os.getenv("XERO_ADMIN_TOKEN", "")
