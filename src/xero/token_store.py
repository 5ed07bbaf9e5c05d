"""Persisted Xero credential record (tokens, expiry, tenant, client config)."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Callable, ContextManager, Iterator, Optional

from src.xero.config import get_env_credentials, get_token_file

logger = logging.getLogger(__name__)


class TokenStoreError(Exception):
    """Credential record could not be read or written."""

    pass


@dataclass
class CredentialRecord:
    """
    Single process-wide Xero credential state.

    expires_at is an absolute epoch timestamp in seconds.
    """

    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0
    client_id: str = ""
    client_secret: str = ""
    tenant_id: str = ""
    tenant_name: str = ""
    signing_key: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "CredentialRecord":
        known = {f.name for f in fields(cls)}
        record = cls(**{k: v for k, v in data.items() if k in known and v is not None})
        record.expires_at = int(record.expires_at or 0)
        return record

    def to_dict(self) -> dict:
        return asdict(self)

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.expires_at <= now

    def has_refresh_credentials(self) -> bool:
        return bool(self.refresh_token and self.client_id and self.client_secret)

    @property
    def is_connected(self) -> bool:
        return bool(self.access_token and self.tenant_id)

    def with_env_defaults(self) -> "CredentialRecord":
        """Fill empty client settings from XERO_* environment variables."""
        for key, value in get_env_credentials().items():
            if value and not getattr(self, key):
                setattr(self, key, value)
        return self


class TokenStore:
    """Load and save the credential record."""

    def load(self) -> CredentialRecord:
        raise NotImplementedError

    def save(self, record: CredentialRecord) -> None:
        raise NotImplementedError

    @contextmanager
    def locked(self) -> Iterator[CredentialRecord]:
        """
        Load the record for a read-modify-write cycle.

        Stores shared between processes hold a lock until the block exits;
        save() may be called inside the block.
        """
        yield self.load()

    def clear_tokens(self) -> CredentialRecord:
        """Forget tokens and tenant, keeping client configuration."""
        record = self.load()
        record.access_token = ""
        record.refresh_token = ""
        record.expires_at = 0
        record.tenant_id = ""
        record.tenant_name = ""
        self.save(record)
        logger.info("Cleared Xero tokens and tenant")
        return record


class FileTokenStore(TokenStore):
    """JSON file storage for local development (owner read/write only)."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_token_file()

    def load(self) -> CredentialRecord:
        if not self.path.exists():
            return CredentialRecord().with_env_defaults()

        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupted token file {self.path}: {e}")
            return CredentialRecord().with_env_defaults()

        return CredentialRecord.from_dict(data).with_env_defaults()

    def save(self, record: CredentialRecord) -> None:
        """Write to a temp file then rename, so readers never see a partial record."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".xero_tokens.")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(record.to_dict(), f, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise TokenStoreError(f"Failed to save tokens to {self.path}: {e}") from e
        logger.debug(f"Tokens saved to {self.path}")


class DatabaseTokenStore(TokenStore):
    """Single-row table storage, used when DATABASE_URL is configured."""

    def __init__(self, session_factory: Optional[Callable[[], ContextManager]] = None):
        if session_factory is None:
            from src.xero.database import get_session

            session_factory = get_session
        self.session_factory = session_factory
        # Session holding the row lock, per thread, while inside locked()
        self._held = threading.local()

    def load(self) -> CredentialRecord:
        from src.xero.models import XeroCredential

        with self.session_factory() as session:
            if session is None:
                raise TokenStoreError("Database not configured")
            row = session.query(XeroCredential).filter_by(id=1).first()
            data = row.to_dict() if row else {}

        return CredentialRecord.from_dict(data).with_env_defaults()

    def save(self, record: CredentialRecord) -> None:
        held = getattr(self._held, "session", None)
        if held is not None:
            self._write(held, record)
            held.flush()
            logger.debug("Tokens staged in locked database transaction")
            return

        with self.session_factory() as session:
            if session is None:
                raise TokenStoreError("Database not configured")
            self._write(session, record)
            session.commit()
        logger.debug("Tokens saved to database")

    @contextmanager
    def locked(self) -> Iterator[CredentialRecord]:
        """SELECT ... FOR UPDATE on the credential row until the block exits."""
        from src.xero.models import XeroCredential

        with self.session_factory() as session:
            if session is None:
                raise TokenStoreError("Database not configured")
            row = (
                session.query(XeroCredential)
                .filter_by(id=1)
                .with_for_update()
                .first()
            )
            data = row.to_dict() if row else {}

            self._held.session = session
            try:
                yield CredentialRecord.from_dict(data).with_env_defaults()
            finally:
                self._held.session = None
            session.commit()

    @staticmethod
    def _write(session, record: CredentialRecord) -> None:
        from src.xero.models import XeroCredential

        row = session.query(XeroCredential).filter_by(id=1).first()
        if row is None:
            row = XeroCredential(id=1)
            session.add(row)
        for key, value in record.to_dict().items():
            setattr(row, key, value)


def get_token_store() -> TokenStore:
    """Database storage when DATABASE_URL is set, otherwise a local JSON file."""
    from src.xero.database import is_database_configured

    if is_database_configured():
        return DatabaseTokenStore()
    return FileTokenStore()
