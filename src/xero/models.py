"""SQLAlchemy models for Xero credential and activity log storage."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class XeroCredential(Base):
    """Xero OAuth credentials - single row table (one Xero connection only)."""

    __tablename__ = "xero_credentials"

    id = Column(Integer, primary_key=True, default=1)
    access_token = Column(Text, nullable=False, default="")
    refresh_token = Column(Text, nullable=False, default="")
    expires_at = Column(BigInteger, nullable=False, default=0)
    client_id = Column(String(255), nullable=False, default="")
    client_secret = Column(String(255), nullable=False, default="")
    tenant_id = Column(String(64), nullable=False, default="")
    tenant_name = Column(String(255), nullable=False, default="")
    signing_key = Column(String(255), nullable=False, default="")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        """Convert to the dictionary format used by CredentialRecord.from_dict."""
        return {
            "access_token": self.access_token or "",
            "refresh_token": self.refresh_token or "",
            "expires_at": int(self.expires_at or 0),
            "client_id": self.client_id or "",
            "client_secret": self.client_secret or "",
            "tenant_id": self.tenant_id or "",
            "tenant_name": self.tenant_name or "",
            "signing_key": self.signing_key or "",
        }


class ActivityLogRecord(Base):
    """One reconciliation audit entry."""

    __tablename__ = "xero_activity_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.now)
    invoice_number = Column(String(64), nullable=False, default="")
    order_id = Column(String(32), nullable=False, default="")
    success = Column(Boolean, nullable=False, default=True)
    message = Column(Text, nullable=False, default="")
