"""Result values returned by outbound calls and reconciliation steps."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Tagged failure reasons shared by the token, invoice and order paths."""

    MISSING_CREDENTIALS = "MissingCredentials"
    REFRESH_FAILED = "RefreshFailed"
    NO_TENANT = "NoTenant"
    UNAUTHENTICATED = "Unauthenticated"
    MISSING_TENANT = "MissingTenant"
    PROVIDER_ERROR = "ProviderError"
    NOT_FOUND = "NotFound"
    INVALID_FORMAT = "InvalidFormat"
    ORDER_NOT_FOUND = "OrderNotFound"
    NO_INVOICE_LINKED = "NoInvoiceLinked"
    NETWORK_ERROR = "NetworkError"


@dataclass
class Failure:
    """Why a call did not succeed."""

    kind: ErrorKind
    message: str
    status: Optional[int] = None
    detail: Optional[str] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class Result(Generic[T]):
    """Outcome of a call: a value on success, a Failure otherwise."""

    success: bool
    value: Optional[T] = None
    error: Optional[Failure] = None

    @classmethod
    def ok(cls, value: Any = None) -> "Result":
        return cls(success=True, value=value)

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        message: str,
        status: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> "Result":
        return cls(success=False, error=Failure(kind, message, status, detail))

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @property
    def message(self) -> str:
        return self.error.message if self.error else ""
