"""Xero OAuth, invoice status and webhook integration."""

from src.xero.results import ErrorKind, Failure, Result

__all__ = ["ErrorKind", "Failure", "Result"]
