"""
obe_core.errors — Domain Error Taxonomy
========================================

Every service raises one of these.  The API layer renders them as
``{"error": "..."}`` with :attr:`ObeError.status_code`.

* :class:`ValidationError` — malformed input, raised before any write.
* :class:`NotFoundError` — a referenced row is absent; aborts the call.
* :class:`InsufficientXPError` — a purchase the ledger cannot cover.
* :class:`StorageError` — a primary-path read/write against the store failed.
  Writes committed before the failure stay committed.
"""

from __future__ import annotations


class ObeError(Exception):
    """Base class for all errors surfaced to callers."""

    status_code: int = 500

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class ValidationError(ObeError):
    status_code = 400


class NotFoundError(ObeError):
    status_code = 404


class InsufficientXPError(ObeError):
    status_code = 409


class StorageError(ObeError):
    status_code = 500
