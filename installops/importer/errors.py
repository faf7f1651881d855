"""Exception hierarchy for partner imports.

Every exception that can abort a request carries the HTTP status the API
should answer with. Row-level anomalies (skips, warnings, mapping errors) are
not exceptions; they are collected on the run result instead.
"""

from __future__ import annotations

from http import HTTPStatus


class PartnerImportError(Exception):
    """Base class for errors that abort a partner import request."""

    status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidImportRequest(PartnerImportError):
    """Raised when request parameters are missing or malformed."""

    status_code = HTTPStatus.BAD_REQUEST


class ProfileNotFound(PartnerImportError):
    """Raised when the import profile (or its partner) does not exist."""

    status_code = HTTPStatus.NOT_FOUND


class ProfileInactive(PartnerImportError):
    """Raised when the import profile or its partner is deactivated."""

    status_code = HTTPStatus.BAD_REQUEST


class DataSourceError(PartnerImportError):
    """Raised when rows cannot be obtained from the configured source."""

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR


class SheetsConfigError(DataSourceError):
    """Raised when Google service account credentials are missing or invalid."""


class SheetsAuthError(DataSourceError):
    """Raised when Google rejects the service account token exchange."""


class SheetNotFound(DataSourceError):
    """Raised when the spreadsheet or the named tab does not exist."""


class SheetAccessDenied(DataSourceError):
    """Raised when the spreadsheet is not shared with the service account."""


class BulkUpsertError(PartnerImportError):
    """Raised when a bulk client/order write fails for a whole batch."""


class AuditLogWriteError(PartnerImportError):
    """Raised when the run summary cannot be persisted."""


class PartnerNotFound(PartnerImportError):
    """Raised when a partner id does not exist."""

    status_code = HTTPStatus.NOT_FOUND


class JobDeletionError(PartnerImportError):
    """Raised when imported orders cannot be deleted."""


__all__ = [
    "AuditLogWriteError",
    "BulkUpsertError",
    "DataSourceError",
    "InvalidImportRequest",
    "JobDeletionError",
    "PartnerImportError",
    "PartnerNotFound",
    "ProfileInactive",
    "ProfileNotFound",
    "SheetAccessDenied",
    "SheetNotFound",
    "SheetsAuthError",
    "SheetsConfigError",
]
