"""Google Sheets row source.

Authenticates as a service account (signed RS256 JWT exchanged for an access
token), resolves the requested tab case-insensitively, and reads its values
through the Sheets v4 REST API.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Literal, Mapping

import requests
from flask import current_app
from jose import jwt
from jose.exceptions import JWTError

from installops.importer.errors import (
    DataSourceError,
    SheetAccessDenied,
    SheetNotFound,
    SheetsAuthError,
    SheetsConfigError,
)
from installops.importer.metrics import record_sheet_fetch, record_sheets_readiness

from .tabular import SheetFetchResult

logger = logging.getLogger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_READONLY_SCOPE = "https://www.googleapis.com/auth/spreadsheets.readonly"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
REQUIRED_CREDENTIAL_FIELDS = ("client_email", "private_key", "token_uri", "project_id")
TOKEN_LIFETIME_SECONDS = 3600
LAST_COLUMN = "ZZ"


@dataclass(frozen=True)
class ServiceAccountCredentials:
    client_email: str
    private_key: str
    token_uri: str
    project_id: str

    @classmethod
    def from_json(cls, raw_key: str | Mapping[str, Any] | None) -> "ServiceAccountCredentials":
        if not raw_key:
            raise SheetsConfigError(
                "Google Service Account credentials not configured. Set GOOGLE_SERVICE_ACCOUNT_KEY."
            )
        if isinstance(raw_key, Mapping):
            payload = dict(raw_key)
        else:
            try:
                payload = json.loads(raw_key)
            except json.JSONDecodeError as exc:
                raise SheetsConfigError(f"Invalid Google Service Account credentials format: {exc.msg}") from exc
        if not isinstance(payload, dict):
            raise SheetsConfigError("Invalid Google Service Account credentials format: expected a JSON object.")

        missing = [field for field in REQUIRED_CREDENTIAL_FIELDS if not payload.get(field)]
        if missing:
            raise SheetsConfigError(
                f"Invalid Google Service Account credentials: missing {', '.join(missing)}"
            )
        return cls(
            client_email=str(payload["client_email"]),
            private_key=str(payload["private_key"]),
            token_uri=str(payload["token_uri"]),
            project_id=str(payload["project_id"]),
        )


def load_service_account(raw_key: str | None = None) -> ServiceAccountCredentials:
    """Load credentials from ``raw_key`` or the app's GOOGLE_SERVICE_ACCOUNT_KEY."""

    if raw_key is None:
        raw_key = current_app.config.get("GOOGLE_SERVICE_ACCOUNT_KEY")
    return ServiceAccountCredentials.from_json(raw_key)


def a1_range(sheet_name: str, last_row: int | None = None) -> str:
    """Build a quoted A1 range covering columns A..ZZ of ``sheet_name``."""

    escaped = sheet_name.replace("'", "''")
    end = f"{LAST_COLUMN}{last_row}" if last_row else LAST_COLUMN
    return f"'{escaped}'!A1:{end}"


class GoogleSheetsClient:
    """Minimal Sheets v4 client authenticated as a service account."""

    def __init__(
        self,
        credentials: ServiceAccountCredentials,
        *,
        session: requests.Session | None = None,
        timeout: float = 30,
    ) -> None:
        self.credentials = credentials
        self.session = session or requests.Session()
        self.timeout = timeout
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0

    @classmethod
    def from_app_config(cls, *, session: requests.Session | None = None) -> "GoogleSheetsClient":
        config = current_app.config
        return cls(
            load_service_account(config.get("GOOGLE_SERVICE_ACCOUNT_KEY")),
            session=session,
            timeout=float(config.get("IMPORTER_SHEETS_TIMEOUT_SECONDS", 30)),
        )

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def build_assertion(self, *, now: int | None = None) -> str:
        issued_at = int(now if now is not None else time.time())
        claims = {
            "iss": self.credentials.client_email,
            "scope": SHEETS_READONLY_SCOPE,
            "aud": self.credentials.token_uri,
            "iat": issued_at,
            "exp": issued_at + TOKEN_LIFETIME_SECONDS,
        }
        try:
            return jwt.encode(claims, self.credentials.private_key, algorithm="RS256")
        except JWTError as exc:
            raise SheetsConfigError(f"Failed to process Google Service Account private key: {exc}") from exc

    def access_token(self) -> str:
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        try:
            response = self.session.post(
                self.credentials.token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": self.build_assertion()},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise SheetsAuthError(f"Failed to reach Google token endpoint: {exc}") from exc

        payload = _json_or_empty(response)
        token = payload.get("access_token")
        if not token:
            reason = payload.get("error_description") or payload.get("error") or f"HTTP {response.status_code}"
            raise SheetsAuthError(f"Failed to authenticate with Google API: {reason}")

        expires_in = int(payload.get("expires_in") or TOKEN_LIFETIME_SECONDS)
        self._access_token = token
        # Refresh a minute early.
        self._token_expires_at = time.time() + max(expires_in - 60, 0)
        return token

    # ------------------------------------------------------------------
    # Sheets API
    # ------------------------------------------------------------------

    def _get(self, url: str, *, params: Mapping[str, str] | None = None) -> dict[str, Any]:
        try:
            response = self.session.get(
                url,
                headers={"Authorization": f"Bearer {self.access_token()}"},
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DataSourceError(f"Google Sheets request failed: {exc}") from exc

        payload = _json_or_empty(response)
        if response.status_code == 404:
            raise SheetNotFound("Google Sheet not found. Please check the Sheet ID and ensure the sheet exists.")
        if response.status_code == 403:
            raise SheetAccessDenied(
                "Access denied to Google Sheet. Please share the sheet with the service account email: "
                f"{self.credentials.client_email}"
            )
        if not response.ok:
            error = payload.get("error")
            message = error.get("message") if isinstance(error, dict) else None
            raise DataSourceError(message or f"Failed to fetch Google Sheets data (HTTP {response.status_code}).")
        return payload

    def list_sheet_titles(self, spreadsheet_id: str) -> list[str]:
        metadata = self._get(
            f"{SHEETS_API_BASE}/{spreadsheet_id}",
            params={"fields": "sheets.properties.title"},
        )
        return [
            sheet.get("properties", {}).get("title", "")
            for sheet in metadata.get("sheets", [])
            if sheet.get("properties", {}).get("title")
        ]

    def resolve_sheet_name(self, spreadsheet_id: str, requested: str) -> str:
        """Return the actual tab title matching ``requested`` (exact, then case-insensitive)."""

        titles = self.list_sheet_titles(spreadsheet_id)
        if requested in titles:
            return requested
        lowered = requested.strip().lower()
        for title in titles:
            if title.lower() == lowered:
                logger.info(
                    "Sheet name corrected from %r to %r",
                    requested,
                    title,
                    extra={"importer_gsheet_id": spreadsheet_id},
                )
                return title
        raise SheetNotFound(f'Sheet "{requested}" not found. Available sheets: {", ".join(titles)}')

    def fetch_values(self, spreadsheet_id: str, sheet_name: str, *, max_rows: int | None = None) -> list[list[str]]:
        last_row = max_rows + 1 if max_rows else None
        sheet_range = requests.utils.quote(a1_range(sheet_name, last_row), safe="")
        payload = self._get(
            f"{SHEETS_API_BASE}/{spreadsheet_id}/values/{sheet_range}",
            params={"majorDimension": "ROWS", "valueRenderOption": "FORMATTED_VALUE"},
        )
        return payload.get("values", [])

    def fetch_rows(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        *,
        start_row: int = 0,
        max_rows: int | None = None,
        sheet_row_limit: int | None = None,
    ) -> SheetFetchResult:
        """
        Fetch a sheet and return the ``[start_row, start_row + max_rows)`` data window.

        ``total_rows`` always reflects the whole sheet (up to ``sheet_row_limit``)
        so callers can compute whether more chunks remain.
        """

        try:
            actual_name = self.resolve_sheet_name(spreadsheet_id, sheet_name)
            values = self.fetch_values(spreadsheet_id, actual_name, max_rows=sheet_row_limit)
        except DataSourceError:
            record_sheet_fetch("failure")
            raise
        record_sheet_fetch("success")

        result = SheetFetchResult.from_values(values).window(start_row, max_rows)
        logger.info(
            "Fetched Google Sheet rows",
            extra={
                "importer_gsheet_id": spreadsheet_id,
                "importer_sheet_name": actual_name,
                "importer_total_rows": result.total_rows,
                "importer_window_rows": len(result.rows),
            },
        )
        return result


def _json_or_empty(response: requests.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


@dataclass(frozen=True)
class SheetsReadiness:
    configured: bool
    credentials_ok: bool
    client_email: str | None = None
    error: str | None = None

    @property
    def status(self) -> Literal["ready", "not-configured", "invalid-credentials"]:
        if not self.configured:
            return "not-configured"
        if not self.credentials_ok:
            return "invalid-credentials"
        return "ready"

    def messages(self) -> tuple[str, ...]:
        messages: list[str] = []
        if not self.configured:
            messages.append("GOOGLE_SERVICE_ACCOUNT_KEY is not set; Google Sheets profiles cannot be imported.")
        elif self.error:
            messages.append(self.error)
        return tuple(messages)

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "status": self.status,
            "configured": self.configured,
            "credentials_ok": self.credentials_ok,
            "messages": list(self.messages()),
        }
        if self.client_email:
            payload["client_email"] = self.client_email
        return payload


def check_sheets_readiness(raw_key: str | None = None) -> SheetsReadiness:
    """Non-raising check that service account credentials are present and well formed."""

    if raw_key is None:
        raw_key = current_app.config.get("GOOGLE_SERVICE_ACCOUNT_KEY")
    if not raw_key:
        readiness = SheetsReadiness(configured=False, credentials_ok=False)
    else:
        try:
            credentials = ServiceAccountCredentials.from_json(raw_key)
        except SheetsConfigError as exc:
            readiness = SheetsReadiness(configured=True, credentials_ok=False, error=exc.message)
        else:
            readiness = SheetsReadiness(configured=True, credentials_ok=True, client_email=credentials.client_email)
    record_sheets_readiness(readiness.status == "ready")
    return readiness
