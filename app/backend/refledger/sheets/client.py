"""
Google Sheets client for the tabular store.

Talks to the Sheets v4 REST API over aiohttp. The client does not cache,
does not interpret cell values and does not retry: every failure surfaces
as StoreError and the retry policy belongs to the caller.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
from urllib.parse import quote

import aiohttp
import structlog
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from refledger.core.exceptions import StoreError
from .ranges import index_to_col, col_to_index, row_range

logger = structlog.get_logger(__name__)

SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"

Rows = List[List[Any]]


class ValueRender(str, Enum):
    """How cell values are rendered on read."""
    FORMATTED = "FORMATTED_VALUE"
    UNFORMATTED = "UNFORMATTED_VALUE"


class TabularStore(Protocol):
    """Range-based access to named sheets."""

    async def read_range(self, range_spec: str, render: ValueRender = ValueRender.FORMATTED) -> Rows:
        ...

    async def write_row(self, sheet: str, row: int, values: Sequence[Any], first_col: str = "A") -> int:
        ...

    async def batch_write(self, updates: Sequence[Tuple[str, Rows]]) -> int:
        ...


class SheetsClient:
    """Async Google Sheets values API client."""

    def __init__(
        self,
        spreadsheet_id: str,
        credentials_path: Optional[str] = None,
        timeout_seconds: int = 30,
        credentials: Optional[Any] = None,
        api_url: str = SHEETS_API_URL,
    ):
        self.spreadsheet_id = spreadsheet_id
        self.api_url = api_url.rstrip("/")
        self.credentials_path = credentials_path
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._credentials = credentials
        self._session: Optional[aiohttp.ClientSession] = None
        self._token_lock = asyncio.Lock()
        self.logger = logger.bind(service="sheets_client")

    async def __aenter__(self) -> "SheetsClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        """Load credentials and open the HTTP session."""
        if self._credentials is None:
            try:
                self._credentials = service_account.Credentials.from_service_account_file(
                    self.credentials_path, scopes=[SHEETS_SCOPE]
                )
            except (OSError, ValueError) as e:
                raise StoreError(
                    "Failed to load service account credentials",
                    {"path": self.credentials_path, "error": str(e)}
                ) from e

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self.logger.info("Sheets session opened", spreadsheet_id=self.spreadsheet_id)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self.logger.info("Sheets session closed")
        self._session = None

    async def _access_token(self) -> str:
        async with self._token_lock:
            if not self._credentials.valid:
                try:
                    # google-auth refresh is blocking
                    await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
                except Exception as e:
                    raise StoreError("Failed to refresh access token", {"error": str(e)}) from e
            return self._credentials.token

    def _values_url(self, range_spec: str = "") -> str:
        base = f"{self.api_url}/{self.spreadsheet_id}/values"
        if range_spec:
            return f"{base}/{quote(range_spec, safe='')}"
        return base

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if self._session is None:
            raise StoreError("Sheets client is not open")

        headers = {"Authorization": f"Bearer {await self._access_token()}"}
        try:
            async with self._session.request(
                method, url, params=params, json=body, headers=headers
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise StoreError(
                        f"Sheets API returned HTTP {response.status}",
                        {"status": response.status, "url": url, "body": text[:500]}
                    )
                return await response.json()
        except asyncio.TimeoutError as e:
            raise StoreError("Sheets API timeout", {"url": url}) from e
        except aiohttp.ClientError as e:
            raise StoreError("Sheets API request failed", {"url": url, "error": str(e)}) from e

    async def read_range(self, range_spec: str, render: ValueRender = ValueRender.FORMATTED) -> Rows:
        """Read a rectangular range; trailing empty rows and cells are omitted by the API."""
        data = await self._request(
            "GET",
            self._values_url(range_spec),
            params={"valueRenderOption": render.value, "majorDimension": "ROWS"},
        )
        rows = data.get("values") or []
        self.logger.debug("Range read", range=range_spec, rows=len(rows))
        return rows

    async def write_row(self, sheet: str, row: int, values: Sequence[Any], first_col: str = "A") -> int:
        """Overwrite one row starting at first_col. Returns the number of updated cells."""
        last_col = index_to_col(col_to_index(first_col) + len(values) - 1)
        target = row_range(sheet, row, first_col, last_col)
        data = await self._request(
            "PUT",
            self._values_url(target),
            params={"valueInputOption": "USER_ENTERED"},
            body={"range": target, "majorDimension": "ROWS", "values": [list(values)]},
        )
        updated = data.get("updatedCells", 0)
        self.logger.debug("Row written", range=target, updated_cells=updated)
        return updated

    async def batch_write(self, updates: Sequence[Tuple[str, Rows]]) -> int:
        """Write several disjoint ranges in one call. Returns the number of updated cells."""
        if not updates:
            return 0
        data = await self._request(
            "POST",
            self._values_url() + ":batchUpdate",
            body={
                "valueInputOption": "USER_ENTERED",
                "data": [
                    {"range": range_spec, "majorDimension": "ROWS", "values": values}
                    for range_spec, values in updates
                ],
            },
        )
        updated = data.get("totalUpdatedCells", 0)
        self.logger.debug("Batch written", ranges=len(updates), updated_cells=updated)
        return updated
