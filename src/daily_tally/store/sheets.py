"""Google Sheets backing store.

One worksheet per effective date (titled with the date) holding
``Date | Name | Count | Timestamp`` rows, with a ``Total`` label in G1 and a
SUM formula over the count column in G2. A ``Settings`` worksheet holds
key/value rows. All calls go through the Sheets REST API v4 with a
service-account bearer token.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set
from urllib.parse import quote

import httpx

from ..models import DailyAggregate, DynamicSettings, Reading
from ..models.reading import ROW_HEADERS
from .base import BackingStore
from .exceptions import StoreAPIError, StoreAuthError, StoreError
from .http_client import get_http_client
from .retry import DEFAULT_MAX_RETRIES, retry_with_backoff

logger = logging.getLogger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
SETTINGS_SHEET = "Settings"
TOTAL_LABEL_RANGE = "G1:G2"
TOTAL_CELL = "G2"
TOTAL_FORMULA = "=SUM(C2:C10000)"
ANONYMOUS_NAME = "Anonymous"


class TokenProvider(Protocol):
    """Anything that can hand out a bearer token."""

    async def get_token(self) -> str:
        ...


def a1(sheet_title: str, cell_range: Optional[str] = None) -> str:
    """Build an absolute A1 range, quoting the sheet title."""
    quoted = "'" + sheet_title.replace("'", "''") + "'"
    return f"{quoted}!{cell_range}" if cell_range else quoted


class SheetsBackingStore(BackingStore):
    """Backing store adapter over one Google Sheets spreadsheet."""

    def __init__(
        self,
        spreadsheet_id: Optional[str],
        token_provider: TokenProvider,
        default_settings: DynamicSettings,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = 15.0,
    ):
        super().__init__(default_settings)
        self.spreadsheet_id = spreadsheet_id
        self._tokens = token_provider
        self._client = client
        self._max_retries = max_retries
        self.timeout = timeout
        self._known_titles: Optional[Set[str]] = None
        self._partition_lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # HTTP plumbing
    # ------------------------------------------------------------------ #

    @property
    def _base_url(self) -> str:
        if not self.spreadsheet_id:
            raise StoreAuthError("Google Sheets credentials are not set: missing spreadsheet id")
        return f"{SHEETS_API_BASE}/{self.spreadsheet_id}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Make an authenticated request with retry on transient failures."""
        token = await self._tokens.get_token()
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {token}"

        async def _do_request():
            client = self._client or get_http_client(self.timeout)
            response = await client.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
            return response

        return await retry_with_backoff(_do_request, max_retries=self._max_retries)

    async def _values_batch_update(self, data: List[Dict[str, Any]]) -> None:
        await self._request(
            "POST",
            f"{self._base_url}/values:batchUpdate",
            json={"valueInputOption": "USER_ENTERED", "data": data},
        )

    # ------------------------------------------------------------------ #
    # Partitions
    # ------------------------------------------------------------------ #

    async def _load_titles(self) -> Set[str]:
        if self._known_titles is None:
            response = await self._request(
                "GET",
                self._base_url,
                params={"fields": "sheets.properties.title"},
            )
            self._known_titles = {
                s.get("properties", {}).get("title", "")
                for s in response.json().get("sheets", [])
            }
        return self._known_titles

    async def _ensure_sheet(self, title: str) -> bool:
        """Create the worksheet when missing. Returns True if it was created here."""
        titles = await self._load_titles()
        if title in titles:
            return False

        async with self._partition_lock:
            if title in titles:
                return False
            try:
                await self._request(
                    "POST",
                    f"{self._base_url}:batchUpdate",
                    json={"requests": [{"addSheet": {"properties": {"title": title}}}]},
                )
            except StoreAPIError as exc:
                # Another instance created it between our metadata read and addSheet
                if exc.status_code == 400 and "already exists" in exc.response_body:
                    titles.add(title)
                    return False
                raise
            titles.add(title)
            logger.info("Created worksheet %s", title)
            return True

    async def resolve_partition(self, date: str) -> str:
        if await self._ensure_sheet(date):
            await self._values_batch_update(
                [
                    {"range": a1(date, "A1:D1"), "values": [ROW_HEADERS]},
                    {"range": a1(date, TOTAL_LABEL_RANGE), "values": [["Total"], [TOTAL_FORMULA]]},
                ]
            )
        return date

    # ------------------------------------------------------------------ #
    # Rows
    # ------------------------------------------------------------------ #

    async def append_rows(self, readings: Sequence[Reading]) -> int:
        written = 0
        for date, group in self.group_by_date(readings).items():
            await self.resolve_partition(date)
            target = quote(a1(date, "A:D"), safe="")
            await self._request(
                "POST",
                f"{self._base_url}/values/{target}:append",
                params={
                    "valueInputOption": "USER_ENTERED",
                    "insertDataOption": "OVERWRITE",
                },
                json={"values": [reading.to_row() for reading in group]},
            )
            written += len(group)
            logger.debug("Appended %d row(s) to %s", len(group), date)
        return written

    async def read_aggregate(self, date: str) -> DailyAggregate:
        await self.resolve_partition(date)
        response = await self._request(
            "GET",
            f"{self._base_url}/values:batchGet",
            params=[
                ("ranges", a1(date, TOTAL_CELL)),
                ("ranges", a1(date, "A2:D")),
                ("valueRenderOption", "UNFORMATTED_VALUE"),
            ],
        )
        value_ranges = response.json().get("valueRanges", [])
        total_values = value_ranges[0].get("values", []) if len(value_ranges) > 0 else []
        row_values = value_ranges[1].get("values", []) if len(value_ranges) > 1 else []

        user_counts: Dict[str, int] = {}
        computed_total = 0
        for row in row_values:
            count = _parse_count(row[2] if len(row) > 2 else None)
            if count is None:
                continue
            name = str(row[1]).strip() if len(row) > 1 and str(row[1]).strip() else ANONYMOUS_NAME
            computed_total += count
            user_counts[name] = user_counts.get(name, 0) + count

        trusted = total_values[0][0] if total_values and total_values[0] else None
        if isinstance(trusted, (int, float)) and not isinstance(trusted, bool):
            total = int(trusted)
        else:
            logger.warning("Total cell for %s is not a number (%r), using row sum", date, trusted)
            total = computed_total
            await self._restore_total_formula(date)

        return DailyAggregate(date=date, total=total, user_counts=user_counts)

    async def _restore_total_formula(self, date: str) -> None:
        """Rewrite the total label and formula; the row sum already answered this read."""
        try:
            await self._values_batch_update(
                [{"range": a1(date, TOTAL_LABEL_RANGE), "values": [["Total"], [TOTAL_FORMULA]]}]
            )
        except StoreError as exc:
            logger.warning("Could not restore total formula for %s: %s", date, exc)

    # ------------------------------------------------------------------ #
    # Settings
    # ------------------------------------------------------------------ #

    async def read_settings(self) -> DynamicSettings:
        if await self._ensure_sheet(SETTINGS_SHEET):
            rows = [["Key", "Value"]] + [
                [key, value] for key, value in self.default_settings.to_key_values().items()
            ]
            await self._values_batch_update(
                [{"range": a1(SETTINGS_SHEET, f"A1:B{len(rows)}"), "values": rows}]
            )
            logger.info("Initialised settings worksheet with defaults")
            return self.default_settings

        response = await self._request(
            "GET",
            f"{self._base_url}/values/{quote(a1(SETTINGS_SHEET, 'A2:B'), safe='')}",
            params={"valueRenderOption": "UNFORMATTED_VALUE"},
        )
        values: Dict[str, str] = {}
        for row in response.json().get("values", []):
            if len(row) >= 2 and str(row[0]).strip():
                values[str(row[0]).strip()] = str(row[1])
        return DynamicSettings.from_key_values(values, self.default_settings)


def _parse_count(value: Any) -> Optional[int]:
    """Parse a count cell the way a leading-integer parse would, skipping junk."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    digits = ""
    for ch in text:
        if ch not in "0123456789":
            break
        digits += ch
    if not digits:
        return None
    return sign * int(digits)
