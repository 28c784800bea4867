"""
Reference data client: unit types, bookkeeping accounts and CO2 reference items.

All lookups are read-only GETs against REFERENCE_DATA_URL:

    GET /unit-types
    GET /bookkeeping-accounts
    GET /co2-items
    GET /co2-items/search?q=<query>     (only for queries of 3+ characters)

Transport failures and 5xx responses are retried up to
REFERENCE_DATA_RETRIES attempts; anything still failing surfaces as
ReferenceDataError. fetch() wraps a lookup into a ReferenceDataResult so
callers can show an error state instead of failing.

Results never touch a calculation directly. A CO2 value is merged into a row
through CalculationSession.apply_co2_item().
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from kalkyl.config import CO2_SEARCH_MIN_CHARS, settings

logger = logging.getLogger("kalkyl-refdata")


class ReferenceDataError(Exception):
    """A reference-data lookup failed after all retries."""


@dataclass
class UnitType:
    code: str
    label: str


@dataclass
class BookkeepingAccount:
    account_number: str
    description: str

    @property
    def display(self) -> str:
        return f"{self.account_number} - {self.description}"


@dataclass
class Co2Item:
    id: int
    name: str
    category: str
    co2_value: float
    unit: str


@dataclass
class ReferenceDataResult:
    items: List[Any] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {"items": [asdict(i) for i in self.items], "error": self.error}


# ── Parsing ────────────────────────────────────────────────────────────────────

def _parse_unit_type(raw: Any) -> UnitType:
    if isinstance(raw, str):
        return UnitType(code=raw, label=raw)
    code = raw.get("code") or raw.get("unit") or raw.get("name")
    if not code:
        raise ValueError(f"unit type without code: {raw!r}")
    return UnitType(code=str(code), label=str(raw.get("label") or raw.get("description") or code))


def _parse_account(raw: Any) -> BookkeepingAccount:
    number = raw.get("accountNumber", raw.get("account_number"))
    if number is None:
        raise ValueError(f"account without number: {raw!r}")
    return BookkeepingAccount(account_number=str(number), description=str(raw.get("description", "")))


def _parse_co2_item(raw: Any) -> Co2Item:
    return Co2Item(
        id=int(raw["id"]),
        name=str(raw.get("artikelnamn", "")),
        category=str(raw.get("kategori", "")),
        co2_value=float(raw.get("co2Varde", 0) or 0),
        unit=str(raw.get("enhet", "")),
    )


def _parse_list(payload: Any, parser: Callable[[Any], Any], what: str) -> List[Any]:
    if not isinstance(payload, list):
        raise ReferenceDataError(f"Unexpected {what} response: expected a list")
    try:
        return [parser(item) for item in payload]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ReferenceDataError(f"Malformed {what} entry: {e}") from e


# ── Client ─────────────────────────────────────────────────────────────────────

class ReferenceDataClient:

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        retries: Optional[int] = None,
        backoff_s: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.reference_data_url).rstrip("/")
        self.timeout_s = timeout_s if timeout_s is not None else settings.reference_data_timeout_s
        self.retries = max(1, retries if retries is not None else settings.reference_data_retries)
        self.backoff_s = backoff_s
        self._transport = transport

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        if not self.base_url:
            raise ReferenceDataError("REFERENCE_DATA_URL not configured")

        last_error = ""
        for attempt in range(1, self.retries + 1):
            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url, timeout=self.timeout_s, transport=self._transport
                ) as client:
                    resp = await client.get(path, params=params)
                if resp.status_code >= 500:
                    last_error = f"HTTP {resp.status_code}"
                    logger.warning(f"GET {path} failed ({last_error}), attempt {attempt}/{self.retries}")
                elif resp.status_code >= 400:
                    raise ReferenceDataError(f"GET {path} rejected: HTTP {resp.status_code}")
                else:
                    return resp.json()
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.warning(f"GET {path} failed ({last_error}), attempt {attempt}/{self.retries}")
            except ValueError as e:
                raise ReferenceDataError(f"GET {path} returned invalid JSON: {e}") from e

            if attempt < self.retries and self.backoff_s:
                await asyncio.sleep(self.backoff_s * attempt)

        raise ReferenceDataError(f"GET {path} failed after {self.retries} attempts: {last_error}")

    async def unit_types(self) -> List[UnitType]:
        return _parse_list(await self._get_json("/unit-types"), _parse_unit_type, "unit type")

    async def bookkeeping_accounts(self) -> List[BookkeepingAccount]:
        return _parse_list(await self._get_json("/bookkeeping-accounts"), _parse_account, "bookkeeping account")

    async def co2_items(self) -> List[Co2Item]:
        return _parse_list(await self._get_json("/co2-items"), _parse_co2_item, "CO2 item")

    async def search_co2_items(self, query: str) -> List[Co2Item]:
        """Search CO2 items. Queries shorter than 3 characters return [] without a request."""
        q = query.strip()
        if len(q) < CO2_SEARCH_MIN_CHARS:
            return []
        return _parse_list(await self._get_json("/co2-items/search", params={"q": q}), _parse_co2_item, "CO2 item")

    async def fetch(self, lookup: Callable[[], Awaitable[List[Any]]]) -> ReferenceDataResult:
        """Run one lookup, turning a ReferenceDataError into an error result."""
        try:
            return ReferenceDataResult(items=await lookup())
        except ReferenceDataError as e:
            logger.error(f"Reference data unavailable: {e}")
            return ReferenceDataResult(error=str(e))


def accounts_by_number(accounts: List[BookkeepingAccount]) -> Dict[str, str]:
    """Lookup table for report_engine.format_account()."""
    return {a.account_number: a.description for a in accounts}
