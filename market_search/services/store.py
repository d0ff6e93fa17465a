from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import aiohttp
from pydantic import ValidationError

from market_search.errors import StoreError
from market_search.models import MarketRecord
from market_search.services.filters import TEXT_COLUMNS, OrderClause, StoreQuery, record_matches, sort_records

logger = logging.getLogger(__name__)


@dataclass
class CandidateSet:
    rows: List[MarketRecord]
    total_matches: int


class MarketStore(ABC):
    """Read access to market rows. ``fetch`` returns one page plus the exact match count."""

    @abstractmethod
    async def fetch(self, query: StoreQuery) -> CandidateSet:
        raise NotImplementedError


class InMemoryMarketStore(MarketStore):
    def __init__(self, markets: Iterable[MarketRecord]) -> None:
        self._markets = list(markets)

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryMarketStore":
        """Load a JSON array of market rows, e.g. an export of the markets table."""
        with open(path, encoding="utf-8") as f:
            rows = json.load(f)
        if not isinstance(rows, list):
            raise StoreError(f"{path}: expected a JSON array of markets")
        try:
            markets = [MarketRecord.model_validate(row) for row in rows]
        except ValidationError as e:
            raise StoreError(f"{path}: malformed market row") from e
        logger.info("Loaded %d markets from %s", len(markets), path)
        return cls(markets)

    async def fetch(self, query: StoreQuery) -> CandidateSet:
        matched = [market for market in self._markets if record_matches(market, query)]
        ordered = sort_records(matched, query.order)
        return CandidateSet(rows=ordered[query.offset : query.offset + query.limit], total_matches=len(matched))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _quote(value: str) -> str:
    # Values inside or=(...) containing commas, dots or parens must be double-quoted.
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _order_param(order: Tuple[OrderClause, ...]) -> str:
    return ",".join(
        f"{c.column}.{'desc' if c.descending else 'asc'}.{'nullslast' if c.nulls_last else 'nullsfirst'}"
        for c in order
    )


def build_postgrest_params(query: StoreQuery) -> List[Tuple[str, str]]:
    """PostgREST query string for ``query``. A list because a column may be filtered twice."""
    params: list[tuple[str, str]] = [("select", "*")]
    if query.active_only:
        params.append(("is_active", "eq.true"))

    if query.text:
        # PostgREST reads * as the LIKE wildcard.
        pattern = _quote(f"*{_escape_like(query.text)}*")
        params.append(("or", "(" + ",".join(f"{column}.ilike.{pattern}" for column in TEXT_COLUMNS) + ")"))

    if query.state_code:
        params.append(("state_code", f"eq.{query.state_code}"))
    if query.city:
        params.append(("city", f"ilike.{_escape_like(query.city)}"))

    for tag in sorted(query.products, key=lambda t: t.value):
        params.append((f"products->>{tag.value}", "eq.true"))
    for tag in sorted(query.payment_methods, key=lambda t: t.value):
        params.append((f"payment_methods->>{tag.value}", "eq.true"))

    if query.day_open is not None:
        # ->> yields SQL NULL for both a missing key and a JSON null.
        params.append((f"schedule->>{query.day_open.value}", "not.is.null"))

    if query.bounds is not None:
        params.extend(
            [
                ("latitude", f"gte.{query.bounds.min_lat}"),
                ("latitude", f"lte.{query.bounds.max_lat}"),
                ("longitude", f"gte.{query.bounds.min_lng}"),
                ("longitude", f"lte.{query.bounds.max_lng}"),
            ]
        )

    params.append(("order", _order_param(query.order)))
    params.append(("offset", str(query.offset)))
    params.append(("limit", str(query.limit)))
    return params


def parse_total(content_range: Optional[str]) -> int:
    """Exact count from a Content-Range header such as ``0-11/153`` or ``*/0``."""
    if not content_range or "/" not in content_range:
        raise StoreError(f"Missing count in Content-Range: {content_range!r}")
    total = content_range.rsplit("/", 1)[1]
    try:
        return int(total)
    except ValueError as e:
        raise StoreError(f"Unparsable count in Content-Range: {content_range!r}") from e


class PostgrestMarketStore(MarketStore):
    """Markets table behind a PostgREST endpoint (the hosted Postgres API)."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        base_url: str,
        api_key: Optional[str] = None,
        table: str = "markets",
        timeout_s: float = 10.0,
    ) -> None:
        self._session = session
        self._url = f"{base_url.rstrip('/')}/{table}"
        self._api_key = api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Prefer": "count=exact"}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def fetch(self, query: StoreQuery) -> CandidateSet:
        params = build_postgrest_params(query)
        logger.debug("Store query %s", params)
        try:
            async with self._session.get(
                self._url, params=params, headers=self._headers(), timeout=self._timeout
            ) as resp:
                # 416: offset past the last row. Not an error, just an empty page.
                if resp.status == 416:
                    return CandidateSet(rows=[], total_matches=parse_total(resp.headers.get("Content-Range")))
                resp.raise_for_status()
                data: Any = await resp.json()
                total = parse_total(resp.headers.get("Content-Range"))
        except aiohttp.ClientResponseError as e:
            raise StoreError(f"Market store returned HTTP {e.status}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StoreError(f"Market store unreachable: {e!r}") from e

        if not isinstance(data, list):
            raise StoreError("Market store returned a non-list body")
        try:
            rows = [MarketRecord.model_validate(row) for row in data]
        except ValidationError as e:
            raise StoreError("Market store returned a malformed row") from e
        return CandidateSet(rows=rows, total_matches=total)
