from __future__ import annotations

import logging
import math
from enum import Enum
from typing import FrozenSet, Mapping, Optional, TypeVar

from market_search.errors import BadGeoError
from market_search.models import DayOfWeek, GeoFilter, PaymentTag, ProductTag, SearchSpec, SortOrder
from market_search.states import state_code_for

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 12
MAX_LIMIT = 100

_GEO_PARAMS = ("lat", "lng", "radius")

# "monday" and "mon" both name the same day.
_DAY_TOKENS: dict[str, DayOfWeek] = {
    **{day.value: day for day in DayOfWeek},
    **{day.value[:3]: day for day in DayOfWeek},
}

E = TypeVar("E", bound=Enum)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _literal(value: Optional[str]) -> Optional[str]:
    # PostgREST reads * as a LIKE wildcard and has no escape for it.
    return _clean(value.replace("*", "")) if value is not None else None


def _parse_int(value: Optional[str]) -> Optional[int]:
    value = _clean(value)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _parse_tags(value: Optional[str], vocabulary: type[E], param: str) -> FrozenSet[E]:
    value = _clean(value)
    if value is None:
        return frozenset()

    tags = set()
    for token in value.split(","):
        token = token.strip().lower()
        if not token:
            continue
        try:
            tags.add(vocabulary(token))
        except ValueError:
            logger.warning("Ignoring unknown %s tag %r", param, token)
    return frozenset(tags)


def _parse_day(value: Optional[str]) -> Optional[DayOfWeek]:
    value = _clean(value)
    if value is None:
        return None
    return _DAY_TOKENS.get(value.lower())


def _parse_page(value: Optional[str]) -> int:
    page = _parse_int(value)
    if page is None or page < 1:
        return 1
    return page


def _parse_limit(value: Optional[str]) -> int:
    limit = _parse_int(value)
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(limit, MAX_LIMIT))


def _read_geo(raw: Mapping[str, str]) -> tuple[Optional[GeoFilter], Optional[str]]:
    values = {name: _clean(raw.get(name)) for name in _GEO_PARAMS}
    given = [name for name, value in values.items() if value is not None]
    if not given:
        return None, None
    if len(given) < len(_GEO_PARAMS):
        missing = [name for name in _GEO_PARAMS if name not in given]
        return None, f"lat, lng and radius must be given together (missing: {', '.join(missing)})"

    numbers: dict[str, float] = {}
    for name, value in values.items():
        try:
            number = float(value)
        except ValueError:
            return None, f"{name} must be a number"
        if not math.isfinite(number):
            return None, f"{name} must be a finite number"
        numbers[name] = number

    # A non-positive radius can never match anything; treat it as no location at all.
    if numbers["radius"] <= 0:
        return None, None
    if not -90.0 <= numbers["lat"] <= 90.0:
        return None, "lat must be between -90 and 90"
    if not -180.0 <= numbers["lng"] <= 180.0:
        return None, "lng must be between -180 and 180"

    return GeoFilter(lat=numbers["lat"], lng=numbers["lng"], radius_miles=numbers["radius"]), None


def _parse_geo(raw: Mapping[str, str], strict: bool) -> Optional[GeoFilter]:
    geo, problem = _read_geo(raw)
    if problem is None:
        return geo
    if strict:
        raise BadGeoError(problem)
    logger.warning("Ignoring location filter: %s", problem)
    return None


def _parse_sort(value: Optional[str], geo: Optional[GeoFilter]) -> SortOrder:
    value = _clean(value)
    if value is None:
        # A location with no explicit sort means "nearest first".
        return SortOrder.distance if geo is not None else SortOrder.relevance_default
    try:
        sort = SortOrder(value.lower())
    except ValueError:
        logger.debug("Unknown sort %r, using %s", value, SortOrder.relevance_default.value)
        return SortOrder.relevance_default
    if sort is SortOrder.distance and geo is None:
        return SortOrder.relevance_default
    return sort


def normalize(raw: Mapping[str, str], *, strict_geo: bool = False) -> SearchSpec:
    """Turn raw query parameters into a SearchSpec.

    Everything except the location triple is forgiving: bad values fall back to
    defaults. A partial or malformed lat/lng/radius raises BadGeoError when
    ``strict_geo`` is set and is otherwise dropped.
    """
    text = _literal(raw.get("q"))
    state = _clean(raw.get("state"))
    geo = _parse_geo(raw, strict_geo)

    return SearchSpec(
        text=text.lower() if text else None,
        state_code=state_code_for(state) if state else None,
        city=_literal(raw.get("city")),
        products=_parse_tags(raw.get("products"), ProductTag, "products"),
        payment_methods=_parse_tags(raw.get("payment_methods"), PaymentTag, "payment_methods"),
        day_open=_parse_day(raw.get("day")),
        geo=geo,
        sort=_parse_sort(raw.get("sort"), geo),
        page=_parse_page(raw.get("page")),
        limit=_parse_limit(raw.get("limit")),
    )
