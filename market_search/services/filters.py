"""Store-agnostic predicates for the candidate filter.

``build_store_query`` turns a SearchSpec into a ``StoreQuery``; each store
implementation either pushes that down (PostgREST) or evaluates it with
``record_matches`` / ``sort_records`` (in memory).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Tuple

from market_search.models import DayOfWeek, MarketRecord, PaymentTag, ProductTag, SearchSpec, SortOrder
from market_search.services.geo import BoundingBox, bounding_box

TEXT_COLUMNS = ("name", "city", "state")


@dataclass(frozen=True)
class OrderClause:
    column: str
    descending: bool = False
    nulls_last: bool = True


BY_RATING = OrderClause("google_rating", descending=True)
BY_NAME = OrderClause("name")
BY_ID = OrderClause("id")

SORT_ORDERS: dict[SortOrder, Tuple[OrderClause, ...]] = {
    SortOrder.relevance_default: (BY_RATING, BY_NAME, BY_ID),
    SortOrder.rating: (BY_RATING, BY_NAME, BY_ID),
    SortOrder.name: (BY_NAME, BY_ID),
    # Distance is sorted in process; the store order only breaks distance ties.
    SortOrder.distance: (BY_RATING, BY_NAME, BY_ID),
}


@dataclass(frozen=True)
class StoreQuery:
    text: Optional[str] = None
    state_code: Optional[str] = None
    city: Optional[str] = None
    products: FrozenSet[ProductTag] = frozenset()
    payment_methods: FrozenSet[PaymentTag] = frozenset()
    day_open: Optional[DayOfWeek] = None
    bounds: Optional[BoundingBox] = None
    order: Tuple[OrderClause, ...] = SORT_ORDERS[SortOrder.relevance_default]
    offset: int = 0
    limit: int = 12
    active_only: bool = True


def build_store_query(spec: SearchSpec, *, overfetch_cap: int, bbox_pushdown: bool = False) -> StoreQuery:
    """Predicates and paging to send to the store for ``spec``.

    A geo search cannot be paged by the store because the radius filter runs
    afterwards, so it asks for the first ``overfetch_cap`` rows instead.
    """
    if spec.geo is None:
        offset, limit = spec.offset, spec.limit
    else:
        offset, limit = 0, overfetch_cap

    return StoreQuery(
        text=spec.text,
        state_code=spec.state_code,
        city=spec.city,
        products=spec.products,
        payment_methods=spec.payment_methods,
        day_open=spec.day_open,
        bounds=bounding_box(spec.geo) if spec.geo is not None and bbox_pushdown else None,
        order=SORT_ORDERS[spec.sort],
        offset=offset,
        limit=limit,
    )


def record_matches(record: MarketRecord, query: StoreQuery) -> bool:
    if query.active_only and not record.is_active:
        return False

    if query.text:
        needle = query.text.lower()
        if not any(needle in (getattr(record, column) or "").lower() for column in TEXT_COLUMNS):
            return False

    if query.state_code and record.state_code != query.state_code:
        return False

    if query.city and (record.city or "").lower() != query.city.lower():
        return False

    # Missing tag keys count as false.
    if not all(record.products.get(tag, False) for tag in query.products):
        return False
    if not all(record.payment_methods.get(tag, False) for tag in query.payment_methods):
        return False

    if query.day_open is not None and record.schedule.get(query.day_open) is None:
        return False

    if query.bounds is not None:
        if record.latitude is None or record.longitude is None:
            return False
        if not query.bounds.contains(record.latitude, record.longitude):
            return False

    return True


def sort_records(records: Iterable[MarketRecord], order: Tuple[OrderClause, ...]) -> List[MarketRecord]:
    """Multi-column sort with per-column direction and null placement, like ORDER BY."""
    rows = list(records)
    # Stable sorts applied from the least significant column up.
    for clause in reversed(order):
        present = [row for row in rows if getattr(row, clause.column) is not None]
        missing = [row for row in rows if getattr(row, clause.column) is None]
        present.sort(key=lambda row: getattr(row, clause.column), reverse=clause.descending)
        rows = present + missing if clause.nulls_last else missing + present
    return rows
