from __future__ import annotations

import logging
import math
from typing import List

from market_search.models import RankedResult, SearchResultPage, SearchSpec, SortOrder
from market_search.services.filters import build_store_query
from market_search.services.geo import apply_geo, paginate
from market_search.services.store import MarketStore

logger = logging.getLogger(__name__)


def assemble_page(items: List[RankedResult], *, total_matches: int, page: int, limit: int) -> SearchResultPage:
    return SearchResultPage(
        items=items,
        total_matches=total_matches,
        page=page,
        limit=limit,
        total_pages=math.ceil(total_matches / limit) if total_matches > 0 else 0,
    )


async def search_markets(
    spec: SearchSpec,
    store: MarketStore,
    *,
    overfetch_cap: int,
    bbox_pushdown: bool = False,
) -> SearchResultPage:
    """Run one search: store-side filtering, then the in-process radius pass and paging.

    ``total_matches`` is always the store's count. For a radius search that
    count is taken before the radius filter, so it (and ``total_pages``) can
    be larger than what the pages actually hold.
    """
    query = build_store_query(spec, overfetch_cap=overfetch_cap, bbox_pushdown=bbox_pushdown)
    candidates = await store.fetch(query)

    if spec.geo is None:
        items = [RankedResult(market=row) for row in candidates.rows]
    else:
        if candidates.total_matches > len(candidates.rows):
            logger.warning(
                "Radius search matched %d rows before the radius filter; only the first %d were considered",
                candidates.total_matches,
                len(candidates.rows),
            )
        ranked = apply_geo(candidates.rows, spec.geo, sort_by_distance=spec.sort is SortOrder.distance)
        items = paginate(ranked, offset=spec.offset, limit=spec.limit)

    logger.debug("Search %s -> %d of %d", spec, len(items), candidates.total_matches)
    return assemble_page(items, total_matches=candidates.total_matches, page=spec.page, limit=spec.limit)
