from __future__ import annotations

import logging
from functools import lru_cache
from typing import AsyncIterator, Optional

import aiohttp
from fastapi import Depends, FastAPI, HTTPException, Request

from market_search.config import get_settings
from market_search.errors import BadGeoError, StoreError
from market_search.models import DayOfWeek, MarketSearchResponse, PaymentTag, ProductTag, SortOrder
from market_search.services.query import normalize
from market_search.services.search import search_markets
from market_search.services.store import InMemoryMarketStore, MarketStore, PostgrestMarketStore

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Search and rank farmers markets by text, location, products, payments and opening day.",
)


@lru_cache
def _memory_store(path: Optional[str]) -> InMemoryMarketStore:
    if path is None:
        logger.warning("STORE_BACKEND=memory without MARKET_DATA_PATH; serving an empty directory")
        return InMemoryMarketStore([])
    return InMemoryMarketStore.from_json_file(path)


async def get_store() -> AsyncIterator[MarketStore]:
    if settings.store_backend == "memory":
        yield _memory_store(settings.market_data_path)
        return

    async with aiohttp.ClientSession() as session:
        yield PostgrestMarketStore(
            session,
            base_url=str(settings.postgrest_url),
            api_key=settings.postgrest_api_key,
            table=settings.markets_table,
            timeout_s=settings.http_timeout_s,
        )


@app.get("/", tags=["Root"])
async def root():
    return {"ok": True, "service": settings.app_name, "version": settings.version}


@app.get("/health", tags=["Healthcheck"])
async def health():
    return {"ok": True}


@app.get("/api/tags", tags=["Api Tags"])
async def api_tags():
    return {
        "products": [tag.value for tag in ProductTag],
        "payment_methods": [tag.value for tag in PaymentTag],
        "days": [day.value for day in DayOfWeek],
        "sort": [order.value for order in SortOrder],
    }


@app.get("/api/markets", response_model=MarketSearchResponse, tags=["Api Markets"])
async def api_markets(request: Request, store: MarketStore = Depends(get_store)):
    """Filtered, ranked, paginated market search.

    Query parameters: q, state, city, products, payment_methods, day, lat, lng,
    radius, page, limit, sort.
    """
    try:
        spec = normalize(request.query_params, strict_geo=settings.strict_geo)
    except BadGeoError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        page = await search_markets(
            spec,
            store,
            overfetch_cap=settings.geo_overfetch_cap,
            bbox_pushdown=settings.geo_bbox_pushdown,
        )
    except StoreError as e:
        logger.error("Search error: %s", e)
        raise HTTPException(status_code=502, detail="Failed to search markets")

    return MarketSearchResponse.from_page(page)
