from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class ProductTag(str, Enum):
    vegetables = "vegetables"
    fruits = "fruits"
    meat = "meat"
    poultry = "poultry"
    dairy = "dairy"
    eggs = "eggs"
    seafood = "seafood"
    herbs = "herbs"
    flowers = "flowers"
    honey = "honey"
    jams = "jams"
    maple = "maple"
    nuts = "nuts"
    plants = "plants"
    prepared = "prepared"
    baked = "baked"
    soap = "soap"
    wine = "wine"
    coffee = "coffee"
    beans = "beans"
    crafts = "crafts"
    organic = "organic"


class PaymentTag(str, Enum):
    cash = "cash"
    credit = "credit"
    debit = "debit"
    snap = "snap"
    wic = "wic"
    sfmnp = "sfmnp"


class DayOfWeek(str, Enum):
    sunday = "sunday"
    monday = "monday"
    tuesday = "tuesday"
    wednesday = "wednesday"
    thursday = "thursday"
    friday = "friday"
    saturday = "saturday"


class SortOrder(str, Enum):
    relevance_default = "relevance_default"
    rating = "rating"
    name = "name"
    distance = "distance"


class GeoFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    radius_miles: float = Field(..., gt=0)


class SearchSpec(BaseModel):
    """A normalized market search. Built once per request and never mutated."""

    model_config = ConfigDict(frozen=True)

    text: Optional[str] = None
    state_code: Optional[str] = None
    city: Optional[str] = None
    products: FrozenSet[ProductTag] = frozenset()
    payment_methods: FrozenSet[PaymentTag] = frozenset()
    day_open: Optional[DayOfWeek] = None
    geo: Optional[GeoFilter] = None
    sort: SortOrder = SortOrder.relevance_default
    page: int = Field(1, ge=1)
    limit: int = Field(12, ge=1, le=100)

    @model_validator(mode="after")
    def _distance_needs_geo(self) -> "SearchSpec":
        if self.sort is SortOrder.distance and self.geo is None:
            raise ValueError("sort=distance requires lat, lng and radius")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _known_keys(raw: Any, vocabulary: type[Enum], field: str) -> Dict[str, Any]:
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"{field} must be an object")
    allowed = {member.value for member in vocabulary}
    kept: Dict[str, Any] = {}
    for key, value in raw.items():
        name = str(key).strip().lower()
        if name in allowed:
            kept[name] = value
        else:
            logger.debug("Dropping unknown %s key %r", field, key)
    return kept


def _known_tags(raw: Any, vocabulary: type[Enum], field: str) -> Dict[str, Any]:
    # A null tag value means the same as a missing key: not offered.
    return {name: False if value is None else value for name, value in _known_keys(raw, vocabulary, field).items()}


class DayHours(BaseModel):
    model_config = ConfigDict(extra="allow")

    open: Optional[str] = None
    close: Optional[str] = None


class MarketRecord(BaseModel):
    """A market row as returned by the store. Columns not modelled here are passed through."""

    model_config = ConfigDict(extra="allow")

    id: str
    slug: str
    name: str
    city: Optional[str] = None
    state: Optional[str] = None
    state_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    google_rating: Optional[float] = None
    google_reviews_count: int = 0
    products: Dict[ProductTag, bool] = Field(default_factory=dict)
    payment_methods: Dict[PaymentTag, bool] = Field(default_factory=dict)
    schedule: Dict[DayOfWeek, Optional[DayHours]] = Field(default_factory=dict)
    is_active: bool = True

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("google_reviews_count", mode="before")
    @classmethod
    def _reviews_default(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("products", mode="before")
    @classmethod
    def _known_products(cls, value: Any) -> Dict[str, Any]:
        return _known_tags(value, ProductTag, "products")

    @field_validator("payment_methods", mode="before")
    @classmethod
    def _known_payments(cls, value: Any) -> Dict[str, Any]:
        return _known_tags(value, PaymentTag, "payment_methods")

    @field_validator("schedule", mode="before")
    @classmethod
    def _known_days(cls, value: Any) -> Dict[str, Any]:
        days = _known_keys(value, DayOfWeek, "schedule")
        # Free-form hours strings still mean the market is open that day.
        return {day: hours if hours is None or isinstance(hours, dict) else {} for day, hours in days.items()}

    @model_validator(mode="after")
    def _coordinates_pair(self) -> "MarketRecord":
        if (self.latitude is None) != (self.longitude is None):
            logger.warning("Market %s has only one coordinate; ignoring its location", self.id)
            self.latitude = None
            self.longitude = None
        return self


class RankedResult(BaseModel):
    market: MarketRecord
    distance_miles: Optional[float] = None

    def to_public(self) -> Dict[str, Any]:
        data = self.market.model_dump(mode="json")
        data["distance_miles"] = self.distance_miles
        return data


class SearchResultPage(BaseModel):
    items: List[RankedResult]
    total_matches: int
    page: int
    limit: int
    total_pages: int


class MarketSearchResponse(BaseModel):
    """Wire shape of GET /api/markets."""

    model_config = ConfigDict(populate_by_name=True)

    data: List[Dict[str, Any]]
    total: int
    page: int
    limit: int
    total_pages: int = Field(..., alias="totalPages")

    @classmethod
    def from_page(cls, page: SearchResultPage) -> "MarketSearchResponse":
        return cls(
            data=[item.to_public() for item in page.items],
            total=page.total_matches,
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
        )
