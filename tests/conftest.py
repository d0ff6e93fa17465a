from __future__ import annotations

import math

import pytest

from market_search.models import MarketRecord
from market_search.services.geo import EARTH_RADIUS_MILES

CENTER = (37.0, -122.0)


def north_of(lat: float, miles: float) -> float:
    """Latitude ``miles`` due north of ``lat`` along a meridian."""
    return lat + math.degrees(miles / EARTH_RADIUS_MILES)


def build_market(**overrides) -> MarketRecord:
    row = {
        "id": "m1",
        "name": "Market",
        "city": "Springfield",
        "state": "California",
        "state_code": "CA",
        "latitude": None,
        "longitude": None,
        "google_rating": None,
        "products": {},
        "payment_methods": {},
        "schedule": {},
        "is_active": True,
    }
    row.update(overrides)
    row.setdefault("slug", f"{row['name']}-{row['id']}".lower().replace(" ", "-"))
    return MarketRecord.model_validate(row)


@pytest.fixture
def make_market():
    return build_market


@pytest.fixture
def abc_markets():
    """A at the center, B 10 mi and C 40 mi north of it, all in CA."""
    lat, lng = CENTER
    return [
        build_market(id="a", name="Alpha", latitude=lat, longitude=lng, google_rating=3.0),
        build_market(id="b", name="Bravo", latitude=north_of(lat, 10), longitude=lng, google_rating=5.0),
        build_market(id="c", name="Charlie", latitude=north_of(lat, 40), longitude=lng, google_rating=4.0),
    ]
