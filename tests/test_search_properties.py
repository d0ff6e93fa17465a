"""
Property-based tests for the search pipeline.

Markets and query parameters are generated from small vocabularies so that
filters, ties and null ratings actually occur.
"""
from __future__ import annotations

import asyncio

from hypothesis import given, settings, strategies as st

from market_search.models import DayOfWeek, MarketRecord, PaymentTag, ProductTag
from market_search.services.geo import haversine_miles
from market_search.services.query import normalize
from market_search.services.search import search_markets
from market_search.services.store import InMemoryMarketStore

NAMES = ["Alpha Farm", "Bravo Market", "Charlie Green", "alpha Orchard", "Delta"]
CITIES = ["Springfield", "Salem", "Portland"]
STATES = [("CA", "California"), ("OR", "Oregon")]
PRODUCTS = [ProductTag.honey, ProductTag.eggs, ProductTag.vegetables]
PAYMENTS = [PaymentTag.snap, PaymentTag.wic]
DAYS = [DayOfWeek.monday, DayOfWeek.saturday]
HOURS = {"open": "08:00", "close": "13:00"}

coordinates = st.one_of(
    st.none(),
    st.tuples(st.floats(min_value=36.0, max_value=38.0), st.floats(min_value=-123.0, max_value=-121.0)),
)

market_rows = st.fixed_dictionaries(
    {
        "name": st.sampled_from(NAMES),
        "city": st.sampled_from(CITIES),
        "state": st.sampled_from(STATES),
        "google_rating": st.one_of(st.none(), st.sampled_from([3.5, 4.0, 4.5])),
        "coords": coordinates,
        "products": st.dictionaries(st.sampled_from([t.value for t in PRODUCTS]), st.booleans()),
        "payment_methods": st.dictionaries(st.sampled_from([t.value for t in PAYMENTS]), st.booleans()),
        "schedule": st.dictionaries(st.sampled_from([d.value for d in DAYS]), st.one_of(st.none(), st.just(HOURS))),
        "is_active": st.booleans(),
    }
)


def _to_market(index: int, row: dict) -> MarketRecord:
    state_code, state = row["state"]
    lat, lng = row["coords"] if row["coords"] else (None, None)
    return MarketRecord(
        id=f"m{index:03d}",
        slug=f"m{index:03d}",
        name=row["name"],
        city=row["city"],
        state=state,
        state_code=state_code,
        latitude=lat,
        longitude=lng,
        google_rating=row["google_rating"],
        products=row["products"],
        payment_methods=row["payment_methods"],
        schedule=row["schedule"],
        is_active=row["is_active"],
    )


markets = st.lists(market_rows, max_size=25).map(lambda rows: [_to_market(i, row) for i, row in enumerate(rows)])


def _comma(values):
    return st.lists(st.sampled_from(values), max_size=2).map(",".join)


filter_params = st.fixed_dictionaries(
    {},
    optional={
        "q": st.sampled_from(["alpha", "SALEM", "or", "farm"]),
        "state": st.sampled_from(["ca", "OR", "Oregon"]),
        "city": st.sampled_from(["springfield", "Salem"]),
        "products": _comma([t.value for t in PRODUCTS]),
        "payment_methods": _comma([t.value for t in PAYMENTS]),
        "day": st.sampled_from([d.value for d in DAYS]),
        "limit": st.integers(min_value=1, max_value=10).map(str),
    },
)

geo_params = st.fixed_dictionaries(
    {
        "lat": st.floats(min_value=36.5, max_value=37.5).map(str),
        "lng": st.floats(min_value=-122.5, max_value=-121.5).map(str),
        "radius": st.floats(min_value=1, max_value=80).map(str),
    }
)


def _run(spec, store):
    return asyncio.run(search_markets(spec, store, overfetch_cap=2000))


def _all_pages(params, store):
    first = _run(normalize(params), store)
    pages = [first]
    for number in range(2, first.total_pages + 1):
        pages.append(_run(normalize({**params, "page": str(number)}), store))
    return first, pages


@settings(max_examples=60, deadline=None)
@given(data=markets, params=filter_params)
def test_every_result_satisfies_every_filter(data, params):
    spec = normalize(params)
    _, pages = _all_pages(params, InMemoryMarketStore(data))

    for page in pages:
        for item in page.items:
            market = item.market
            assert market.is_active
            if spec.text:
                assert any(spec.text in (v or "").lower() for v in (market.name, market.city, market.state))
            if spec.state_code:
                assert market.state_code == spec.state_code
            if spec.city:
                assert market.city.lower() == spec.city.lower()
            assert all(market.products.get(tag) is True for tag in spec.products)
            assert all(market.payment_methods.get(tag) is True for tag in spec.payment_methods)
            if spec.day_open:
                assert market.schedule.get(spec.day_open) is not None


@settings(max_examples=60, deadline=None)
@given(data=markets, params=filter_params)
def test_pages_cover_all_matches_without_duplicates(data, params):
    first, pages = _all_pages(params, InMemoryMarketStore(data))

    ids = [item.market.id for page in pages for item in page.items]
    assert all(len(page.items) <= first.limit for page in pages)
    assert len(ids) == len(set(ids))
    assert len(ids) == first.total_matches


@settings(max_examples=60, deadline=None)
@given(data=markets, params=filter_params)
def test_rating_sort_is_descending_with_nulls_last(data, params):
    _, pages = _all_pages({**params, "sort": "rating"}, InMemoryMarketStore(data))
    results = [item.market for page in pages for item in page.items]

    for before, after in zip(results, results[1:]):
        if before.google_rating is None:
            assert after.google_rating is None
            assert before.name <= after.name
        elif after.google_rating is not None:
            assert before.google_rating >= after.google_rating
            if before.google_rating == after.google_rating:
                assert before.name <= after.name


@settings(max_examples=60, deadline=None)
@given(data=markets, params=filter_params, geo=geo_params)
def test_radius_results_are_within_radius_and_ordered_by_distance(data, params, geo):
    spec = normalize({**params, **geo})
    page = _run(spec, InMemoryMarketStore(data))

    distances = []
    for item in page.items:
        market = item.market
        assert market.latitude is not None and market.longitude is not None
        dist = haversine_miles(spec.geo.lat, spec.geo.lng, market.latitude, market.longitude)
        assert dist <= spec.geo.radius_miles + 1e-6
        assert item.distance_miles == dist
        distances.append(dist)
    assert distances == sorted(distances)


@settings(max_examples=30, deadline=None)
@given(data=markets, params=filter_params, geo=st.one_of(st.just({}), geo_params))
def test_identical_searches_give_identical_results(data, params, geo):
    store = InMemoryMarketStore(data)
    spec = normalize({**params, **geo})

    assert _run(spec, store).model_dump_json() == _run(spec, store).model_dump_json()


@settings(max_examples=30, deadline=None)
@given(data=markets, params=filter_params)
def test_forgiving_inputs_match_their_defaults(data, params):
    store = InMemoryMarketStore(data)
    baseline = _run(normalize(params), store)

    assert _run(normalize({**params, "page": "-5"}), store) == baseline
    assert _run(normalize({**params, "sort": "bogus"}), store) == baseline
    assert _run(normalize({**params, "lat": "37.0"}), store) == baseline
