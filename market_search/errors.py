from __future__ import annotations


class MarketSearchError(Exception):
    """Base class for errors raised by the search pipeline."""


class QueryValidationError(MarketSearchError):
    """Request parameters could not be turned into a search."""


class BadGeoError(QueryValidationError):
    """lat/lng/radius were partially given, non-numeric or out of range."""


class StoreError(MarketSearchError):
    """The market store could not answer the query."""
