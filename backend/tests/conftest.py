from __future__ import annotations

import pytest

from catalog_fixtures import FakeCatalogGateway
from georesolve.services.cache import CatalogCache
from georesolve.services.resolver import AddressResolver


@pytest.fixture
def gateway() -> FakeCatalogGateway:
    return FakeCatalogGateway()


@pytest.fixture
def cache(gateway: FakeCatalogGateway) -> CatalogCache:
    return CatalogCache(gateway)


@pytest.fixture
def make_resolver(cache: CatalogCache):
    def _make(mode: str = "postal_code_first", **kwargs) -> AddressResolver:
        kwargs.setdefault("debounce_seconds", 0.01)
        kwargs.setdefault("lookup_timeout", 1.0)
        return AddressResolver(cache, mode=mode, **kwargs)

    return _make
