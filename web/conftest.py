import pytest
from django.core.cache import cache

from apps.shop import http_adapters, providers


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    cache.clear()
    http_adapters._catalog_cb.on_success()
    http_adapters._settlement_cb.on_success()
    yield
    providers.reset_memory_catalog()


@pytest.fixture
def catalog():
    """Empty in-process catalog wired into the gateway for this test."""
    return providers.reset_memory_catalog()
