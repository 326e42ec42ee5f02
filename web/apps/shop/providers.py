"""Service provider helpers for wiring the cart session with ports.

By default the gateway talks to the catalog service through the HTTP adapter
clients (``settings.USE_HTTP_ADAPTERS``). When the adapters are disabled, it
uses one process-wide ``InMemoryCatalog`` acting as both catalog store and
settlement service. That setup suits tests and local development.
"""

from typing import Iterable

from django.conf import settings

from .adapters import InMemoryCatalog
from .domain import CartLine, CatalogPort, SettlementPort
from .http_adapters import HttpCatalogClient, HttpSettlementClient
from .session import CartSession

_memory_catalog = InMemoryCatalog()


def _use_http() -> bool:
    return bool(getattr(settings, "USE_HTTP_ADAPTERS", True))


def get_memory_catalog() -> InMemoryCatalog:
    return _memory_catalog


def reset_memory_catalog() -> InMemoryCatalog:
    """Replace the in-process catalog with an empty one and return it."""
    global _memory_catalog
    _memory_catalog = InMemoryCatalog()
    return _memory_catalog


def get_catalog() -> CatalogPort:
    if _use_http():
        return HttpCatalogClient()
    return _memory_catalog


def get_settlement() -> SettlementPort:
    if _use_http():
        return HttpSettlementClient()
    return _memory_catalog


def open_session(lines: Iterable[CartLine] = (), checkout_key: str | None = None) -> CartSession:
    """Return a CartSession holding ``lines`` with a freshly loaded snapshot.

    ``checkout_key`` is the idempotency key of a checkout whose outcome is
    still unknown, carried over from the web session.

    Returns:
        CartSession: Session wired with the configured ports.
    """
    session = CartSession(
        catalog=get_catalog(), settlement=get_settlement(), lines=lines, checkout_key=checkout_key
    )
    session.reload()
    return session
