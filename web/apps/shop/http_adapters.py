"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements concrete HTTP clients for the shop ports using
``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
    the gateway middleware.
- Circuit breaker per downstream service (catalog, settlement) to avoid
    hammering unhealthy dependencies, with HALF_OPEN probing after a timeout.
- Retry policy with exponential backoff for transport errors and 5xx. Reads
    and settlement are retried; catalog writes are sent once.
- Settlement idempotency: every settlement request carries an
    ``Idempotency-Key`` header so a retried sale is committed at most once.
"""

import logging
import os
import sys
import threading
import time
from decimal import Decimal
from typing import Optional, Sequence

import httpx
from django.conf import settings
from django.utils.module_loading import import_string
from pydantic import BaseModel

from .domain import (
    CartLine,
    CatalogLoadFailure,
    CatalogPort,
    CircuitOpen,
    Item,
    ItemSize,
    ItemStatus,
    Modifier,
    ModifierKind,
    SaleReceipt,
    SettlementPort,
    SettlementPending,
    SettlementRejected,
    UnresolvedReference,
)

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")
logger = logging.getLogger(__name__)

# detail returned by the settlement service while a keyed sale is being committed
IDEMPOTENCY_IN_PROGRESS = "IDEMPOTENCY_IN_PROGRESS"


def _is_test_mode() -> bool:
    return (
        "pytest" in sys.modules
        or os.environ.get("PYTEST_CURRENT_TEST") is not None
        or os.environ.get("PYTEST_RUNNING") == "1"
    )


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; only one probe may be in
      flight; a failed probe opens the circuit again.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Raises:
            CircuitOpen: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpen()
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise CircuitOpen("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False
                logger.warning("circuit opened", extra={"circuit": self.name, "failures": self._failures})

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


_catalog_cb = CircuitBreaker(
    "catalog",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)
_settlement_cb = CircuitBreaker(
    "settlement",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport exceptions or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _send(
    breaker: CircuitBreaker,
    method: str,
    url: str,
    timeout: float,
    *,
    retry: bool = True,
    json: object = None,
    headers: Optional[dict] = None,
) -> httpx.Response:
    """Send a request through a circuit breaker with exponential backoff.

    Responses below 500 are returned to the caller, which maps business
    outcomes (404, 409, 422) itself; they do not count as circuit failures.

    Args:
        breaker: Circuit breaker guarding the downstream service.
        method: HTTP method.
        url: Absolute URL.
        timeout: Per-attempt timeout in seconds.
        retry: Whether transport errors and 5xx are retried.
        json: Optional JSON body.
        headers: Extra headers merged over the correlation headers.

    Returns:
        httpx.Response: The first response with a status below 500.

    Raises:
        CircuitOpen: If the circuit is open.
        httpx.RequestError: For network/transport errors after retries.
        httpx.HTTPStatusError: For 5xx responses after retries.
    """
    max_retries, backoff = _retry_policy()
    if not retry:
        max_retries = 1
    elif _is_test_mode():
        max_retries = max(max_retries, 1)
        backoff = 0.0
    tries = 0

    state = breaker.before_call()
    hdrs = _request_headers({**(headers or {}), "X-Circuit-State": state, "X-Retry-Count": "0"})

    try:
        with httpx.Client(timeout=timeout) as client:
            while True:
                resp = None
                exc = None
                try:
                    resp = client.request(method, url, json=json, headers=hdrs)
                    if resp.status_code < 500:
                        breaker.on_success()
                        return resp
                except httpx.RequestError as e:
                    exc = e

                tries += 1
                hdrs["X-Retry-Count"] = str(tries)

                if tries >= max_retries or not _should_retry(resp, exc):
                    breaker.on_failure()
                    if exc:
                        raise exc
                    resp.raise_for_status()

                sleep_s = backoff * (2 ** (tries - 1))
                cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                if not _is_test_mode():
                    time.sleep(min(sleep_s, cap))
    finally:
        breaker.on_finish()


# ---------------- Wire models ---------------- #

class _ItemWire(BaseModel):
    id: int
    name: str
    base_price: Decimal
    stock: int
    status: ItemStatus = ItemStatus.ACTIVE
    kind: str | None = None
    material: str | None = None
    size: ItemSize = ItemSize.MEDIUM

    def to_domain(self) -> Item:
        return Item(**self.model_dump())


class _ModifierWire(BaseModel):
    id: int
    name: str
    kind: ModifierKind
    value: Decimal

    def to_domain(self) -> Modifier:
        return Modifier(**self.model_dump())


def _rejection_reason(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message") or body.get("detail")
    return None


# ---------------- Catalog Adapter ---------------- #

class HttpCatalogClient(CatalogPort):
    """HTTP client for the catalog service with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.CATALOG_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _read(self, path: str) -> list[dict]:
        try:
            resp = _send(_catalog_cb, "GET", f"{self.base_url}{path}", self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, CircuitOpen, ValueError) as e:
            raise CatalogLoadFailure() from e

    def _write(self, path: str, payload: dict | None = None) -> httpx.Response:
        return _send(_catalog_cb, "POST", f"{self.base_url}{path}", self.timeout, retry=False, json=payload)

    def health(self) -> bool:
        try:
            resp = _send(_catalog_cb, "GET", f"{self.base_url}/health", self.timeout, retry=False)
        except (httpx.HTTPError, CircuitOpen):
            return False
        return resp.status_code == 200

    def list_items(self) -> list[Item]:
        """Fetch every item from the catalog service.

        Raises:
            CatalogLoadFailure: On transport errors, open circuit, non-2xx
                responses or a malformed body.
        """
        rows = self._read("/items")
        try:
            return [_ItemWire.model_validate(r).to_domain() for r in rows]
        except ValueError as e:
            raise CatalogLoadFailure() from e

    def list_modifiers(self) -> list[Modifier]:
        rows = self._read("/modifiers")
        try:
            return [_ModifierWire.model_validate(r).to_domain() for r in rows]
        except ValueError as e:
            raise CatalogLoadFailure() from e

    def create_item(
        self,
        name: str,
        base_price: Decimal,
        stock: int,
        kind: str | None = None,
        material: str | None = None,
        size: ItemSize = ItemSize.MEDIUM,
    ) -> Item:
        payload = {
            "name": name,
            "base_price": str(base_price),
            "stock": stock,
            "kind": kind,
            "material": material,
            "size": ItemSize(size).value,
        }
        resp = self._write("/items", payload)
        resp.raise_for_status()
        return _ItemWire.model_validate(resp.json()).to_domain()

    def create_modifier(self, name: str, kind: ModifierKind, value: Decimal) -> Modifier:
        payload = {"name": name, "kind": ModifierKind(kind).value, "value": str(value)}
        resp = self._write("/modifiers", payload)
        resp.raise_for_status()
        return _ModifierWire.model_validate(resp.json()).to_domain()

    def set_item_status(self, item_id: int, status: ItemStatus) -> Item:
        action = "activate" if status == ItemStatus.ACTIVE else "deactivate"
        resp = self._write(f"/items/{item_id}/{action}")
        if resp.status_code == 404:
            raise UnresolvedReference(item_id)
        resp.raise_for_status()
        return _ItemWire.model_validate(resp.json()).to_domain()


# ---------------- Settlement Adapter ---------------- #

class HttpSettlementClient(SettlementPort):
    """HTTP client for the settlement endpoint with retry and circuit breaker.

    Business mappings:
    - 200 → SaleReceipt built from ``message`` and ``total_paid``.
    - 409 IDEMPOTENCY_IN_PROGRESS → SettlementPending: an earlier attempt
      with the same key is still being committed, so the outcome is unknown.
    - Any other 4xx (422 insufficient stock, 409 key conflict) →
      SettlementRejected with the service's message, or the generic
      insufficient-stock reason when none is given.
    None of these count as circuit failures.
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.SETTLEMENT_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def settle(self, lines: Sequence[CartLine], idempotency_key: str | None = None) -> SaleReceipt:
        """Submit the cart to ``POST /sales``.

        Raises:
            SettlementPending: While an attempt with the same key is in flight.
            SettlementRejected: On 422 and any other 4xx response.
            CircuitOpen: If the circuit is open.
            httpx.RequestError: For network/transport errors after retries.
            httpx.HTTPStatusError: For 5xx responses after retries.
        """
        payload = {"lines": [line.to_payload() for line in lines]}
        extras = {}
        if idempotency_key:
            extras["Idempotency-Key"] = idempotency_key

        resp = _send(
            _settlement_cb, "POST", f"{self.base_url}/sales", self.timeout, json=payload, headers=extras
        )
        if resp.status_code == 200:
            data = resp.json()
            return SaleReceipt(message=data.get("message", ""), total_paid=Decimal(str(data["total_paid"])))
        reason = _rejection_reason(resp)
        if resp.status_code == 409 and reason == IDEMPOTENCY_IN_PROGRESS:
            raise SettlementPending()
        raise SettlementRejected(reason)
