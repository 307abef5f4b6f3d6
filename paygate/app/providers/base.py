"""Base class and shared plumbing for payment provider adapters."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Protocol, Tuple, TypeVar
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx

from ..errors import InvalidCredentials, PaymentError, ProviderUnavailable
from .models import (
    ConfirmationResult,
    PaymentMethod,
    ProviderCapabilities,
    ProviderName,
    ProviderSession,
    SessionRequest,
    WebhookNotification,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BAD_CREDENTIAL_MARKERS = (
    "invalid key",
    "invalid api key",
    "invalid secret",
    "invalid authorization",
    "unauthorized",
    "invalid_client",
    "authentication",
)

# SDK calls without their own deadline run here so callers can stop waiting.
_sdk_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="provider-sdk")


class IdempotencyCache(Protocol):
    """Stores the session a provider returned for an idempotency key."""

    def get(self, key: str) -> Optional[ProviderSession]:
        ...

    def set(self, key: str, value: ProviderSession, expires_at: datetime) -> None:
        ...


@dataclass
class _CacheEntry:
    value: ProviderSession
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class InMemoryIdempotencyCache:
    """Thread-safe in-process cache for providers without native idempotency keys."""

    def __init__(self) -> None:
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[ProviderSession]:
        now = datetime.now(timezone.utc)
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            if entry.is_expired(now):
                self._entries.pop(key, None)
                return None
            return entry.value

    def set(self, key: str, value: ProviderSession, expires_at: datetime) -> None:
        now = datetime.now(timezone.utc)
        if expires_at <= now:
            return
        with self._lock:
            self._entries[key] = _CacheEntry(value=value, expires_at=expires_at)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def parse_country_list(value: Optional[str]) -> Optional[FrozenSet[str]]:
    if not value:
        return None
    countries = frozenset(
        part.strip().upper() for part in str(value).split(",") if len(part.strip()) == 2
    )
    return countries or None


def with_query_param(url: str, key: str, value: str) -> str:
    """Set ``key`` on the query string of ``url``, replacing any earlier value.

    Braces stay unescaped so provider templates such as ``{CHECKOUT_SESSION_ID}`` survive.
    """

    parts = urlsplit(url)
    query = [(name, item) for name, item in parse_qsl(parts.query, keep_blank_values=True) if name != key]
    encoded = urlencode(query)
    suffix = f"{quote(key)}={quote(value, safe='{}')}"
    return urlunsplit(parts._replace(query=f"{encoded}&{suffix}" if encoded else suffix))


def looks_like_bad_credentials(body: Any) -> bool:
    text = str(body).lower()
    return any(marker in text for marker in _BAD_CREDENTIAL_MARKERS)


class ProviderAdapter:
    """Uniform interface over one payment provider's HTTP API."""

    name: ProviderName
    capabilities: ProviderCapabilities
    base_url = ""
    required_credentials: Tuple[str, ...] = ()
    session_ttl = timedelta(hours=24)

    def __init__(
        self,
        credentials: Mapping[str, str],
        *,
        timeout: float = 15.0,
        test_mode: bool = True,
        idempotency_cache: Optional[IdempotencyCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.credentials = dict(credentials)
        self.timeout = timeout
        self.test_mode = test_mode
        self._idempotency_cache = idempotency_cache or InMemoryIdempotencyCache()
        self._transport = transport

    def __repr__(self) -> str:
        return f"{type(self).__name__}(fields={sorted(self.credentials)!r}, test_mode={self.test_mode})"

    # Capabilities -----------------------------------------------------------------

    def missing_credentials(self) -> Tuple[str, ...]:
        return tuple(field for field in self.required_credentials if not self.credentials.get(field))

    def allowed_countries(self) -> Optional[FrozenSet[str]]:
        """Admin-configured allow-list, or ``None`` when every supported country is allowed."""

        return parse_country_list(self.credentials.get("allowedCountries"))

    def supported_countries(self) -> Optional[FrozenSet[str]]:
        return self.capabilities.countries

    def supported_currencies(self) -> FrozenSet[str]:
        return self.capabilities.currencies

    def supported_payment_methods(self) -> FrozenSet[PaymentMethod]:
        return self.capabilities.payment_methods

    @property
    def supports_inline(self) -> bool:
        return False

    # Operations -------------------------------------------------------------------

    def create_session(self, request: SessionRequest) -> ProviderSession:
        """Open a checkout session, reusing the earlier one for a repeated idempotency key."""

        if self.capabilities.native_idempotency:
            return self._create_session(request)

        cached = self._idempotency_cache.get(request.idempotency_key)
        if cached is not None:
            logger.debug("Reusing cached %s session %s", self.name.value, cached.reference)
            return cached
        session = self._create_session(request)
        self._idempotency_cache.set(
            request.idempotency_key,
            session,
            datetime.now(timezone.utc) + self.session_ttl,
        )
        return session

    def _create_session(self, request: SessionRequest) -> ProviderSession:
        raise NotImplementedError

    def verify_transaction(self, reference: str) -> ConfirmationResult:
        raise NotImplementedError

    def test_connection(self) -> None:
        """Raise ``InvalidCredentials`` or ``ProviderUnavailable`` if the keys do not work."""

        raise NotImplementedError

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookNotification:
        """Verify the signature on a raw webhook body and extract the payment reference."""

        raise NotImplementedError

    # HTTP helpers -----------------------------------------------------------------

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    def _default_headers(self) -> Dict[str, str]:
        return {}

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        auth: Optional[Tuple[str, str]] = None,
        allow_status: Tuple[int, ...] = (),
    ) -> Tuple[int, Dict[str, Any]]:
        """Send a request and classify failures into the payment error taxonomy."""

        merged_headers = {**self._default_headers(), **(headers or {})}
        try:
            with self._client() as client:
                response = client.request(
                    method,
                    path,
                    json=json,
                    params=params,
                    data=data,
                    headers=merged_headers,
                    auth=auth,
                )
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable(
                message=f"{self.name.value} timed out after {self.timeout}s",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(message=f"{self.name.value} request failed: {type(exc).__name__}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text[:200]}
        if not isinstance(body, dict):
            body = {"data": body}

        status_code = response.status_code
        if status_code in allow_status or response.is_success:
            return status_code, body
        self._raise_for_status(status_code, body)
        return status_code, body

    def _raise_for_status(self, status_code: int, body: Mapping[str, Any]) -> None:
        provider = self.name.value
        message = str(body.get("message") or body.get("error_description") or body.get("error") or "")
        if status_code in (401, 403) or (400 <= status_code < 500 and looks_like_bad_credentials(message)):
            raise InvalidCredentials(
                message=f"{provider} rejected the configured credentials ({status_code}): {message}",
            )
        if status_code == 429 or status_code >= 500:
            raise ProviderUnavailable(message=f"{provider} returned {status_code}: {message}")
        raise ProviderUnavailable(
            message=f"{provider} rejected the request ({status_code}): {message}",
            code="provider_rejected",
            retryable=False,
        )

    def _run_with_timeout(self, func: Callable[[], T]) -> T:
        """Run a blocking SDK call, abandoning the wait after ``timeout`` seconds."""

        future = _sdk_executor.submit(func)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as exc:
            raise ProviderUnavailable(
                message=f"{self.name.value} did not answer within {self.timeout}s",
            ) from exc


def wrap_unexpected(provider: ProviderName, exc: Exception) -> PaymentError:
    if isinstance(exc, PaymentError):
        return exc
    logger.exception("Unexpected %s adapter failure", provider.value, exc_info=exc)
    return ProviderUnavailable(message=f"{provider.value} adapter failed: {type(exc).__name__}")


__all__ = [
    "IdempotencyCache",
    "InMemoryIdempotencyCache",
    "ProviderAdapter",
    "looks_like_bad_credentials",
    "parse_country_list",
    "with_query_param",
    "wrap_unexpected",
]
