"""Shared HTTP helpers: retry policy and JSON requests over httpx."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx


logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_STATUS = frozenset({429, 500, 502, 503, 504})


def is_transient_error(exc: BaseException) -> bool:
    """DNS/connect/timeout failures and throttling or server-side HTTP errors."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRY_STATUS
    return False


def linear_backoff(step: float) -> Callable[[int], float]:
    """Delay grows by ``step`` seconds per failed attempt."""
    return lambda attempt: step * attempt


@dataclass
class RetryPolicy:
    """Retry an async operation on retryable errors.

    Non-retryable errors (4xx responses, malformed payloads) are re-raised on
    the first failure. The last retryable error is re-raised once
    ``max_attempts`` is used up.
    """

    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default_factory=lambda: linear_backoff(0.5))
    is_retryable: Callable[[BaseException], bool] = is_transient_error
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "") -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.is_retryable(exc):
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    f"[{label}] {type(exc).__name__} on attempt {attempt}/{self.max_attempts}, "
                    f"retrying in {delay:.1f}s"
                )
                await self.sleep(delay)
                attempt += 1


DEFAULT_RETRY = RetryPolicy()


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    json: Any = None,
    policy: RetryPolicy = DEFAULT_RETRY,
    label: str = "",
) -> Any:
    """Send a request and decode its JSON body, retrying transient failures."""

    async def _send() -> Any:
        response = await client.request(method, url, params=params, headers=headers, json=json)
        response.raise_for_status()
        return response.json()

    return await policy.run(_send, label=label or url.rsplit("/", 1)[-1])


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    params: dict[str, Any] | None = None,
    **kwargs: Any,
) -> Any:
    return await request_json(client, "GET", url, params=params, **kwargs)


class AsyncProvider:
    """Lazily created ``httpx.AsyncClient`` shared by one provider's calls.

    A client passed in is borrowed and left open on ``aclose``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self.policy = policy or DEFAULT_RETRY

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
