"""HTTP page fetcher with retries, identity rotation and size limits."""

from __future__ import annotations

import asyncio
import logging
import random
import ssl
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

import httpx

from ..constants import ACCEPT_HEADERS, ACCEPT_LANGUAGE, USER_AGENTS

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024


class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    HTTP_ERROR = "http-error"
    BLOCKED = "blocked"
    NOT_FOUND = "not-found"
    EMPTY_BODY = "empty-body"
    NETWORK_ERROR = "network-error"
    INVALID_URL = "invalid-url"


class FetchError(Exception):
    """A fetch that ended without usable HTML."""

    def __init__(
        self,
        kind: FetchErrorKind,
        message: str,
        *,
        status_code: Optional[int] = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        if self.kind in (FetchErrorKind.TIMEOUT, FetchErrorKind.NETWORK_ERROR):
            return True
        if self.kind == FetchErrorKind.HTTP_ERROR and self.status_code is not None:
            return self.status_code >= 500 or self.status_code == 429
        return False

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code:
            return f"{self.kind.value}: {base} (HTTP {self.status_code})"
        return f"{self.kind.value}: {base}"


@dataclass
class FetchResult:
    html: str
    final_url: str
    status_code: int
    attempts: int = 1
    truncated: bool = False


class _Retry(Exception):
    """Internal: the attempt failed but another one may succeed."""

    def __init__(self, error: FetchError, delay: Optional[float] = None):
        super().__init__(str(error))
        self.error = error
        self.delay = delay


def _is_tls_error(exc: BaseException) -> bool:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ssl.SSLError):
            return True
        text = str(current).lower()
        if "certificate" in text or "ssl" in text or "tls" in text:
            return True
        current = current.__cause__ or current.__context__
    return False


def _retry_after_seconds(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class Fetcher:
    """Fetches raw HTML for a URL.

    Retries timeouts, network errors, 5xx, 401/403 and 429 with exponential
    backoff and a fresh browser identity. 404/410 and other 4xx fail fast.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 10.0,
        rate_limit_backoff: float = 5.0,
        max_redirects: int = 5,
        max_bytes: int = DEFAULT_MAX_BYTES,
        user_agents: Sequence[str] = USER_AGENTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.timeout = timeout
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.rate_limit_backoff = rate_limit_backoff
        self.max_redirects = max_redirects
        self.max_bytes = max_bytes
        self.user_agents = list(user_agents) or list(USER_AGENTS)
        self._transport = transport
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.backoff_max, self.backoff_base * (2 ** attempt))

    def _headers(self, attempt: int, offset: int) -> dict[str, str]:
        return {
            "User-Agent": self.user_agents[(offset + attempt) % len(self.user_agents)],
            "Accept": ACCEPT_HEADERS[(offset + attempt) % len(ACCEPT_HEADERS)],
            "Accept-Language": ACCEPT_LANGUAGE,
            "Accept-Encoding": "gzip, deflate",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }

    async def fetch(
        self,
        url: str,
        *,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> FetchResult:
        """Fetch ``url``; raises FetchError once the attempt budget is spent.

        ``deadline`` is an absolute ``time.monotonic()`` value; no attempt
        is started after it and none runs past it.
        """
        attempts = max(1, int(max_attempts or self.max_attempts))
        per_attempt = timeout or self.timeout
        offset = self._rng.randrange(len(self.user_agents))
        target = url
        tried_http = False
        last_error: Optional[FetchError] = None

        attempt = 0
        while attempt < attempts:
            budget = per_attempt
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                budget = min(budget, remaining)

            try:
                result = await self._attempt(target, self._headers(attempt, offset), budget)
                result.attempts = attempt + 1
                return result
            except _Retry as retry:
                last_error = retry.error
                last_error.attempts = attempt + 1
                if (
                    retry.error.kind == FetchErrorKind.NETWORK_ERROR
                    and not tried_http
                    and target.startswith("https://")
                    and _is_tls_error(retry.__cause__ or retry)
                ):
                    tried_http = True
                    target = "http://" + target[len("https://"):]
                    logger.warning("TLS failure for %s, next attempt over http", url)
                    delay = 0.0
                else:
                    delay = retry.delay if retry.delay is not None else self.backoff_delay(attempt)
            except FetchError as exc:
                exc.attempts = attempt + 1
                raise

            attempt += 1
            if attempt >= attempts:
                break
            if deadline is not None:
                delay = min(delay, max(0.0, deadline - time.monotonic()))
            logger.warning(
                "Fetch attempt %s/%s for %s failed (%s), retrying in %.1fs",
                attempt,
                attempts,
                url,
                last_error,
                delay,
            )
            if delay > 0:
                await self._sleep(delay)

        if last_error is None:
            raise FetchError(FetchErrorKind.TIMEOUT, "deadline exceeded before fetch", attempts=0)
        raise last_error

    async def _attempt(self, url: str, headers: dict[str, str], budget: float) -> FetchResult:
        try:
            return await asyncio.wait_for(self._request(url, headers, budget), timeout=budget)
        except asyncio.TimeoutError as exc:
            raise _Retry(FetchError(FetchErrorKind.TIMEOUT, f"timed out after {budget:.1f}s")) from exc

    async def _request(self, url: str, headers: dict[str, str], budget: float) -> FetchResult:
        try:
            async with httpx.AsyncClient(
                timeout=budget,
                follow_redirects=True,
                max_redirects=self.max_redirects,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url, headers=headers) as response:
                    self._check_status(response)
                    body, truncated = await self._read_capped(response)
                    encoding = response.encoding or "utf-8"
                    final_url = str(response.url)
                    status_code = response.status_code
        except (_Retry, FetchError):
            raise
        except httpx.TimeoutException as exc:
            raise _Retry(FetchError(FetchErrorKind.TIMEOUT, str(exc) or "request timed out")) from exc
        except httpx.TooManyRedirects as exc:
            raise FetchError(FetchErrorKind.HTTP_ERROR, f"more than {self.max_redirects} redirects") from exc
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise FetchError(FetchErrorKind.INVALID_URL, str(exc)) from exc
        except httpx.HTTPError as exc:
            raise _Retry(FetchError(FetchErrorKind.NETWORK_ERROR, str(exc) or type(exc).__name__)) from exc

        html = body.decode(encoding, errors="replace")
        if not html.strip():
            raise FetchError(FetchErrorKind.EMPTY_BODY, "empty response body", status_code=status_code)
        if truncated:
            logger.warning("Response for %s exceeded %s bytes, truncated", url, self.max_bytes)
        return FetchResult(html=html, final_url=final_url, status_code=status_code, truncated=truncated)

    def _check_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        if status in (404, 410):
            raise FetchError(FetchErrorKind.NOT_FOUND, "page not found", status_code=status)
        if status in (401, 403):
            raise _Retry(FetchError(FetchErrorKind.BLOCKED, "request blocked", status_code=status))
        if status == 429:
            delay = _retry_after_seconds(response.headers.get("Retry-After"))
            if delay is None:
                delay = self.rate_limit_backoff
            raise _Retry(
                FetchError(FetchErrorKind.HTTP_ERROR, "rate limited", status_code=status),
                delay=min(delay, self.backoff_max * 3),
            )
        if status >= 500:
            raise _Retry(FetchError(FetchErrorKind.HTTP_ERROR, "server error", status_code=status))
        raise FetchError(FetchErrorKind.HTTP_ERROR, "client error", status_code=status)

    async def _read_capped(self, response: httpx.Response) -> tuple[bytes, bool]:
        chunks: list[bytes] = []
        size = 0
        async for chunk in response.aiter_bytes():
            if size + len(chunk) > self.max_bytes:
                chunks.append(chunk[: self.max_bytes - size])
                return b"".join(chunks), True
            chunks.append(chunk)
            size += len(chunk)
        return b"".join(chunks), False
