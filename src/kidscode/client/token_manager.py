"""
Client-side CSRF token manager.

Keeps one usable token per client session (one ``httpx.AsyncClient``):

    uninitialized ──cookie fresh──▶ ready
          │                          │  stale (periodic check) / refresh()
          └──no cookie / stale──▶ fetching ──ok──▶ ready
                                     │
                                     └──retries exhausted──▶ failed

Freshness is judged locally from the token's timestamp: a token is used only
while ``age < max_age - refresh_buffer``, which is stricter than the
server's ``age <= max_age``. The client has no secret, so signatures are not
checked here.

Concurrent callers share a single in-flight fetch. The task is owned by the
manager instance, so separate managers never interfere.
"""

import asyncio
import enum
import logging
import time
from typing import Awaitable, Callable
from urllib.parse import unquote

import httpx

from src.kidscode.config import CSRF_COOKIE_NAME, CSRF_MAX_AGE_MS, CSRF_REFRESH_BUFFER_MS
from src.kidscode.csrf import parse_token

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "/api/csrf"
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_CHECK_INTERVAL = 10 * 60.0


class TokenState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    FETCHING = "fetching"
    READY = "ready"
    FAILED = "failed"


class CSRFTokenUnavailable(RuntimeError):
    """No token could be obtained after all retries."""


class _BadTokenResponse(Exception):
    pass


def read_token_cookie(cookies: httpx.Cookies, name: str = CSRF_COOKIE_NAME) -> str | None:
    """Return the (URL-decoded) value of cookie *name*, or None."""
    # Cookies.get() raises CookieConflict when several domains set the name.
    for cookie in cookies.jar:
        if cookie.name == name and cookie.value:
            return unquote(cookie.value)
    return None


def _wall_clock_millis() -> int:
    return time.time_ns() // 1_000_000


class CSRFTokenManager:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        cookie_name: str = CSRF_COOKIE_NAME,
        max_age_millis: int = CSRF_MAX_AGE_MS,
        refresh_buffer_millis: int = CSRF_REFRESH_BUFFER_MS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] = _wall_clock_millis,
    ):
        self._client = client
        self._endpoint = endpoint
        self._cookie_name = cookie_name
        self._refresh_window = max_age_millis - refresh_buffer_millis
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._request_timeout = request_timeout
        self._check_interval = check_interval
        self._sleep = sleep
        self._clock = clock

        self._token: str | None = None
        self._error: str | None = None
        self._state = TokenState.UNINITIALIZED
        self._inflight: asyncio.Task | None = None
        self._auto_refresh: asyncio.Task | None = None

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def state(self) -> TokenState:
        return self._state

    # ── Local checks ──────────────────────────────────────────────────────────

    def get_token_from_cookie(self) -> str | None:
        return read_token_cookie(self._client.cookies, self._cookie_name)

    def is_token_fresh(self, token: str | None = None) -> bool:
        """True if *token* (default: the cached or cookie token) is inside the refresh window."""
        token = token or self._token or self.get_token_from_cookie()
        parsed = parse_token(token)
        if parsed is None:
            return False
        fresh = self._clock() - parsed.issued_at_millis < self._refresh_window
        if not fresh:
            logger.debug("csrf_token_stale token=%s...", token[:8])
        return fresh

    # ── Public API ────────────────────────────────────────────────────────────

    async def get_token(self) -> str:
        """Return a fresh token, fetching one if needed.

        Raises CSRFTokenUnavailable if the issuance endpoint keeps failing.
        """
        if self._state is TokenState.UNINITIALIZED:
            cookie_token = self.get_token_from_cookie()
            if cookie_token and self.is_token_fresh(cookie_token):
                logger.info("csrf_token_from_cookie token=%s...", cookie_token[:8])
                self._token = cookie_token
                self._state = TokenState.READY
                return cookie_token
        elif self._state is TokenState.READY and self.is_token_fresh(self._token):
            return self._token
        return await self.refresh()

    async def refresh(self) -> str:
        """Fetch a new token, joining a fetch that is already in flight."""
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._fetch_with_retry())
        # shield: a cancelled caller must not cancel the fetch other callers wait on.
        return await asyncio.shield(self._inflight)

    async def check_freshness(self) -> None:
        """One tick of the background check: refresh a ready token that went stale."""
        if self._state is not TokenState.READY or self.is_token_fresh(self._token):
            return
        logger.info("csrf_token_auto_refresh")
        try:
            await self.refresh()
        except CSRFTokenUnavailable as exc:
            # State is already FAILED; callers see it on their next get_token().
            logger.error("csrf_token_auto_refresh_failed error=%s", exc)

    def start_auto_refresh(self) -> None:
        if self._auto_refresh is None or self._auto_refresh.done():
            self._auto_refresh = asyncio.create_task(self._auto_refresh_loop())

    async def close(self) -> None:
        """Cancel the background check and any in-flight retry loop."""
        tasks = [t for t in (self._auto_refresh, self._inflight) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._auto_refresh = None
        self._inflight = None
        if self._state is TokenState.FETCHING:
            self._state = TokenState.UNINITIALIZED

    async def __aenter__(self) -> "CSRFTokenManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _auto_refresh_loop(self) -> None:
        while True:
            await self._sleep(self._check_interval)
            await self.check_freshness()

    async def _fetch_with_retry(self) -> str:
        self._state = TokenState.FETCHING
        self._error = None
        attempt = 0
        while True:
            attempt += 1
            try:
                token = await self._fetch_once(attempt)
            except (httpx.HTTPError, ValueError, _BadTokenResponse) as exc:
                reason = str(exc) or type(exc).__name__
                logger.warning("csrf_token_fetch_failed attempt=%d error=%s", attempt, reason)
                if attempt > self._max_retries:
                    self._token = None
                    self._state = TokenState.FAILED
                    self._error = f"Failed to get security token: {reason}"
                    raise CSRFTokenUnavailable(self._error) from exc
                delay = self._backoff_seconds * attempt
                logger.info("csrf_token_fetch_retry attempt=%d delay=%.1fs", attempt + 1, delay)
                await self._sleep(delay)
                continue

            self._token = token
            self._error = None
            self._state = TokenState.READY
            logger.info("csrf_token_fetched attempt=%d token=%s...", attempt, token[:8])
            return token

    async def _fetch_once(self, attempt: int) -> str:
        logger.debug("csrf_token_fetch attempt=%d endpoint=%s", attempt, self._endpoint)
        response = await self._client.get(
            self._endpoint,
            headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
            timeout=self._request_timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict) or not data.get("success") or not data.get("csrfToken"):
            message = data.get("message") if isinstance(data, dict) else None
            raise _BadTokenResponse(message or "Failed to get CSRF token")
        token = data["csrfToken"]
        if parse_token(token) is None:
            raise _BadTokenResponse("Malformed CSRF token in response")
        return token
