"""
CSRF-aware HTTP helpers for KidsCode API clients.

SecureClient wraps an ``httpx.AsyncClient`` that talks to the KidsCode
server:

    request / post / put / patch / delete
        POST/PUT/PATCH/DELETE carry the token in the ``x-csrf-token``
        header. The token is the caller's ``csrf_token`` argument, else the
        ``csrf-token`` cookie in the client's jar. With neither, the call
        fails with CSRFTokenMissingError before anything is sent.
    submit_form
        Form/multipart POST; the token travels as the ``csrf_token`` field.
    get (and request() with GET/HEAD/OPTIONS)
        No token. Raises httpx.HTTPStatusError on a 4xx/5xx response.

With a CSRFTokenManager attached, a write rejected with 403
``CSRF_INVALID``/``CSRF_MISSING`` is retried once with a freshly fetched
token. A second rejection is returned to the caller unchanged.
"""

import logging

import httpx

from src.kidscode.client.token_manager import CSRFTokenManager, read_token_cookie
from src.kidscode.config import CSRF_COOKIE_NAME, CSRF_FORM_FIELD, CSRF_HEADER_NAME

logger = logging.getLogger(__name__)

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_RETRYABLE_CODES = frozenset({"CSRF_INVALID", "CSRF_MISSING"})


class CSRFTokenMissingError(RuntimeError):
    """A write was attempted with no CSRF token available."""


def rejection_code(response: httpx.Response) -> str | None:
    """Return the ``code`` of a 403 CSRF rejection body, else None."""
    if response.status_code != 403:
        return None
    try:
        data = response.json()
    except ValueError:
        return None
    return data.get("code") if isinstance(data, dict) else None


class SecureClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        token_manager: CSRFTokenManager | None = None,
        cookie_name: str = CSRF_COOKIE_NAME,
        header_name: str = CSRF_HEADER_NAME,
    ):
        self._client = client
        self._token_manager = token_manager
        self._cookie_name = cookie_name
        self._header_name = header_name

    def _resolve_token(self, csrf_token: str | None, action: str) -> str:
        token = csrf_token or read_token_cookie(self._client.cookies, self._cookie_name)
        if not token:
            logger.warning("csrf_token_unavailable action=%s", action)
            raise CSRFTokenMissingError(f"CSRF token required for this {action}")
        return token

    def _should_retry(self, response: httpx.Response) -> bool:
        return self._token_manager is not None and rejection_code(response) in _RETRYABLE_CODES

    async def _read(self, method: str, url: str, headers, kwargs) -> httpx.Response:
        logger.debug("secure_read method=%s url=%s", method, url)
        response = await self._client.request(method, url, headers=headers, **kwargs)
        if response.is_error:
            logger.error(
                "secure_read_failed method=%s url=%s status=%d", method, url, response.status_code
            )
        response.raise_for_status()
        return response

    async def _send(self, method: str, url: str, token: str, headers, kwargs) -> httpx.Response:
        merged = httpx.Headers(headers)
        merged[self._header_name] = token
        logger.debug("csrf_header_attached method=%s url=%s", method, url)
        return await self._client.request(method, url, headers=merged, **kwargs)

    async def request(
        self,
        method: str,
        url: str,
        *,
        csrf_token: str | None = None,
        skip_csrf: bool = False,
        headers=None,
        **kwargs,
    ) -> httpx.Response:
        method = method.upper()
        if method not in WRITE_METHODS:
            return await self._read(method, url, headers, kwargs)
        if skip_csrf:
            return await self._client.request(method, url, headers=headers, **kwargs)

        token = self._resolve_token(csrf_token, "operation")
        response = await self._send(method, url, token, headers, kwargs)
        if self._should_retry(response):
            logger.info(
                "csrf_retry code=%s method=%s url=%s", rejection_code(response), method, url
            )
            token = await self._token_manager.refresh()
            response = await self._send(method, url, token, headers, kwargs)
        return response

    async def post(self, url: str, data=None, **kwargs) -> httpx.Response:
        return await self.request("POST", url, json=data, **kwargs)

    async def put(self, url: str, data=None, **kwargs) -> httpx.Response:
        return await self.request("PUT", url, json=data, **kwargs)

    async def patch(self, url: str, data=None, **kwargs) -> httpx.Response:
        return await self.request("PATCH", url, json=data, **kwargs)

    async def delete(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def submit_form(
        self,
        url: str,
        data: dict | None = None,
        *,
        files=None,
        csrf_token: str | None = None,
        skip_csrf: bool = False,
        **kwargs,
    ) -> httpx.Response:
        """POST form fields (and optional files) with the token as a form field."""
        fields = dict(data or {})
        if skip_csrf:
            return await self._client.post(url, data=fields, files=files, **kwargs)

        fields[CSRF_FORM_FIELD] = self._resolve_token(csrf_token, "form submission")
        logger.debug("csrf_field_attached url=%s", url)
        response = await self._client.post(url, data=fields, files=files, **kwargs)
        # File objects are consumed by the first send, so only plain forms retry.
        if files is None and self._should_retry(response):
            logger.info("csrf_retry code=%s method=POST url=%s", rejection_code(response), url)
            fields[CSRF_FORM_FIELD] = await self._token_manager.refresh()
            response = await self._client.post(url, data=fields, **kwargs)
        return response

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)
