"""
Async HTTP Client for Authopsy.

Sends one request per call and condenses the outcome into a ResponseInfo.
Transport failures are reported in the result, never raised.
"""

import json
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from . import __version__
from .models import Endpoint, ResponseInfo, RoleConfig

logger = logging.getLogger(__name__)


def build_query_string(params: Optional[Dict[str, str]]) -> str:
    """Encode query parameters; an empty value is sent as a bare key."""
    if not params:
        return ""
    pairs = [
        quote(key, safe="") if value == "" else f"{quote(key, safe='')}={quote(value, safe='')}"
        for key, value in params.items()
    ]
    return "?" + "&".join(pairs)


class HTTPClient:
    """
    Async HTTP client wrapper around httpx.

    Features:
    - Async/await support via httpx
    - Role credential injection under the role's header name
    - Per-request timeout
    - SSL/TLS and proxy configuration
    - No retries: every failure becomes an error ResponseInfo
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 10,
        verify_ssl: bool = True,
        custom_headers: Optional[Dict[str, str]] = None,
        proxy: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_connections: int = 100,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_connections = max_connections
        self.verify_ssl = verify_ssl
        self.custom_headers = custom_headers or {}
        self.proxy = proxy
        self.transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "HTTPClient":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def start(self) -> None:
        """Initialize the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                # One connection per concurrency slot
                limits=httpx.Limits(max_connections=self.max_connections),
                verify=self.verify_ssl,
                follow_redirects=False,
                proxy=self.proxy,
                transport=self.transport,
                headers={
                    "User-Agent": f"Authopsy/{__version__}",
                    **self.custom_headers,
                },
            )
            logger.debug("HTTP client initialized")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("HTTP client closed")

    def url_for(
        self,
        endpoint: Endpoint,
        path_params: Optional[Dict[str, str]] = None,
        query_params: Optional[Dict[str, str]] = None,
    ) -> str:
        return f"{self.base_url}{endpoint.resolve_path(path_params)}{build_query_string(query_params)}"

    async def send(
        self,
        endpoint: Endpoint,
        role: RoleConfig,
        path_params: Optional[Dict[str, str]] = None,
        body: Optional[Any] = None,
        query_params: Optional[Dict[str, str]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> ResponseInfo:
        """
        Send one request for an endpoint as the given role.

        Args:
            endpoint: Endpoint to call
            role: Role whose credential is attached
            path_params: Placeholder overrides
            body: JSON body for body-bearing methods (defaults to the
                  endpoint's example body)
            query_params: Extra query parameters
            extra_headers: Extra headers, applied after the credential

        Returns:
            ResponseInfo; status 0 and `error` set when the request failed
        """
        if self._client is None:
            await self.start()

        url = self.url_for(endpoint, path_params, query_params)

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if role.token:
            headers[role.header_name] = role.token
        if extra_headers:
            headers.update(extra_headers)

        payload = None
        if endpoint.method.requires_body:
            payload = body if body is not None else endpoint.request_body_example

        start = time.perf_counter()
        try:
            response = await self._client.request(
                method=endpoint.method.value,
                url=url,
                headers=headers,
                content=json.dumps(payload).encode() if payload is not None else None,
            )
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            message = str(e) or e.__class__.__name__
            logger.warning(f"{endpoint.method.value} {url} as {role.role.value} failed: {message}")
            return ResponseInfo.from_error(message, elapsed_ms)

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        content = response.content

        self._log_request(endpoint.method.value, url, role, response.status_code, elapsed_ms)

        return ResponseInfo(
            status=response.status_code,
            size=len(content),
            body=self._parse_body(content),
            headers=dict(response.headers),
            duration_ms=elapsed_ms,
        )

    @staticmethod
    def _parse_body(content: bytes) -> Optional[Any]:
        if not content:
            return None
        try:
            return json.loads(content)
        except (ValueError, RecursionError):
            return None

    def _log_request(
        self,
        method: str,
        url: str,
        role: RoleConfig,
        status_code: int,
        elapsed_ms: int,
    ) -> None:
        logger.debug(f"[{role.role.label}] {method} {url} -> {status_code} ({elapsed_ms}ms)")
