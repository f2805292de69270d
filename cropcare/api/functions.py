"""Client for the serverless functions (analysis, chat, translation, weather)."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import backoff
import httpx

from cropcare.config import Config
from cropcare.core.constants import APIConstants
from cropcare.exceptions import (
    APIError,
    AuthenticationError,
    QuotaExceededError,
    RateLimitError,
    ServiceError,
    TransientNetworkError,
)


def error_for_status(status_code: int, method_name: str, response_text: str, retry_after: str | None = None) -> APIError:
    """Map a non-2xx status onto the exception hierarchy."""
    error_map = {
        401: lambda: AuthenticationError(f"Unauthorized access in {method_name}", response_text),
        402: lambda: QuotaExceededError(response_text=response_text),
        429: lambda: RateLimitError(
            response_text=response_text,
            retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
        ),
    }

    if status_code in error_map:
        return error_map[status_code]()
    if 500 <= status_code < 600:
        return ServiceError(status_code, f"Server error in {method_name}", response_text)
    return ServiceError(status_code, f"Unexpected response status {status_code} in {method_name}", response_text)


class FunctionsClient:
    """Async client for the backend's serverless function endpoints."""

    def __init__(
        self,
        base_url: str,
        token: str,
        api_key: str | None = None,
        timeout: float = APIConstants.REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the functions client.

        Args:
            base_url: ``<project>/functions/v1``
            token: Bearer token (user session or publishable key)
            api_key: Publishable key sent as ``apikey``
            timeout: Transport timeout in seconds
            transport: Optional transport override
        """
        self.logger = logging.getLogger(__name__)
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.api_key = api_key
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)
        self.logger.debug(f"FunctionsClient initialized for {self.base_url}")

    @classmethod
    def from_config(cls, config: Config, transport: httpx.AsyncBaseTransport | None = None) -> "FunctionsClient":
        return cls(
            config.functions_url,
            config.bearer_token(),
            api_key=config.require_anon_key(),
            timeout=config.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "FunctionsClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.logger.debug("Closing functions client")
        await self.client.aclose()

    @property
    def headers(self) -> dict[str, str]:
        """Get request headers."""
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        if self.api_key:
            headers["apikey"] = self.api_key
        return headers

    async def invoke(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        """Call a function and return its JSON body.

        Raises:
            TransientNetworkError: If the transport fails
            APIError: For any non-2xx status or an ``error`` field in the body
        """
        method_name = f"POST /{name}"
        self.logger.debug(f"Making request: {method_name}")

        try:
            response = await self.client.post(f"/{name}", json=body, headers=self.headers)
        except httpx.TransportError as e:
            raise TransientNetworkError(method_name, str(e) or type(e).__name__) from e

        if not response.is_success:
            raise error_for_status(
                response.status_code, method_name, response.text, response.headers.get("Retry-After")
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ServiceError(response.status_code, f"Invalid JSON from {method_name}", response.text) from e

        if isinstance(data, dict) and data.get("error"):
            raise ServiceError(response.status_code, str(data["error"]), response.text)
        if not isinstance(data, dict):
            raise ServiceError(response.status_code, f"Unexpected payload from {method_name}", response.text)
        return data

    @backoff.on_exception(
        backoff.expo,
        (TransientNetworkError,),
        max_tries=APIConstants.BACKOFF_MAX_TRIES,
        factor=APIConstants.BACKOFF_FACTOR,
        max_value=APIConstants.BACKOFF_MAX_VALUE,
    )
    async def invoke_with_retry(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        """``invoke`` with exponential backoff on transport failures.

        Only used for idempotent background reads; interactive calls never retry.
        """
        return await self.invoke(name, body)

    @asynccontextmanager
    async def stream(self, name: str, body: dict[str, Any]) -> AsyncIterator[httpx.Response]:
        """Open a streamed call and yield the accepted response.

        The status is checked before yielding, so the body of a yielded response
        is always the event stream. A connection lost while reading the body
        surfaces as ``TransientNetworkError``.
        """
        method_name = f"POST /{name} (stream)"
        self.logger.debug(f"Opening stream: {method_name}")

        request = self.client.build_request("POST", f"/{name}", json=body, headers=self.headers)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TransportError as e:
            raise TransientNetworkError(method_name, str(e) or type(e).__name__) from e

        try:
            if not response.is_success:
                await response.aread()
                raise error_for_status(
                    response.status_code, method_name, response.text, response.headers.get("Retry-After")
                )
            try:
                yield response
            except httpx.TransportError as e:
                # Connection dropped while the body was being read
                raise TransientNetworkError(method_name, str(e) or type(e).__name__) from e
        finally:
            await response.aclose()
