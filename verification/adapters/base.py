"""Shared plumbing for diff adapters: errors and the hosted-API request loop."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from flowguard.exceptions import FlowGuardError
from ..types import DiffInput

logger = logging.getLogger(__name__)

MAX_RETRIES = 3


class AdapterError(FlowGuardError):
    """Base exception for diff adapter errors."""
    pass


class InvalidURLError(AdapterError):
    """Raised when a pull/merge request URL cannot be parsed."""
    pass


class AdapterAuthenticationError(AdapterError):
    """Raised when the provider rejects the credentials."""
    pass


class AdapterNotFoundError(AdapterError):
    """Raised when the pull/merge request does not exist."""
    pass


class AdapterAPIError(AdapterError):
    """Raised on other provider API failures, including exhausted rate limits."""
    pass


class DiffAdapter(ABC):
    """Turns some user input (diff text, URL, repository) into a DiffInput."""

    @abstractmethod
    def adapt(self, source: str) -> Any:
        """Return a DiffInput, or an awaitable of one for network adapters."""


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.debug(f"Ignoring unparseable timestamp: {value}")
        return None


class HostedDiffAdapter(DiffAdapter):
    """Adapter backed by a hosted git provider's REST API."""

    provider = 'API'

    def __init__(self, token: Optional[str] = None, timeout: float = 30.0):
        self.token = token
        self.timeout = timeout
        self.headers: Dict[str, str] = {'User-Agent': 'FlowGuard-Verification/1.0'}

    @abstractmethod
    async def adapt(self, source: str) -> DiffInput:
        """Fetch the change set behind a pull/merge request URL."""

    async def _handle_rate_limit(self, response: httpx.Response, retry_count: int) -> None:
        """Sleep until the rate limit resets, or back off exponentially.

        Raises:
            AdapterAPIError: If max retries exceeded
        """
        if retry_count >= MAX_RETRIES:
            raise AdapterAPIError(f"{self.provider} rate limit: maximum retry attempts exceeded")

        reset_time = response.headers.get('X-RateLimit-Reset') or response.headers.get('RateLimit-Reset')
        if reset_time and reset_time.isdigit():
            wait_seconds = max(0, int(reset_time) - int(datetime.now().timestamp())) + 1
        else:
            wait_seconds = 2 ** retry_count

        logger.warning(f"{self.provider} rate limit hit. Waiting {wait_seconds}s...")
        await asyncio.sleep(wait_seconds)

    async def _make_request(self, url: str, retry_count: int = 0) -> Any:
        """GET a provider URL and return the decoded JSON body.

        Raises:
            AdapterAuthenticationError: On 401/403 errors
            AdapterNotFoundError: On 404 errors
            AdapterAPIError: On other API errors
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(url, headers=self.headers)

                if response.status_code == 429:
                    await self._handle_rate_limit(response, retry_count)
                    return await self._make_request(url, retry_count + 1)

                if response.status_code == 401:
                    raise AdapterAuthenticationError(
                        f"{self.provider} authentication failed. Check the configured token."
                    )

                if response.status_code == 403:
                    if 'rate limit' in response.text.lower():
                        await self._handle_rate_limit(response, retry_count)
                        return await self._make_request(url, retry_count + 1)
                    raise AdapterAuthenticationError(
                        f"{self.provider} API access forbidden. Check your token permissions."
                    )

                if response.status_code == 404:
                    raise AdapterNotFoundError(f"Resource not found: {url}")

                response.raise_for_status()
                return response.json()

            except httpx.ConnectError as e:
                raise AdapterAPIError(f"Failed to connect to {self.provider} API: {e}")
            except httpx.TimeoutException as e:
                if retry_count < MAX_RETRIES:
                    logger.warning(f"{self.provider} request timeout. Retrying... ({retry_count + 1}/{MAX_RETRIES})")
                    await asyncio.sleep(2 ** retry_count)
                    return await self._make_request(url, retry_count + 1)
                raise AdapterAPIError(f"{self.provider} API request timeout: {e}")
            except httpx.HTTPStatusError as e:
                raise AdapterAPIError(f"{self.provider} API error: {e}")
