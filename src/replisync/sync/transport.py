"""
HTTP client for the master's sync endpoints.

    GET  <sync_url>/pull/<entity_type>   -> JSON array of records
    POST <sync_url>/push/<entity_type>   <- JSON array of outbound records

Every failure (bad status, timeout, connection error, malformed body) is
raised as TransportError so the engines have a single thing to catch.
Connection errors, timeouts and 5xx responses are retried with exponential
backoff up to `max_retries` attempts in total; 4xx responses are not.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """A master call did not produce a usable response."""


class MasterClient:
    """Thin async wrapper over httpx for the pull/push endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 25.0,
        max_retries: int = 1,
        backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Sync endpoint root, e.g. "https://master.example.com/api/sync".
            timeout: Per-request timeout in seconds.
            max_retries: Total attempts for retryable failures (>= 1).
            backoff: Initial sleep between attempts; doubled after each.
            transport: Optional httpx transport (httpx.MockTransport in tests).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff = backoff
        self._transport = transport

    async def pull(self, entity_type: str) -> List[Dict[str, Any]]:
        data = await self._request(
            "GET", f"/pull/{entity_type}", headers={"Accept": "application/json"}
        )
        if not isinstance(data, list):
            raise TransportError(f"Invalid response format for {entity_type}")
        return data

    async def push(self, entity_type: str, records: List[Dict[str, Any]]) -> Any:
        return await self._request("POST", f"/push/{entity_type}", json=records)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        delay = self.backoff
        last_error = "no attempt made"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.request(method, url, **kwargs)
                except httpx.TimeoutException:
                    last_error = f"Request timed out after {self.timeout}s"
                except httpx.TransportError as exc:
                    last_error = f"Connection failed: {exc}"
                else:
                    if response.is_success:
                        return self._decode(response)
                    last_error = f"Server responded with HTTP {response.status_code}"
                    if response.status_code < 500:
                        raise TransportError(last_error)

                logger.warning(
                    "%s %s failed (%s), attempt %d/%d",
                    method, path, last_error, attempt, self.max_retries,
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(delay)
                    delay *= 2

        raise TransportError(last_error)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"Malformed JSON response: {exc}") from exc
