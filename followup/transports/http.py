"""HTTP transport posting sends to a provider gateway."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..contracts import ExecutionLogEntry
from ..errors import DispatchError
from ..utils.retry import is_transient, schedule_retry
from .base import BaseTransport, build_payload

logger = logging.getLogger(__name__)


class HttpTransport(BaseTransport):
    """Send messages by POSTing JSON to a channel's provider gateway.

    Network errors and transient HTTP statuses are retried with exponential
    backoff up to ``max_attempts``; any other non-2xx response fails at once.
    """

    def __init__(
        self,
        channel: str,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_base: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.channel = channel
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_base = retry_base
        self._client = client

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def send(self, entry: ExecutionLogEntry) -> Dict[str, Any]:
        await self.connect()
        payload = build_payload(entry)
        message = f"{self.channel} provider was not called"
        details: Dict[str, Any] = {}

        for attempt in range(self.max_attempts):
            if attempt:
                await schedule_retry(attempt, base=self.retry_base)
            try:
                response = await self._client.post(self.url, json=payload, headers=self._headers())
            except httpx.HTTPError as e:
                message = f"{self.channel} provider unreachable: {e}"
                details = {"type": type(e).__name__, "message": str(e)}
                logger.warning(
                    f"Send attempt {attempt + 1}/{self.max_attempts} for log {entry.log_id} failed: {e}"
                )
                continue

            if response.is_success:
                return _response_body(response)

            message = f"{self.channel} provider returned HTTP {response.status_code}"
            details = {"status": response.status_code, "body": _response_body(response)}
            if not is_transient(response.status_code):
                break
            logger.warning(
                f"Send attempt {attempt + 1}/{self.max_attempts} for log {entry.log_id} "
                f"got HTTP {response.status_code}"
            )

        raise DispatchError(message, details=details)


def _response_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"text": response.text}
    return body if isinstance(body, dict) else {"data": body}
