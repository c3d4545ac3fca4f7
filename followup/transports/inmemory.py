"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Set

from ..contracts import ExecutionLogEntry
from ..errors import DispatchError
from .base import BaseTransport, build_payload


class InMemoryTransport(BaseTransport):
    """Records sends instead of contacting a provider.

    Recipients listed in ``fail_for`` (email address or phone) are rejected
    with a ``DispatchError`` so failure paths can be exercised.
    """

    def __init__(self, channel: str = "email", fail_for: Optional[Set[str]] = None) -> None:
        self.channel = channel
        self.fail_for: Set[str] = set(fail_for or ())
        self.sent: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def send(self, entry: ExecutionLogEntry) -> Dict[str, Any]:
        payload = build_payload(entry)
        if payload["to"] is None:
            raise DispatchError(
                f"No {entry.step.channel} address for booking {entry.booking_id}",
                details={"payload": payload},
            )
        if payload["to"] in self.fail_for:
            raise DispatchError(
                f"Provider rejected message to {payload['to']}",
                details={"code": "rejected", "payload": payload},
            )
        async with self._lock:
            self.sent.append(payload)
            message_id = f"{self.channel}-{len(self.sent)}"
        return {"messageId": message_id, "channel": self.channel}
