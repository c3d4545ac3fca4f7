"""Base transport interface for sending follow-up messages."""

from __future__ import annotations

import abc
from typing import Any, Dict

from ..contracts import ExecutionLogEntry


class BaseTransport(metaclass=abc.ABCMeta):
    """Abstract base transport for one message channel's provider."""

    channel: str = ""

    async def connect(self) -> None:
        """Open connection to provider (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to provider (no-op by default)."""
        pass

    @abc.abstractmethod
    async def send(self, entry: ExecutionLogEntry) -> Dict[str, Any]:
        """Send the message described by ``entry``.

        Returns:
            Provider response metadata, stored on the entry as ``response_data``.

        Raises:
            DispatchError: The provider failed or rejected the send.
        """
        raise NotImplementedError


def build_payload(entry: ExecutionLogEntry) -> Dict[str, Any]:
    """Provider request body for ``entry`` using its frozen step snapshot."""
    step = entry.step
    payload: Dict[str, Any] = {
        "logId": entry.log_id,
        "bookingId": entry.booking_id,
        "channel": step.channel,
        "templateId": step.template_id,
        "templateName": step.template_name,
        "variables": dict(step.variables),
    }
    if step.channel == "email":
        payload.update(
            {
                "to": entry.client_email,
                "toName": entry.client_name,
                "domainName": step.domain_name,
                "senderEmail": step.sender_email,
                "senderName": step.sender_name,
            }
        )
    else:
        payload.update(
            {
                "to": entry.client_phone,
                "parameters": [
                    {"name": name, "value": value} for name, value in step.variables.items()
                ],
            }
        )
    return payload
