"""Base protocol and types for alert channel senders."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from licensing_engine.models import Alert, AlertRecipient


class AlertChannel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    IN_APP = "IN_APP"
    WHATSAPP = "WHATSAPP"


@dataclass(frozen=True)
class ChannelResult:
    """Outcome of one delivery attempt on one channel."""

    channel: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"channel": self.channel, "success": self.success, "error": self.error}


@runtime_checkable
class AlertChannelSender(Protocol):
    """Transport for one notification channel.

    Senders may raise; the dispatcher records an exception as a failed
    ChannelResult and carries on with the remaining channels.
    """

    channel: AlertChannel

    async def send(self, alert: Alert, recipient: AlertRecipient) -> ChannelResult:
        """Deliver `alert` to `recipient`."""
        ...
