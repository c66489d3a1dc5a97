"""Channel senders that log instead of delivering.

Real email/SMS/WhatsApp transports plug in by implementing
AlertChannelSender and replacing the entries of the sender registry.
"""

from __future__ import annotations

import logging

from licensing_engine.channels.base import AlertChannel, AlertChannelSender, ChannelResult
from licensing_engine.models import Alert, AlertRecipient

logger = logging.getLogger(__name__)


class LoggingEmailSender:
    channel = AlertChannel.EMAIL

    async def send(self, alert: Alert, recipient: AlertRecipient) -> ChannelResult:
        logger.info("Email to %s: %s", recipient.email, alert.title)
        return ChannelResult(channel=self.channel.value, success=True)


class LoggingSmsSender:
    channel = AlertChannel.SMS

    async def send(self, alert: Alert, recipient: AlertRecipient) -> ChannelResult:
        logger.info("SMS to %s: %s", recipient.phone, alert.message)
        return ChannelResult(channel=self.channel.value, success=True)


class LoggingWhatsAppSender:
    channel = AlertChannel.WHATSAPP

    async def send(self, alert: Alert, recipient: AlertRecipient) -> ChannelResult:
        logger.info("WhatsApp to %s: %s", recipient.phone, alert.message)
        return ChannelResult(channel=self.channel.value, success=True)


class InAppSender:
    """In-app alerts are the stored Alert row itself; nothing to deliver."""

    channel = AlertChannel.IN_APP

    async def send(self, alert: Alert, recipient: AlertRecipient) -> ChannelResult:
        return ChannelResult(channel=self.channel.value, success=True)


def default_channel_senders() -> dict[str, AlertChannelSender]:
    """Sender registry keyed by channel name."""
    senders: list[AlertChannelSender] = [
        LoggingEmailSender(),
        LoggingSmsSender(),
        LoggingWhatsAppSender(),
        InAppSender(),
    ]
    return {s.channel.value: s for s in senders}
