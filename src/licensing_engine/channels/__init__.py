"""Notification channel senders used by the alert dispatcher."""

from licensing_engine.channels.base import AlertChannel, AlertChannelSender, ChannelResult
from licensing_engine.channels.stub import (
    InAppSender,
    LoggingEmailSender,
    LoggingSmsSender,
    LoggingWhatsAppSender,
    default_channel_senders,
)

__all__ = [
    "AlertChannel",
    "AlertChannelSender",
    "ChannelResult",
    "InAppSender",
    "LoggingEmailSender",
    "LoggingSmsSender",
    "LoggingWhatsAppSender",
    "default_channel_senders",
]
