"""Alert dispatcher.

Persists applicant alerts and fans them out to notification channels.
Each requested channel that the recipient allows is attempted
independently; the per-channel outcome is stored on the alert so one
broken transport never suppresses the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from licensing_engine.channels import AlertChannel, AlertChannelSender, ChannelResult
from licensing_engine.channels import default_channel_senders
from licensing_engine.errors import NotFoundError, NoValidChannelsError, ValidationError
from licensing_engine.events import (
    ApplicationAssigned,
    AsyncEventEmitter,
    PaymentFailed,
    PaymentRecorded,
)
from licensing_engine.metrics import metrics
from licensing_engine.models import Alert, AlertRecipient, Applicant
from licensing_engine.models.base import utcnow
from licensing_engine.services.workflow import WorkflowStateMachine

logger = logging.getLogger(__name__)


class AlertType(str, Enum):
    PAYMENT_DUE = "PAYMENT_DUE"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_OVERDUE = "PAYMENT_OVERDUE"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    APPLICATION_APPROVED = "APPLICATION_APPROVED"
    APPLICATION_REJECTED = "APPLICATION_REJECTED"
    APPLICATION_RETURNED = "APPLICATION_RETURNED"
    APPLICATION_SUBMITTED = "APPLICATION_SUBMITTED"
    PSID_EXPIRING = "PSID_EXPIRING"
    PSID_EXPIRED = "PSID_EXPIRED"
    DOCUMENT_UPLOAD_REQUIRED = "DOCUMENT_UPLOAD_REQUIRED"
    SYSTEM_NOTIFICATION = "SYSTEM_NOTIFICATION"


class AlertPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    DELIVERED = "DELIVERED"
    READ = "READ"
    ARCHIVED = "ARCHIVED"


APPLICATION_STATUS_TYPES = {
    "APPROVED": AlertType.APPLICATION_APPROVED,
    "REJECTED": AlertType.APPLICATION_REJECTED,
    "RETURNED": AlertType.APPLICATION_RETURNED,
}

PREFERENCE_FIELDS = frozenset(
    {
        "email",
        "phone",
        "email_notifications",
        "sms_notifications",
        "in_app_notifications",
        "whatsapp_notifications",
        "alert_types",
        "verified_email",
        "verified_phone",
        "is_active",
    }
)


@dataclass
class CreateAlert:
    """Input for AlertService.create_alert."""

    applicant_id: int
    title: str
    message: str
    type: str
    priority: str = AlertPriority.MEDIUM.value
    channels: list[str] = field(default_factory=list)
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SendResult:
    """Outcome of AlertService.send_alert."""

    alert: Alert
    channels: list[str]
    results: list[ChannelResult]

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)


def channel_allowed(channel: str, recipient: AlertRecipient) -> bool:
    """Whether the recipient's preferences and verification permit `channel`."""
    if channel == AlertChannel.EMAIL.value:
        return recipient.email_notifications and recipient.verified_email
    if channel == AlertChannel.SMS.value:
        return recipient.sms_notifications and recipient.verified_phone
    if channel == AlertChannel.WHATSAPP.value:
        return recipient.whatsapp_notifications and recipient.verified_phone
    if channel == AlertChannel.IN_APP.value:
        return recipient.in_app_notifications
    return False


def _channel_name(channel: Any) -> str:
    return channel.value if isinstance(channel, Enum) else str(channel).upper()


class AlertService:
    """Alert persistence, delivery and read-state management."""

    def __init__(
        self,
        session: AsyncSession,
        senders: dict[str, AlertChannelSender] | None = None,
    ):
        self.session = session
        self.senders = senders if senders is not None else default_channel_senders()

    # -------------------------------------------------------------------------
    # Create / send
    # -------------------------------------------------------------------------

    async def create_alert(self, data: CreateAlert, send: bool = True) -> Alert:
        """Persist a PENDING alert and send it when channels were requested."""
        if not data.title or not data.message:
            raise ValidationError("Alert title and message are required")
        if await self.session.get(Applicant, data.applicant_id) is None:
            raise NotFoundError("Applicant", data.applicant_id)

        channels = [_channel_name(c) for c in data.channels]
        alert = Alert(
            applicant_id=data.applicant_id,
            title=data.title,
            message=data.message,
            description=data.description,
            type=data.type,
            priority=data.priority or AlertPriority.MEDIUM.value,
            channels=channels,
            status=AlertStatus.PENDING.value,
            is_read=False,
            metadata_json=dict(data.metadata),
            delivery_results=[],
        )
        self.session.add(alert)
        await self.session.flush()

        if send and channels:
            await self.send_alert(alert.id, channels)
        return alert

    async def send_alert(self, alert_id: int, channels: Sequence[str]) -> SendResult:
        """Deliver an alert on every allowed channel.

        Raises:
            NotFoundError: alert or recipient missing
            NoValidChannelsError: no requested channel is allowed
        """
        alert = await self.session.get(Alert, alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id)
        recipient = await self.get_recipient(alert.applicant_id)
        if recipient is None:
            raise NotFoundError("AlertRecipient", alert.applicant_id)

        requested = [_channel_name(c) for c in channels]
        valid = [c for c in dict.fromkeys(requested) if recipient.is_active and channel_allowed(c, recipient)]
        if not valid:
            raise NoValidChannelsError(f"No valid channels available for alert {alert_id}")

        results = [await self._deliver(alert, recipient, channel) for channel in valid]

        alert.delivery_results = [r.to_dict() for r in results]
        if all(r.success for r in results):
            alert.status = AlertStatus.SENT.value
            alert.sent_at = utcnow()
            alert.failure_reason = None
        else:
            alert.status = AlertStatus.FAILED.value
            alert.retry_count = (alert.retry_count or 0) + 1
            alert.failure_reason = "; ".join(
                f"{r.channel}: {r.error or 'unknown error'}" for r in results if not r.success
            )
            logger.warning("Alert %s partially failed: %s", alert_id, alert.failure_reason)
        await self.session.flush()

        return SendResult(alert=alert, channels=valid, results=results)

    async def _deliver(
        self, alert: Alert, recipient: AlertRecipient, channel: str
    ) -> ChannelResult:
        sender = self.senders.get(channel)
        if sender is None:
            result = ChannelResult(channel=channel, success=False, error="Unsupported channel")
        else:
            try:
                result = await sender.send(alert, recipient)
            except Exception as e:
                logger.exception("Channel %s failed for alert %s", channel, alert.id)
                metrics.increment("side_effect_failures_total", operation=f"alert_channel:{channel}")
                result = ChannelResult(channel=channel, success=False, error=str(e) or type(e).__name__)

        metrics.increment(
            "alert_deliveries_total",
            channel=channel,
            outcome="success" if result.success else "failure",
        )
        return result

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    async def get_alert(self, alert_id: int) -> Alert:
        alert = await self.session.get(Alert, alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id)
        return alert

    async def get_applicant_alerts(
        self, applicant_id: int, limit: int = 50, offset: int = 0
    ) -> list[Alert]:
        """Newest first."""
        result = await self.session.scalars(
            select(Alert)
            .where(Alert.applicant_id == applicant_id)
            .order_by(Alert.created_at.desc(), Alert.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.all())

    async def get_unread_count(self, applicant_id: int) -> int:
        count = await self.session.scalar(
            select(func.count())
            .select_from(Alert)
            .where(Alert.applicant_id == applicant_id, Alert.is_read.is_(False))
        )
        return count or 0

    async def mark_alert_as_read(self, alert_id: int) -> Alert:
        """Mark one alert read. Already-read alerts are left unchanged."""
        alert = await self.get_alert(alert_id)
        if not alert.is_read:
            self._mark_read(alert)
            await self.session.flush()
        return alert

    async def mark_multiple_as_read(self, alert_ids: Sequence[int]) -> int:
        """Mark alerts read; returns how many actually changed."""
        if not alert_ids:
            return 0
        result = await self.session.scalars(
            select(Alert).where(Alert.id.in_(alert_ids), Alert.is_read.is_(False))
        )
        changed = 0
        for alert in result.all():
            self._mark_read(alert)
            changed += 1
        await self.session.flush()
        return changed

    @staticmethod
    def _mark_read(alert: Alert) -> None:
        alert.is_read = True
        alert.read_at = utcnow()
        alert.status = AlertStatus.READ.value

    async def delete_alert(self, alert_id: int) -> None:
        alert = await self.get_alert(alert_id)
        await self.session.delete(alert)
        await self.session.flush()

    # -------------------------------------------------------------------------
    # Recipients
    # -------------------------------------------------------------------------

    async def get_recipient(self, applicant_id: int) -> AlertRecipient | None:
        return await self.session.scalar(
            select(AlertRecipient).where(AlertRecipient.applicant_id == applicant_id)
        )

    async def get_or_create_recipient(
        self, applicant_id: int, email: str | None = None, phone: str | None = None
    ) -> AlertRecipient:
        """Recipient row for an applicant, created with default preferences."""
        recipient = await self.get_recipient(applicant_id)
        if recipient is not None:
            return recipient

        applicant = await self.session.get(Applicant, applicant_id)
        if applicant is None:
            raise NotFoundError("Applicant", applicant_id)
        recipient = AlertRecipient(
            applicant_id=applicant_id,
            email=email or applicant.email,
            phone=phone or applicant.mobile_no,
            email_notifications=True,
            sms_notifications=True,
            in_app_notifications=True,
            whatsapp_notifications=False,
            alert_types=[t.value for t in AlertType],
            verified_email=False,
            verified_phone=False,
            is_active=True,
        )
        self.session.add(recipient)
        await self.session.flush()
        return recipient

    async def update_recipient_preferences(
        self, applicant_id: int, preferences: dict[str, Any]
    ) -> AlertRecipient:
        unknown = set(preferences) - PREFERENCE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown preference fields: {', '.join(sorted(unknown))}")
        recipient = await self.get_recipient(applicant_id)
        if recipient is None:
            raise NotFoundError("AlertRecipient", applicant_id)
        for key, value in preferences.items():
            setattr(recipient, key, value)
        await self.session.flush()
        return recipient

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    async def _trigger(self, data: CreateAlert) -> Alert:
        """Store the alert, then attempt delivery.

        Missing recipients and disallowed channels leave the alert PENDING
        (it is still visible in-app); they never fail the trigger.
        """
        alert = await self.create_alert(data, send=False)
        try:
            await self.send_alert(alert.id, data.channels)
        except (NotFoundError, NoValidChannelsError) as e:
            logger.info("Alert %s for applicant %s not sent: %s", alert.id, data.applicant_id, e)
        return alert

    async def trigger_payment_due(
        self,
        applicant_id: int,
        amount_due: Decimal,
        due_date: datetime,
        days_until_due: int | None = None,
    ) -> Alert:
        return await self._trigger(
            CreateAlert(
                applicant_id=applicant_id,
                title="Payment Due Reminder",
                message=f"Your payment of PKR {amount_due:.2f} is due on {due_date:%Y-%m-%d}",
                type=AlertType.PAYMENT_DUE.value,
                priority=AlertPriority.HIGH.value,
                channels=[AlertChannel.EMAIL.value, AlertChannel.SMS.value, AlertChannel.IN_APP.value],
                metadata={
                    "amount_due": str(amount_due),
                    "due_date": due_date.isoformat(),
                    "days_until_due": days_until_due,
                },
            )
        )

    async def trigger_payment_received(
        self, applicant_id: int, amount_paid: Decimal, reference: str
    ) -> Alert:
        return await self._trigger(
            CreateAlert(
                applicant_id=applicant_id,
                title="Payment Received",
                message=f"We have received your payment of PKR {amount_paid:.2f} (Ref: {reference})",
                type=AlertType.PAYMENT_RECEIVED.value,
                priority=AlertPriority.MEDIUM.value,
                channels=[AlertChannel.EMAIL.value, AlertChannel.IN_APP.value],
                metadata={"amount_paid": str(amount_paid), "reference": reference},
            )
        )

    async def trigger_payment_failed(self, applicant_id: int, reference: str, reason: str) -> Alert:
        return await self._trigger(
            CreateAlert(
                applicant_id=applicant_id,
                title="Payment Failed",
                message=f"Your payment for PSID {reference} failed: {reason}",
                type=AlertType.PAYMENT_FAILED.value,
                priority=AlertPriority.HIGH.value,
                channels=[AlertChannel.EMAIL.value, AlertChannel.IN_APP.value],
                metadata={"reference": reference, "reason": reason},
            )
        )

    async def trigger_application_status(
        self, applicant_id: int, status: str, message: str
    ) -> Alert:
        alert_type = APPLICATION_STATUS_TYPES.get(status, AlertType.SYSTEM_NOTIFICATION)
        return await self._trigger(
            CreateAlert(
                applicant_id=applicant_id,
                title=f"Application {status}",
                message=message,
                type=alert_type.value,
                priority=(AlertPriority.HIGH if status == "APPROVED" else AlertPriority.MEDIUM).value,
                channels=[AlertChannel.EMAIL.value, AlertChannel.IN_APP.value],
                metadata={"status": status},
            )
        )

    async def trigger_psid_expiry(
        self, applicant_id: int, psid: str, expiry_date: datetime, days_remaining: int
    ) -> Alert:
        return await self._trigger(
            CreateAlert(
                applicant_id=applicant_id,
                title="PSID Expiring Soon",
                message=(
                    f"Your PSID {psid} will expire in {days_remaining} days "
                    f"({expiry_date:%Y-%m-%d})"
                ),
                type=AlertType.PSID_EXPIRING.value,
                priority=AlertPriority.HIGH.value,
                channels=[AlertChannel.EMAIL.value, AlertChannel.SMS.value, AlertChannel.IN_APP.value],
                metadata={
                    "psid": psid,
                    "expiry_date": expiry_date.isoformat(),
                    "days_remaining": days_remaining,
                },
            )
        )


class AlertSubscriber:
    """Turns domain events into applicant alerts.

    Each handler runs in a SAVEPOINT on the shared session, so a failing
    alert write is rolled back on its own and the emitter logs it.
    """

    def __init__(self, alerts: AlertService):
        self.alerts = alerts

    def register(self, emitter: AsyncEventEmitter) -> None:
        emitter.on(PaymentRecorded, self.on_payment_recorded)
        emitter.on(PaymentFailed, self.on_payment_failed)
        emitter.on(ApplicationAssigned, self.on_application_assigned)

    async def on_payment_recorded(self, event: PaymentRecorded) -> None:
        async with self.alerts.session.begin_nested():
            await self.alerts.trigger_payment_received(
                event.applicant_id, event.amount, event.reference
            )

    async def on_payment_failed(self, event: PaymentFailed) -> None:
        if event.applicant_id is None:
            return
        async with self.alerts.session.begin_nested():
            await self.alerts.trigger_payment_failed(
                event.applicant_id, event.reference, event.reason
            )

    async def on_application_assigned(self, event: ApplicationAssigned) -> None:
        if WorkflowStateMachine.is_terminal(event.to_group):
            status, message = "APPROVED", "Your application is approved. Your license is ready to download."
        elif event.is_sent_back:
            status, message = "RETURNED", (
                f"Your application was returned to {event.to_group}"
                + (f": {event.remarks}" if event.remarks else "")
            )
        else:
            return
        async with self.alerts.session.begin_nested():
            await self.alerts.trigger_application_status(event.applicant_id, status, message)
