"""Tests for the alert dispatcher."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from licensing_engine.channels import AlertChannel, default_channel_senders
from licensing_engine.errors import NotFoundError, NoValidChannelsError, ValidationError
from licensing_engine.events import ApplicationAssigned, AsyncEventEmitter, EventMetadata
from licensing_engine.metrics import metrics
from licensing_engine.models import Alert
from licensing_engine.services import AlertService, AlertSubscriber, CreateAlert
from tests.conftest import FailingSender, RecordingSender, add_recipient, make_applicant


def alert_input(applicant_id: int, channels=(), **kwargs) -> CreateAlert:
    values = {
        "title": "Inspection scheduled",
        "message": "An inspector will visit on Monday",
        "type": "SYSTEM_NOTIFICATION",
    }
    values.update(kwargs)
    return CreateAlert(applicant_id=applicant_id, channels=list(channels), **values)


class TestCreateAlert:
    """Test alert creation."""

    async def test_create_without_channels_stays_pending(self, session):
        applicant = await make_applicant(session)
        service = AlertService(session)

        alert = await service.create_alert(
            alert_input(applicant.id, metadata={"inspector": "Bilal"})
        )

        assert alert.status == "PENDING"
        assert alert.is_read is False
        assert alert.priority == "MEDIUM"
        assert alert.metadata_json == {"inspector": "Bilal"}
        assert alert.delivery_results == []

    async def test_create_sends_when_channels_given(self, session):
        applicant = await make_applicant(session)
        await add_recipient(session, applicant.id)

        alert = await AlertService(session).create_alert(
            alert_input(applicant.id, channels=["email", AlertChannel.IN_APP])
        )

        assert alert.channels == ["EMAIL", "IN_APP"]
        assert alert.status == "SENT"
        assert alert.sent_at is not None

    @pytest.mark.parametrize("field", ["title", "message"])
    async def test_title_and_message_required(self, session, field):
        applicant = await make_applicant(session)
        with pytest.raises(ValidationError):
            await AlertService(session).create_alert(alert_input(applicant.id, **{field: ""}))

    async def test_unknown_applicant(self, session):
        with pytest.raises(NotFoundError):
            await AlertService(session).create_alert(alert_input(555))


class TestSendAlert:
    """Test per-channel delivery."""

    async def test_partial_failure_records_each_channel(self, session):
        """A broken email transport does not stop the in-app delivery."""
        applicant = await make_applicant(session)
        await add_recipient(session, applicant.id)
        senders = default_channel_senders()
        senders["EMAIL"] = FailingSender(AlertChannel.EMAIL)
        in_app = RecordingSender(AlertChannel.IN_APP)
        senders["IN_APP"] = in_app
        service = AlertService(session, senders=senders)
        alert = await service.create_alert(alert_input(applicant.id), send=False)

        result = await service.send_alert(alert.id, ["EMAIL", "IN_APP"])

        assert result.success is False
        assert [(r.channel, r.success) for r in result.results] == [
            ("EMAIL", False),
            ("IN_APP", True),
        ]
        assert in_app.sent == [alert.id]
        assert alert.status == "FAILED"
        assert alert.retry_count == 1
        assert alert.failure_reason == "EMAIL: transport down"
        assert alert.delivery_results == [
            {"channel": "EMAIL", "success": False, "error": "transport down"},
            {"channel": "IN_APP", "success": True, "error": None},
        ]
        assert metrics.get("alert_deliveries_total", channel="EMAIL", outcome="failure") == 1
        assert metrics.get("alert_deliveries_total", channel="IN_APP", outcome="success") == 1
        assert (
            metrics.get("side_effect_failures_total", operation="alert_channel:EMAIL") == 1
        )

    async def test_retry_count_accumulates(self, session):
        applicant = await make_applicant(session)
        await add_recipient(session, applicant.id)
        senders = {"EMAIL": FailingSender(AlertChannel.EMAIL)}
        service = AlertService(session, senders=senders)
        alert = await service.create_alert(alert_input(applicant.id), send=False)

        await service.send_alert(alert.id, ["EMAIL"])
        await service.send_alert(alert.id, ["EMAIL"])

        assert alert.retry_count == 2
        assert senders["EMAIL"].calls == 2

    async def test_disallowed_channels_are_skipped(self, session):
        applicant = await make_applicant(session)
        await add_recipient(session, applicant.id, verified_phone=False)
        service = AlertService(session)
        alert = await service.create_alert(alert_input(applicant.id), send=False)

        result = await service.send_alert(alert.id, ["SMS", "EMAIL", "WHATSAPP", "EMAIL"])

        assert result.channels == ["EMAIL"]
        assert alert.status == "SENT"

    async def test_no_valid_channels(self, session):
        applicant = await make_applicant(session)
        await add_recipient(session, applicant.id, verified_phone=False, verified_email=False)
        service = AlertService(session)
        alert = await service.create_alert(alert_input(applicant.id), send=False)

        with pytest.raises(NoValidChannelsError):
            await service.send_alert(alert.id, ["SMS", "EMAIL"])
        assert alert.status == "PENDING"

    async def test_inactive_recipient(self, session):
        applicant = await make_applicant(session)
        await add_recipient(session, applicant.id, is_active=False)
        service = AlertService(session)
        alert = await service.create_alert(alert_input(applicant.id), send=False)

        with pytest.raises(NoValidChannelsError):
            await service.send_alert(alert.id, ["IN_APP"])

    async def test_unsupported_channel_sender(self, session):
        applicant = await make_applicant(session)
        await add_recipient(session, applicant.id, whatsapp_notifications=True)
        service = AlertService(session, senders={})
        alert = await service.create_alert(alert_input(applicant.id), send=False)

        result = await service.send_alert(alert.id, ["WHATSAPP"])

        assert result.results[0].error == "Unsupported channel"
        assert alert.status == "FAILED"

    async def test_missing_recipient(self, session):
        applicant = await make_applicant(session)
        service = AlertService(session)
        alert = await service.create_alert(alert_input(applicant.id), send=False)

        with pytest.raises(NotFoundError) as exc_info:
            await service.send_alert(alert.id, ["IN_APP"])
        assert exc_info.value.entity == "AlertRecipient"

    async def test_missing_alert(self, session):
        with pytest.raises(NotFoundError):
            await AlertService(session).send_alert(42, ["IN_APP"])


class TestReadState:
    """Test read flags, listing and deletion."""

    async def test_mark_read_and_unread_count(self, session):
        applicant = await make_applicant(session)
        service = AlertService(session)
        first = await service.create_alert(alert_input(applicant.id))
        second = await service.create_alert(alert_input(applicant.id))
        await service.create_alert(alert_input(applicant.id))

        assert await service.get_unread_count(applicant.id) == 3

        read = await service.mark_alert_as_read(first.id)
        read_at = read.read_at
        assert read.is_read is True
        assert read.status == "READ"
        assert read_at is not None

        again = await service.mark_alert_as_read(first.id)
        assert again.read_at == read_at

        assert await service.mark_multiple_as_read([first.id, second.id, 999]) == 1
        assert await service.get_unread_count(applicant.id) == 1
        assert await service.mark_multiple_as_read([]) == 0

    async def test_list_newest_first_with_paging(self, session):
        applicant = await make_applicant(session)
        service = AlertService(session)
        ids = [
            (await service.create_alert(alert_input(applicant.id, title=f"Alert {i}"))).id
            for i in range(3)
        ]

        alerts = await service.get_applicant_alerts(applicant.id)
        assert [a.id for a in alerts] == list(reversed(ids))

        page = await service.get_applicant_alerts(applicant.id, limit=1, offset=1)
        assert [a.id for a in page] == [ids[1]]

    async def test_delete(self, session):
        applicant = await make_applicant(session)
        service = AlertService(session)
        alert = await service.create_alert(alert_input(applicant.id))

        await service.delete_alert(alert.id)

        assert await session.scalar(select(Alert).where(Alert.id == alert.id)) is None
        with pytest.raises(NotFoundError):
            await service.delete_alert(alert.id)


class TestRecipients:
    """Test recipient preferences."""

    async def test_get_or_create_defaults(self, session):
        applicant = await make_applicant(session)
        service = AlertService(session)

        recipient = await service.get_or_create_recipient(applicant.id)

        assert recipient.email == "ayesha@example.com"
        assert recipient.phone == "03001234567"
        assert recipient.email_notifications is True
        assert recipient.whatsapp_notifications is False
        assert recipient.verified_email is False
        assert "PAYMENT_DUE" in recipient.alert_types
        assert await service.get_or_create_recipient(applicant.id) is recipient

    async def test_get_or_create_unknown_applicant(self, session):
        with pytest.raises(NotFoundError):
            await AlertService(session).get_or_create_recipient(808)

    async def test_update_preferences(self, session):
        applicant = await make_applicant(session)
        service = AlertService(session)
        await service.get_or_create_recipient(applicant.id)

        recipient = await service.update_recipient_preferences(
            applicant.id, {"sms_notifications": False, "verified_email": True}
        )

        assert recipient.sms_notifications is False
        assert recipient.verified_email is True

    async def test_update_rejects_unknown_fields(self, session):
        applicant = await make_applicant(session)
        service = AlertService(session)
        await service.get_or_create_recipient(applicant.id)

        with pytest.raises(ValidationError):
            await service.update_recipient_preferences(applicant.id, {"applicant_id": 2})

    async def test_update_missing_recipient(self, session):
        applicant = await make_applicant(session)
        with pytest.raises(NotFoundError):
            await AlertService(session).update_recipient_preferences(
                applicant.id, {"is_active": False}
            )


class TestTriggers:
    """Test the typed alert triggers."""

    async def test_trigger_without_recipient_keeps_alert(self, session):
        applicant = await make_applicant(session)

        alert = await AlertService(session).trigger_application_status(
            applicant.id, "REJECTED", "Incomplete documents"
        )

        assert alert.id is not None
        assert alert.type == "APPLICATION_REJECTED"
        assert alert.status == "PENDING"

    async def test_unknown_status_is_system_notification(self, session):
        applicant = await make_applicant(session)
        await add_recipient(session, applicant.id)

        alert = await AlertService(session).trigger_application_status(
            applicant.id, "ON_HOLD", "Awaiting inspection"
        )

        assert alert.type == "SYSTEM_NOTIFICATION"
        assert alert.status == "SENT"

    async def test_psid_expiry(self, session):
        applicant = await make_applicant(session)
        await add_recipient(session, applicant.id)

        alert = await AlertService(session).trigger_psid_expiry(
            applicant.id, "PSID-55", datetime(2025, 4, 1, tzinfo=timezone.utc), 3
        )

        assert alert.type == "PSID_EXPIRING"
        assert "2025-04-01" in alert.message
        assert alert.metadata_json["days_remaining"] == 3


class TestAlertSubscriber:
    """Test event-driven alerts."""

    def _event(self, applicant_id, to_group, is_sent_back=False):
        return ApplicationAssigned(
            metadata=EventMetadata.create(),
            applicant_id=applicant_id,
            assignment_id=1,
            from_group="DG",
            to_group=to_group,
            remarks=None,
            is_sent_back=is_sent_back,
        )

    async def test_forward_move_has_no_alert(self, session):
        applicant = await make_applicant(session)
        service = AlertService(session)
        emitter = AsyncEventEmitter()
        AlertSubscriber(service).register(emitter)

        errors = await emitter.emit(self._event(applicant.id, "DG"))

        assert errors == []
        assert await service.get_applicant_alerts(applicant.id) == []

    async def test_handler_failure_is_isolated(self, session):
        """An alert for a missing applicant fails inside its savepoint only."""
        applicant = await make_applicant(session)
        service = AlertService(session)
        emitter = AsyncEventEmitter()
        AlertSubscriber(service).register(emitter)

        errors = await emitter.emit(self._event(9999, "Download License"))

        assert len(errors) == 1
        assert isinstance(errors[0], NotFoundError)
        # The session is still usable afterwards
        await emitter.emit(self._event(applicant.id, "Download License"))
        alerts = await service.get_applicant_alerts(applicant.id)
        assert [a.type for a in alerts] == ["APPLICATION_APPROVED"]
