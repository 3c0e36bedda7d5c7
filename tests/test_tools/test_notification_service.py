"""
Tests for Notification Service Tool
Tests message rendering and multi-channel delivery
"""

import time

import pytest
from datetime import datetime
from types import SimpleNamespace

from tools.notification_service import (
    NotificationChannel,
    NotificationService,
    NotificationType,
    render_dose_reminder,
    render_missed_dose_alert,
)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def recipient():
    return SimpleNamespace(
        id=7,
        name="Leo",
        timezone="Asia/Kolkata",
        push_token="leo-device",
        phone="+15550000002",
        email="leo@example.com",
        notify_push=True,
        notify_sms=True,
        notify_email=True,
    )


@pytest.fixture
def occurrence():
    return SimpleNamespace(
        id=42,
        medicine_names=["Metformin", "Lisinopril"],
        effective_fire_time=datetime(2024, 3, 4, 2, 30),
    )


# =============================================================================
# Test Rendering
# =============================================================================

class TestRendering:
    """Tests for reminder and alert templates"""

    @pytest.mark.unit
    def test_dose_reminder_uses_local_time(self, occurrence, recipient):
        message = render_dose_reminder(occurrence, recipient)

        assert message.notification_type == NotificationType.MEDICATION_REMINDER
        assert message.title == "Medicine Reminder"
        assert message.body == "It's time to take Metformin, Lisinopril at 08:00"
        assert message.data["reminder_id"] == "42"

    @pytest.mark.unit
    def test_dose_reminder_without_medicine_names(self, recipient):
        occurrence = SimpleNamespace(id=1, medicine_names=[], effective_fire_time=datetime(2024, 3, 4, 2, 30))
        message = render_dose_reminder(occurrence, recipient)
        assert "your medicine" in message.body

    @pytest.mark.unit
    def test_missed_dose_alert_names_dependent(self, occurrence, recipient):
        message = render_missed_dose_alert(occurrence, recipient)

        assert message.title == "Missed Dose Alert"
        assert message.body == "Leo missed their dose of Metformin, Lisinopril"
        assert message.data["dependent_id"] == "7"


# =============================================================================
# Test Dispatch
# =============================================================================

class TestDispatch:
    """Tests for channel selection and delivery"""

    @pytest.mark.unit
    def test_channels_follow_preferences(self, recipient):
        recipient.notify_sms = False
        channels = NotificationService.channels_for(recipient)
        assert channels == [NotificationChannel.PUSH, NotificationChannel.EMAIL]

    @pytest.mark.asyncio
    async def test_sends_on_every_preferred_channel(self, transports, dispatcher, occurrence, recipient):
        results = await dispatcher.dispatch(recipient, render_dose_reminder(occurrence, recipient))

        assert all(r.success for r in results)
        assert transports[NotificationChannel.PUSH].calls[0][0] == "leo-device"
        assert transports[NotificationChannel.SMS].calls[0][0] == "+15550000002"
        assert transports[NotificationChannel.EMAIL].calls[0][0] == "leo@example.com"

    @pytest.mark.asyncio
    async def test_email_uses_subject_template(self, transports, dispatcher, occurrence, recipient):
        await dispatcher.dispatch(recipient, render_dose_reminder(occurrence, recipient))

        _, subject, _ = transports[NotificationChannel.EMAIL].calls[0]
        assert subject == "Medicine Reminder - Metformin, Lisinopril"

    @pytest.mark.asyncio
    async def test_no_channels_returns_empty(self, dispatcher, occurrence, recipient):
        recipient.notify_push = recipient.notify_sms = recipient.notify_email = False
        assert await dispatcher.dispatch(recipient, render_dose_reminder(occurrence, recipient)) == []

    @pytest.mark.asyncio
    async def test_missing_target_is_not_attempted(self, transports, dispatcher, occurrence, recipient):
        recipient.push_token = None
        result = await dispatcher.send_push(recipient, render_dose_reminder(occurrence, recipient))

        assert result.success is False
        assert result.attempted is False
        assert transports[NotificationChannel.PUSH].calls == []

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_others(self, make_transport, occurrence, recipient):
        service = NotificationService(
            transports={
                NotificationChannel.PUSH: make_transport(fail=True),
                NotificationChannel.SMS: make_transport(),
                NotificationChannel.EMAIL: make_transport(),
            },
            timeout_seconds=5
        )

        results = await service.dispatch(recipient, render_dose_reminder(occurrence, recipient))
        by_channel = {r.channel: r for r in results}

        assert by_channel[NotificationChannel.PUSH].success is False
        assert by_channel[NotificationChannel.PUSH].attempted is True
        assert "provider unavailable" in by_channel[NotificationChannel.PUSH].error
        assert by_channel[NotificationChannel.SMS].success is True
        assert by_channel[NotificationChannel.EMAIL].success is True

    @pytest.mark.asyncio
    async def test_slow_transport_times_out(self, occurrence, recipient):
        def slow(target, title, body):
            time.sleep(0.5)
            return "late"

        service = NotificationService(transports={NotificationChannel.PUSH: slow}, timeout_seconds=0.05)
        result = await service.send_push(recipient, render_dose_reminder(occurrence, recipient))

        assert result.success is False
        assert result.error == "timeout"
