"""
Notification Service Tool
Renders reminder messages and delivers them over push, SMS and email.

Each channel is attempted independently; a failing channel never blocks the
others. Transports are plain callables `(target, title, body) -> message_id`
so they can be swapped out (tests, alternative providers).
"""

import asyncio
import json
import logging
import os
import smtplib
import ssl
from typing import Callable, Dict, List, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.text import MIMEText
from enum import Enum

from config import settings
from tools.clock import format_local_time


logger = logging.getLogger(__name__)


class NotificationChannel(str, Enum):
    """Available notification channels"""
    PUSH = "push"
    SMS = "sms"
    EMAIL = "email"


class NotificationType(str, Enum):
    """Types of notifications"""
    MEDICATION_REMINDER = "medication_reminder"
    MISSED_DOSE_ALERT = "missed_dose_alert"


@dataclass
class NotificationResult:
    """Result of sending a notification on one channel"""
    success: bool
    channel: NotificationChannel
    attempted: bool = True
    message_id: Optional[str] = None
    delivered_at: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class NotificationMessage:
    """Rendered message ready for delivery"""
    notification_type: NotificationType
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


Transport = Callable[[str, str, str], Optional[str]]


# Notification templates
NOTIFICATION_TEMPLATES: Dict[NotificationType, Dict[str, str]] = {
    NotificationType.MEDICATION_REMINDER: {
        "title": "Medicine Reminder",
        "body": "It's time to take {medicines} at {time}",
        "email_subject": "Medicine Reminder - {medicines}",
    },
    NotificationType.MISSED_DOSE_ALERT: {
        "title": "Missed Dose Alert",
        "body": "{name} missed their dose of {medicines}",
        "email_subject": "Missed Dose Alert - {name}",
    },
}


def _join_names(names: List[str]) -> str:
    return ", ".join(names) if names else "your medicine"


def render_dose_reminder(occurrence, user) -> NotificationMessage:
    """Reminder for the user who has to take the dose"""
    template = NOTIFICATION_TEMPLATES[NotificationType.MEDICATION_REMINDER]
    medicines = _join_names(occurrence.medicine_names)
    local_time = format_local_time(occurrence.effective_fire_time, user.timezone)
    return NotificationMessage(
        notification_type=NotificationType.MEDICATION_REMINDER,
        title=template["title"],
        body=template["body"].format(medicines=medicines, time=local_time),
        data={
            "reminder_id": str(occurrence.id),
            "medicines": medicines,
            "type": NotificationType.MEDICATION_REMINDER.value,
        },
    )


def render_missed_dose_alert(occurrence, user) -> NotificationMessage:
    """Alert for the guardian of `user`"""
    template = NOTIFICATION_TEMPLATES[NotificationType.MISSED_DOSE_ALERT]
    medicines = _join_names(occurrence.medicine_names)
    return NotificationMessage(
        notification_type=NotificationType.MISSED_DOSE_ALERT,
        title=template["title"],
        body=template["body"].format(name=user.name, medicines=medicines),
        data={
            "reminder_id": str(occurrence.id),
            "dependent_id": str(user.id),
            "name": user.name,
            "medicines": medicines,
            "type": NotificationType.MISSED_DOSE_ALERT.value,
        },
    )


# ==================== TRANSPORTS ====================

def _ensure_firebase_initialized() -> bool:
    import firebase_admin
    from firebase_admin import credentials

    if firebase_admin._apps:
        return True

    creds = settings.FCM_CREDENTIALS_JSON or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if not creds:
        return False

    options = {"projectId": settings.FCM_PROJECT_ID} if settings.FCM_PROJECT_ID else None
    if creds.strip().startswith("{"):
        cert = credentials.Certificate(json.loads(creds))
    else:
        cert = credentials.Certificate(creds)
    firebase_admin.initialize_app(cert, options=options)
    logger.info("Firebase app initialized for push notifications")
    return True


def fcm_transport(token: str, title: str, body: str) -> Optional[str]:
    """Push via Firebase Cloud Messaging"""
    from firebase_admin import messaging

    if not _ensure_firebase_initialized():
        raise RuntimeError("Push not configured")

    message = messaging.Message(
        token=token,
        notification=messaging.Notification(title=title, body=body),
    )
    return messaging.send(message)


def twilio_transport(phone: str, title: str, body: str) -> Optional[str]:
    """SMS via Twilio"""
    from twilio.rest import Client

    if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_PHONE_NUMBER):
        raise RuntimeError("SMS not configured")

    client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
    sms = client.messages.create(
        body=f"{title}: {body}",
        from_=settings.TWILIO_PHONE_NUMBER,
        to=phone
    )
    return sms.sid


def smtp_transport(address: str, subject: str, body: str) -> Optional[str]:
    """Email via SMTP (SSL on port 465, STARTTLS otherwise)"""
    if not (settings.SMTP_SERVER and settings.FROM_EMAIL):
        raise RuntimeError("Email not configured")

    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = settings.FROM_EMAIL
    msg["To"] = address

    context = ssl.create_default_context()
    timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
    if settings.SMTP_PORT == 465:
        with smtplib.SMTP_SSL(settings.SMTP_SERVER, settings.SMTP_PORT, context=context, timeout=timeout) as server:
            if settings.SMTP_USERNAME:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
            server.send_message(msg)
    else:
        with smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT, timeout=timeout) as server:
            server.starttls(context=context)
            if settings.SMTP_USERNAME:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
            server.send_message(msg)
    return None


DEFAULT_TRANSPORTS: Dict[NotificationChannel, Transport] = {
    NotificationChannel.PUSH: fcm_transport,
    NotificationChannel.SMS: twilio_transport,
    NotificationChannel.EMAIL: smtp_transport,
}


class NotificationService:
    """
    Multi-channel dispatcher for dose reminders and guardian alerts
    """

    def __init__(
        self,
        transports: Optional[Dict[NotificationChannel, Transport]] = None,
        timeout_seconds: Optional[float] = None
    ):
        self.templates = NOTIFICATION_TEMPLATES
        self.transports = dict(DEFAULT_TRANSPORTS)
        if transports:
            self.transports.update(transports)
        self.timeout_seconds = timeout_seconds or settings.NOTIFICATION_TIMEOUT_SECONDS

    @staticmethod
    def channels_for(user) -> List[NotificationChannel]:
        """Channels the user opted into"""
        channels = []
        if user.notify_push:
            channels.append(NotificationChannel.PUSH)
        if user.notify_sms:
            channels.append(NotificationChannel.SMS)
        if user.notify_email:
            channels.append(NotificationChannel.EMAIL)
        return channels

    async def dispatch(self, user, message: NotificationMessage) -> List[NotificationResult]:
        """
        Send `message` to `user` on every preferred channel

        Returns:
            One result per channel
        """
        channels = self.channels_for(user)
        if not channels:
            logger.info(f"User {user.id} has no notification channels enabled")
            return []

        results = await asyncio.gather(*(self._send(channel, user, message) for channel in channels))
        sent = [r.channel.value for r in results if r.success]
        logger.info(
            f"{message.notification_type.value} to user {user.id}: "
            f"delivered via {sent or 'no channel'}"
        )
        return list(results)

    async def send_push(self, user, message: NotificationMessage) -> NotificationResult:
        return await self._send(NotificationChannel.PUSH, user, message)

    async def send_sms(self, user, message: NotificationMessage) -> NotificationResult:
        return await self._send(NotificationChannel.SMS, user, message)

    async def send_email(self, user, message: NotificationMessage) -> NotificationResult:
        return await self._send(NotificationChannel.EMAIL, user, message)

    def _target_for(self, channel: NotificationChannel, user) -> Optional[str]:
        if channel == NotificationChannel.PUSH:
            return user.push_token
        if channel == NotificationChannel.SMS:
            return user.phone
        if channel == NotificationChannel.EMAIL:
            return user.email
        return None

    def _title_for(self, channel: NotificationChannel, message: NotificationMessage) -> str:
        if channel != NotificationChannel.EMAIL:
            return message.title
        subject = self.templates.get(message.notification_type, {}).get("email_subject")
        if not subject:
            return message.title
        try:
            return subject.format(**message.data)
        except KeyError:
            return message.title

    async def _send(
        self,
        channel: NotificationChannel,
        user,
        message: NotificationMessage
    ) -> NotificationResult:
        """Deliver on one channel; never raises"""
        target = self._target_for(channel, user)
        if not target:
            return NotificationResult(
                success=False,
                channel=channel,
                attempted=False,
                error=f"No {channel.value} target for user {user.id}"
            )

        transport = self.transports.get(channel)
        if transport is None:
            return NotificationResult(
                success=False,
                channel=channel,
                attempted=False,
                error=f"Unsupported channel: {channel}"
            )

        try:
            message_id = await asyncio.wait_for(
                asyncio.to_thread(transport, target, self._title_for(channel, message), message.body),
                timeout=self.timeout_seconds
            )
            return NotificationResult(
                success=True,
                channel=channel,
                message_id=message_id,
                delivered_at=datetime.utcnow()
            )
        except asyncio.TimeoutError:
            logger.error(f"{channel.value} send to user {user.id} timed out")
            return NotificationResult(success=False, channel=channel, error="timeout")
        except Exception as e:
            logger.error(f"{channel.value} send to user {user.id} failed: {e}")
            return NotificationResult(success=False, channel=channel, error=str(e))


notification_service = NotificationService()
