"""
Tools Package
Utility tools for the MedRemind reminder pipeline
"""

from .clock import (
    Clock,
    FixedClock,
    system_clock,
    to_utc_naive,
    to_local,
    format_local_time
)

from .recurrence import (
    NoRepeat,
    Daily,
    Weekly,
    Monthly,
    Custom,
    RecurrenceRule,
    rule_from_occurrence,
    next_fire_time,
    next_fire_time_after
)

from .notification_service import (
    NotificationService,
    NotificationChannel,
    NotificationType,
    NotificationResult,
    NotificationMessage,
    notification_service,
    render_dose_reminder,
    render_missed_dose_alert,
    NOTIFICATION_TEMPLATES
)


__all__ = [
    # Clock
    "Clock",
    "FixedClock",
    "system_clock",
    "to_utc_naive",
    "to_local",
    "format_local_time",

    # Recurrence
    "NoRepeat",
    "Daily",
    "Weekly",
    "Monthly",
    "Custom",
    "RecurrenceRule",
    "rule_from_occurrence",
    "next_fire_time",
    "next_fire_time_after",

    # Notification Service
    "NotificationService",
    "NotificationChannel",
    "NotificationType",
    "NotificationResult",
    "NotificationMessage",
    "notification_service",
    "render_dose_reminder",
    "render_missed_dose_alert",
    "NOTIFICATION_TEMPLATES"
]
