"""
Test Tools Package
Tests for the tools module (recurrence, clock, notification service)
"""

__all__ = [
    "test_recurrence",
    "test_clock",
    "test_notification_service",
]
