"""
Services Module
Business logic layer for the MedRemind application
"""

from services.errors import ReminderError, NotFoundError, ValidationError, InvalidTransitionError
from services.reminder_store import ReminderStore, reminder_store
from services.adherence_service import AdherenceService, MarkResult, aggregate_status, adherence_service


__all__ = [
    # Errors
    "ReminderError",
    "NotFoundError",
    "ValidationError",
    "InvalidTransitionError",
    # Service classes
    "ReminderStore",
    "AdherenceService",
    "MarkResult",
    "aggregate_status",
    # Singleton instances
    "reminder_store",
    "adherence_service",
]
