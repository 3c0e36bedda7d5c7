"""
API Dependencies
Common dependencies for FastAPI endpoints
"""

from typing import NoReturn
from fastapi import HTTPException, status

from services.errors import InvalidTransitionError, NotFoundError, ReminderError, ValidationError


def get_reminder_engine():
    """Reminder scheduling engine dependency (overridable in tests)"""
    from actions.reminder_engine import reminder_engine
    return reminder_engine


def status_code_for(error: ReminderError) -> int:
    """HTTP status for a typed service error"""
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(error, InvalidTransitionError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def raise_http_error(error: ReminderError) -> NoReturn:
    """Translate a typed service error into an HTTPException"""
    raise HTTPException(status_code=status_code_for(error), detail=str(error))
