"""
Service Errors
Typed failures surfaced to API callers by the reminder services
"""


class ReminderError(Exception):
    """Base class for reminder pipeline errors"""


class NotFoundError(ReminderError):
    """Referenced occurrence, user or medicine does not exist"""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ValidationError(ReminderError, ValueError):
    """Request violates a data invariant (e.g. medicine index out of range)"""


class InvalidTransitionError(ReminderError):
    """Requested state change is not allowed from the current status"""
