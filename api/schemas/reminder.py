"""
Reminder Schemas
Pydantic models for reminder scheduling API requests and responses
"""

from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict, model_validator

from models import CustomUnit, ItemStatus, ReminderStatus, RepeatKind


# ==================== REQUEST SCHEMAS ====================

class ReminderCreate(BaseModel):
    """Schema for creating reminders; one occurrence per entry in fire_times"""
    user_id: int
    medicine_ids: List[int] = Field(..., min_length=1)
    fire_times: List[datetime] = Field(..., min_length=1, description="One per time of day")
    scheduled_end: Optional[datetime] = None
    repeat_kind: RepeatKind = RepeatKind.NONE
    days_of_week: List[int] = Field(default_factory=list, description="0=Sunday .. 6=Saturday")
    days_of_month: List[int] = Field(default_factory=list, description="1..31")
    custom_interval: Optional[int] = Field(None, ge=1)
    custom_unit: Optional[CustomUnit] = None

    @model_validator(mode="after")
    def check_rule_fields(self):
        if self.repeat_kind == RepeatKind.CUSTOM and (self.custom_interval is None or self.custom_unit is None):
            raise ValueError("custom repeats need custom_interval and custom_unit")
        return self


class ScheduleRangeRequest(BaseModel):
    """Schema for scheduling everything in a time window"""
    start: datetime
    end: datetime
    user_id: Optional[int] = None

    @model_validator(mode="after")
    def check_order(self):
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class SnoozeRequest(BaseModel):
    """Schema for snoozing a reminder"""
    minutes: int = Field(..., ge=1, le=24 * 60)


class MarkRequest(BaseModel):
    """Schema for marking one medicine"""
    marked_by: str = Field(default="user", max_length=50)


# ==================== RESPONSE SCHEMAS ====================

class ReminderItemResponse(BaseModel):
    """Per-medicine status"""
    position: int
    medicine_id: int
    status: ItemStatus
    marked_by: Optional[str] = None
    marked_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReminderResponse(BaseModel):
    """Schema for reminder occurrence response"""
    id: int
    user_id: int
    scheduled_start: datetime
    scheduled_end: Optional[datetime] = None
    fire_time: datetime
    snoozed_until: Optional[datetime] = None
    missed_at: Optional[datetime] = None
    repeat_kind: RepeatKind
    days_of_week: Optional[List[int]] = None
    days_of_month: Optional[List[int]] = None
    custom_interval: Optional[int] = None
    custom_unit: Optional[CustomUnit] = None
    status: ReminderStatus
    notification_sent: bool = False
    notification_count: int = 0
    parent_notified: bool = False
    previous_occurrence_id: Optional[int] = None
    active: bool = True
    items: List[ReminderItemResponse] = []

    model_config = ConfigDict(from_attributes=True)


class MarkResponse(BaseModel):
    """Result of marking a medicine taken or missed"""
    reminder: ReminderResponse
    late_correction: bool = False
    message: Optional[str] = None


class ScheduledCountResponse(BaseModel):
    """Number of jobs queued"""
    scheduled: int


class CancelResponse(BaseModel):
    """Result of cancelling a reminder's jobs"""
    reminder_id: int
    cancelled: bool


class QueueStatusResponse(BaseModel):
    """Outstanding delayed jobs"""
    running: bool
    total_jobs: int
    fire_jobs: int
    missed_checks: int
