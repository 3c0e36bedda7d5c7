"""
Reminders API Router
Endpoints for reminder creation, scheduling and dose marking
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, status

from api.deps import get_reminder_engine, raise_http_error
from api.schemas.reminder import (
    CancelResponse,
    MarkRequest,
    MarkResponse,
    QueueStatusResponse,
    ReminderCreate,
    ReminderResponse,
    ScheduledCountResponse,
    ScheduleRangeRequest,
    SnoozeRequest,
)
from services.errors import ReminderError


router = APIRouter(prefix="/reminders", tags=["reminders"])


def _mark_response(result) -> MarkResponse:
    return MarkResponse(
        reminder=ReminderResponse.model_validate(result.occurrence),
        late_correction=result.late_correction,
        message=result.message
    )


# ==================== CRUD ====================

@router.post("/", response_model=List[ReminderResponse], status_code=status.HTTP_201_CREATED)
async def create_reminders(reminder_data: ReminderCreate, engine=Depends(get_reminder_engine)):
    """
    Create one reminder occurrence per fire time and queue them.
    Nothing is created unless every fire time is valid.
    """
    try:
        occurrences = await engine.create_reminders(
            user_id=reminder_data.user_id,
            medicine_ids=reminder_data.medicine_ids,
            fire_times=reminder_data.fire_times,
            scheduled_end=reminder_data.scheduled_end,
            repeat_kind=reminder_data.repeat_kind,
            days_of_week=reminder_data.days_of_week,
            days_of_month=reminder_data.days_of_month,
            custom_interval=reminder_data.custom_interval,
            custom_unit=reminder_data.custom_unit
        )
    except ReminderError as e:
        raise_http_error(e)

    return [ReminderResponse.model_validate(o) for o in occurrences]


@router.get("/queue/status", response_model=QueueStatusResponse)
async def get_queue_status(engine=Depends(get_reminder_engine)):
    """Outstanding delayed jobs"""
    return QueueStatusResponse(**engine.queue_status())


@router.get("/{reminder_id}", response_model=ReminderResponse)
async def get_reminder(reminder_id: int, engine=Depends(get_reminder_engine)):
    try:
        occurrence = await engine.get_reminder(reminder_id)
    except ReminderError as e:
        raise_http_error(e)
    return ReminderResponse.model_validate(occurrence)


@router.delete("/{reminder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reminder(reminder_id: int, engine=Depends(get_reminder_engine)):
    """
    Cancel a reminder's jobs and delete it
    """
    try:
        await engine.delete_reminder(reminder_id)
    except ReminderError as e:
        raise_http_error(e)


# ==================== SCHEDULING ====================

@router.post("/schedule-range", response_model=ScheduledCountResponse)
async def schedule_range(request: ScheduleRangeRequest, engine=Depends(get_reminder_engine)):
    """
    Queue every pending reminder firing within the window
    """
    try:
        count = await engine.schedule_range(request.start, request.end, request.user_id)
    except ReminderError as e:
        raise_http_error(e)
    return ScheduledCountResponse(scheduled=count)


@router.post("/users/{user_id}/schedule", response_model=ScheduledCountResponse)
async def schedule_for_user(user_id: int, engine=Depends(get_reminder_engine)):
    """
    Queue a user's upcoming reminders (after login or registration)
    """
    count = await engine.schedule_for_user(user_id)
    return ScheduledCountResponse(scheduled=count)


@router.post("/{reminder_id}/cancel", response_model=CancelResponse)
async def cancel_reminder(reminder_id: int, engine=Depends(get_reminder_engine)):
    cancelled = engine.cancel(reminder_id)
    return CancelResponse(reminder_id=reminder_id, cancelled=cancelled)


@router.post("/{reminder_id}/snooze", response_model=ReminderResponse)
async def snooze_reminder(reminder_id: int, request: SnoozeRequest, engine=Depends(get_reminder_engine)):
    """
    Snooze a reminder for the given number of minutes
    """
    try:
        occurrence = await engine.snooze(reminder_id, request.minutes)
    except ReminderError as e:
        raise_http_error(e)
    return ReminderResponse.model_validate(occurrence)


# ==================== DOSE MARKING ====================

@router.post("/{reminder_id}/items/{medicine_index}/taken", response_model=MarkResponse)
async def mark_taken(
    reminder_id: int,
    medicine_index: int,
    request: Optional[MarkRequest] = None,
    engine=Depends(get_reminder_engine)
):
    """
    Mark one medicine of a reminder as taken
    """
    marked_by = request.marked_by if request else "user"
    try:
        result = await engine.mark_taken(reminder_id, medicine_index, marked_by)
    except ReminderError as e:
        raise_http_error(e)
    return _mark_response(result)


@router.post("/{reminder_id}/items/{medicine_index}/missed", response_model=MarkResponse)
async def mark_missed(
    reminder_id: int,
    medicine_index: int,
    request: Optional[MarkRequest] = None,
    engine=Depends(get_reminder_engine)
):
    """
    Mark one medicine of a reminder as missed
    """
    marked_by = request.marked_by if request else "user"
    try:
        result = await engine.mark_missed(reminder_id, medicine_index, marked_by)
    except ReminderError as e:
        raise_http_error(e)
    return _mark_response(result)
