"""
Adherence Service
Per-medicine dose marking and the aggregate status state machine
"""

import logging
from typing import Iterable, Optional
from dataclasses import dataclass

from models import ItemStatus, ReminderOccurrence, ReminderStatus
from services.errors import NotFoundError, ValidationError
from services.reminder_store import ReminderStore, reminder_store
from tools.clock import Clock, system_clock


logger = logging.getLogger(__name__)


LATE_CORRECTION_MESSAGE = (
    "Medicine marked as taken. Note: This was previously automatically marked as missed."
)


def aggregate_status(item_statuses: Iterable[ItemStatus], missed_dominates: bool = True) -> ReminderStatus:
    """
    Derive an occurrence's status from its item statuses.

    With missed_dominates (mark-missed and escalation), any missed item makes
    the whole occurrence missed. A taken-mark recomputes with taken first, so
    a dose taken after escalation upgrades the occurrence to
    partially_completed or completed.
    """
    statuses = list(item_statuses)
    if not statuses:
        return ReminderStatus.PENDING

    missed = any(s == ItemStatus.MISSED for s in statuses)
    if missed and missed_dominates:
        return ReminderStatus.MISSED

    taken = sum(1 for s in statuses if s == ItemStatus.TAKEN)
    if taken == len(statuses):
        return ReminderStatus.COMPLETED
    if taken:
        return ReminderStatus.PARTIALLY_COMPLETED
    if missed:
        return ReminderStatus.MISSED
    return ReminderStatus.PENDING


@dataclass
class MarkResult:
    """Outcome of a mark-taken / mark-missed call"""
    occurrence: ReminderOccurrence
    late_correction: bool = False
    message: Optional[str] = None


def _item_at(occurrence: ReminderOccurrence, medicine_index: int):
    if medicine_index < 0 or medicine_index >= len(occurrence.items):
        raise ValidationError(
            f"Medicine index {medicine_index} out of range for reminder {occurrence.id} "
            f"({len(occurrence.items)} medicines)"
        )
    return occurrence.items[medicine_index]


class AdherenceService:
    """
    Service for recording taken/missed doses on reminder occurrences
    """

    def __init__(self, store: Optional[ReminderStore] = None, clock: Optional[Clock] = None):
        self.store = store or reminder_store
        self.clock = clock or system_clock

    async def mark_taken(
        self,
        occurrence_id: int,
        medicine_index: int,
        marked_by: str = "user"
    ) -> MarkResult:
        """
        Mark one medicine of an occurrence as taken

        Args:
            occurrence_id: Reminder occurrence ID
            medicine_index: Position of the medicine within the reminder
            marked_by: Who recorded the dose

        Returns:
            MarkResult, with late_correction set when the occurrence had
            already been escalated to missed
        """
        now = self.clock.now()
        outcome = {"late": False}

        def _mark(occurrence: ReminderOccurrence) -> None:
            item = _item_at(occurrence, medicine_index)
            if occurrence.missed_at is not None and item.status == ItemStatus.MISSED:
                outcome["late"] = True
                occurrence.missed_at = None

            item.status = ItemStatus.TAKEN
            item.marked_by = marked_by
            item.marked_at = now
            occurrence.status = aggregate_status((i.status for i in occurrence.items), missed_dominates=False)

        occurrence = await self.store.transition(occurrence_id, _mark)
        if occurrence is None:
            raise NotFoundError("Reminder", occurrence_id)

        logger.info(
            f"Reminder {occurrence_id} item {medicine_index} taken by {marked_by}; "
            f"status={occurrence.status.value}"
        )
        if outcome["late"]:
            logger.info(f"Late correction on reminder {occurrence_id}")
            return MarkResult(occurrence=occurrence, late_correction=True, message=LATE_CORRECTION_MESSAGE)

        return MarkResult(occurrence=occurrence, message="Medicine marked as taken")

    async def mark_missed(
        self,
        occurrence_id: int,
        medicine_index: int,
        marked_by: str = "user"
    ) -> MarkResult:
        """Mark one medicine of an occurrence as missed"""
        now = self.clock.now()

        def _mark(occurrence: ReminderOccurrence) -> None:
            item = _item_at(occurrence, medicine_index)
            item.status = ItemStatus.MISSED
            item.marked_by = marked_by
            item.marked_at = now
            occurrence.status = aggregate_status(i.status for i in occurrence.items)

        occurrence = await self.store.transition(occurrence_id, _mark)
        if occurrence is None:
            raise NotFoundError("Reminder", occurrence_id)

        logger.info(f"Reminder {occurrence_id} item {medicine_index} missed; status={occurrence.status.value}")
        return MarkResult(occurrence=occurrence, message="Medicine marked as missed")


adherence_service = AdherenceService()
