"""
Missed-Dose Escalation
Closes the loop when a fired reminder is never answered.

After the grace window the occurrence is re-read; if nothing was marked it
becomes missed, and the user's guardian is alerted exactly once.
"""

import logging
from typing import Optional
from dataclasses import dataclass

from models import ItemStatus, ReminderOccurrence, ReminderStatus
from services.reminder_store import ReminderStore
from tools.clock import Clock
from tools.notification_service import NotificationService, render_missed_dose_alert


logger = logging.getLogger(__name__)


@dataclass
class EscalationResult:
    """What a missed-dose check did"""
    occurrence_id: int
    marked_missed: bool = False
    guardian_notified: bool = False
    skipped_reason: Optional[str] = None


def _is_escalated(occurrence: ReminderOccurrence) -> bool:
    return occurrence.status == ReminderStatus.MISSED and occurrence.missed_at is not None


class MissedDoseEscalation:
    """
    Missed-dose check run by the queue at fire time + grace window

    Safe to run repeatedly for the same occurrence: the missed write only
    applies to a still-pending record and the guardian alert is guarded by
    an atomic parent_notified claim.
    """

    def __init__(self, store: ReminderStore, dispatcher: NotificationService, clock: Clock):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock

    async def check(self, occurrence_id: int) -> EscalationResult:
        result = EscalationResult(occurrence_id=occurrence_id)

        occurrence = await self.store.find_by_id(occurrence_id)
        if occurrence is None:
            logger.info(f"Missed check: reminder {occurrence_id} no longer exists")
            result.skipped_reason = "not_found"
            return result
        if not occurrence.active:
            result.skipped_reason = "inactive"
            return result

        if occurrence.status == ReminderStatus.PENDING:
            occurrence = await self._mark_missed(occurrence_id, result)
            if occurrence is None:
                result.skipped_reason = "not_found"
                return result

        if not _is_escalated(occurrence):
            # answered (or snoozed) in time
            logger.debug(f"Missed check: reminder {occurrence_id} is {occurrence.status.value}, nothing to do")
            result.skipped_reason = "already_actioned"
            return result

        result.guardian_notified = await self._notify_guardian(occurrence)
        return result

    async def _mark_missed(self, occurrence_id: int, result: EscalationResult) -> Optional[ReminderOccurrence]:
        now = self.clock.now()

        def _escalate(occurrence: ReminderOccurrence) -> None:
            if occurrence.status != ReminderStatus.PENDING:
                return
            for item in occurrence.items:
                if item.status == ItemStatus.PENDING:
                    item.status = ItemStatus.MISSED
                    item.marked_by = "escalation"
                    item.marked_at = now
            occurrence.status = ReminderStatus.MISSED
            occurrence.missed_at = now
            result.marked_missed = True

        occurrence = await self.store.transition(occurrence_id, _escalate)
        if result.marked_missed:
            logger.info(f"Reminder {occurrence_id} marked missed after grace window")
        return occurrence

    async def _notify_guardian(self, occurrence: ReminderOccurrence) -> bool:
        """Alert the guardian once. Delivery is best effort."""
        if occurrence.parent_notified:
            return False

        user = await self.store.find_user(occurrence.user_id)
        if user is None or user.guardian is None:
            return False

        if not await self.store.claim_guardian_notification(occurrence.id):
            logger.debug(f"Guardian already notified for reminder {occurrence.id}")
            return False

        results = await self.dispatcher.dispatch(user.guardian, render_missed_dose_alert(occurrence, user))
        if not any(r.success for r in results):
            logger.warning(
                f"Missed-dose alert for reminder {occurrence.id} was not delivered to guardian {user.guardian.id}"
            )
        else:
            logger.info(f"Guardian {user.guardian.id} alerted about reminder {occurrence.id}")
        return True

    async def handle_job(self, payload: dict) -> None:
        """Queue handler for missed-check jobs"""
        await self.check(payload["occurrence_id"])
