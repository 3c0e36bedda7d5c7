"""
Reminder Engine
Turns reminder occurrences into delayed jobs and reacts when they fire
"""

import logging
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta

from config import reminder_config, settings
from models import (
    FIREABLE_STATUSES,
    CustomUnit,
    ReminderItem,
    ReminderOccurrence,
    ReminderStatus,
    RepeatKind,
)
from actions.job_queue import DelayedJobQueue, job_queue
from actions.missed_dose_escalation import MissedDoseEscalation
from services.adherence_service import AdherenceService, MarkResult
from services.errors import InvalidTransitionError, NotFoundError, ValidationError
from services.reminder_store import ReminderStore, reminder_store
from tools.clock import Clock, system_clock, to_utc_naive
from tools.notification_service import NotificationService, notification_service, render_dose_reminder
from tools.recurrence import Custom, next_fire_time_after, rule_from_occurrence, validate_rule


logger = logging.getLogger(__name__)


def fire_job_id(occurrence_id: int) -> str:
    return reminder_config.FIRE_JOB_ID.format(occurrence_id=occurrence_id)


def missed_check_job_id(occurrence_id: int) -> str:
    return reminder_config.MISSED_CHECK_JOB_ID.format(occurrence_id=occurrence_id)


class ReminderSchedulingEngine:
    """
    Engine for scheduling and firing medicine reminders

    Responsibilities:
    - Queue a fire job per pending occurrence (scheduling entry points)
    - On fire: notify, queue the missed-dose check, extend recurring series
    - Cancel, snooze and dose marking
    - Periodic re-priming of the queue over the upcoming horizon
    """

    def __init__(
        self,
        store: Optional[ReminderStore] = None,
        queue: Optional[DelayedJobQueue] = None,
        dispatcher: Optional[NotificationService] = None,
        clock: Optional[Clock] = None,
        grace_minutes: Optional[int] = None
    ):
        self.store = store or reminder_store
        self.queue = queue or job_queue
        self.dispatcher = dispatcher or notification_service
        self.clock = clock or system_clock
        self.grace = timedelta(minutes=grace_minutes or settings.MISSED_DOSE_GRACE_MINUTES)

        self.adherence = AdherenceService(store=self.store, clock=self.clock)
        self.escalation = MissedDoseEscalation(self.store, self.dispatcher, self.clock)

        self.queue.register_handler(reminder_config.KIND_FIRE, self._handle_fire_job)
        self.queue.register_handler(reminder_config.KIND_MISSED_CHECK, self.escalation.handle_job)

    # ==================== SCHEDULING ====================

    def effective_fire_time(self, occurrence: ReminderOccurrence, now: Optional[datetime] = None) -> datetime:
        """snoozed_until when set and still ahead, else fire_time"""
        now = now or self.clock.now()
        if occurrence.snoozed_until and occurrence.snoozed_until > now:
            return occurrence.snoozed_until
        return occurrence.fire_time

    async def schedule_one(self, occurrence: ReminderOccurrence) -> bool:
        """
        Queue the fire job for one occurrence

        Returns:
            False when the fire time already passed (stale reminders are
            never fired retroactively)
        """
        now = self.clock.now()
        fire_at = self.effective_fire_time(occurrence, now)
        if fire_at <= now:
            logger.info(f"Skipping reminder {occurrence.id}: fire time {fire_at.isoformat()} already passed")
            return False

        return self.queue.schedule(
            fire_job_id(occurrence.id),
            {"kind": reminder_config.KIND_FIRE, "occurrence_id": occurrence.id},
            fire_at
        )

    async def schedule_range(self, start: datetime, end: datetime, user_id: Optional[int] = None) -> int:
        """
        Schedule every pending/snoozed occurrence firing within [start, end]

        Returns:
            Number of jobs queued
        """
        start, end = to_utc_naive(start), to_utc_naive(end)
        if end < start:
            raise ValidationError("Range end must not be before range start")

        occurrences = await self.store.find_in_range(start, end, FIREABLE_STATUSES, user_id)
        count = 0
        for occurrence in occurrences:
            if await self.schedule_one(occurrence):
                count += 1

        scope = f"user {user_id}" if user_id is not None else "all users"
        logger.info(f"Scheduled {count}/{len(occurrences)} reminders for {scope} in [{start.isoformat()}, {end.isoformat()}]")
        return count

    async def schedule_for_user(self, user_id: int) -> int:
        """Schedule one user's upcoming reminders (after login, registration or edits)"""
        now = self.clock.now()
        return await self.schedule_range(
            now, now + timedelta(hours=settings.USER_SCHEDULE_HORIZON_HOURS), user_id
        )

    def cancel(self, occurrence_id: int) -> bool:
        """Cancel both the fire job and the missed-dose check"""
        fire_removed = self.queue.cancel(fire_job_id(occurrence_id))
        check_removed = self.queue.cancel(missed_check_job_id(occurrence_id))
        if fire_removed or check_removed:
            logger.info(f"Cancelled jobs for reminder {occurrence_id}")
        return fire_removed or check_removed

    async def snooze(self, occurrence_id: int, minutes: int) -> ReminderOccurrence:
        """
        Snooze a reminder: status becomes snoozed and a single fire job is
        re-queued at now + minutes
        """
        if minutes <= 0 or minutes > reminder_config.MAX_SNOOZE_MINUTES:
            raise ValidationError(
                f"Snooze minutes must be between 1 and {reminder_config.MAX_SNOOZE_MINUTES}"
            )

        until = self.clock.now() + timedelta(minutes=minutes)

        def _snooze(occurrence: ReminderOccurrence) -> None:
            if occurrence.status not in FIREABLE_STATUSES:
                raise InvalidTransitionError(
                    f"Reminder {occurrence.id} is {occurrence.status.value} and cannot be snoozed"
                )
            occurrence.status = ReminderStatus.SNOOZED
            occurrence.snoozed_until = until

        occurrence = await self.store.transition(occurrence_id, _snooze)
        if occurrence is None:
            raise NotFoundError("Reminder", occurrence_id)

        self.cancel(occurrence_id)
        self.queue.schedule(
            fire_job_id(occurrence_id),
            {"kind": reminder_config.KIND_FIRE, "occurrence_id": occurrence_id},
            until
        )
        logger.info(f"Reminder {occurrence_id} snoozed until {until.isoformat()}")
        return occurrence

    # ==================== FIRING ====================

    async def _handle_fire_job(self, payload: Dict[str, Any]) -> None:
        await self.on_fire(payload["occurrence_id"])

    async def on_fire(self, occurrence_id: int) -> None:
        """
        Queue handler for fire jobs. Re-reads the occurrence, so redelivery
        and stale jobs are harmless.
        """
        occurrence = await self.store.find_by_id(occurrence_id)
        if occurrence is None:
            logger.info(f"Reminder {occurrence_id} was deleted before firing")
            return
        if not occurrence.active:
            logger.info(f"Reminder {occurrence_id} is inactive, not firing")
            return

        now = self.clock.now()
        effective = occurrence.effective_fire_time
        if effective > now:
            # superseded by a later snooze; make sure the newer job exists
            logger.info(f"Reminder {occurrence_id} now fires at {effective.isoformat()}, re-queuing")
            await self.schedule_one(occurrence)
            return

        if occurrence.status in FIREABLE_STATUSES:
            claimed = await self.store.claim_fire(occurrence_id, effective, now)
            if claimed:
                await self._send_reminder(occurrence)
                fired_at = now
            else:
                logger.info(f"Reminder {occurrence_id} already fired, not notifying again")
                fired_at = occurrence.last_fired_at or now

            # same id on every delivery, so a retried fire job cannot duplicate it
            self.queue.schedule(
                missed_check_job_id(occurrence_id),
                {"kind": reminder_config.KIND_MISSED_CHECK, "occurrence_id": occurrence_id},
                fired_at + self.grace
            )
        else:
            logger.info(f"Reminder {occurrence_id} is {occurrence.status.value}, skipping notification")

        # a dose actioned before its fire time still extends the series
        if occurrence.is_recurring:
            await self.generate_next(occurrence)

    async def _send_reminder(self, occurrence: ReminderOccurrence) -> None:
        user = await self.store.find_user(occurrence.user_id)
        if user is None:
            logger.warning(f"Reminder {occurrence.id} owner {occurrence.user_id} not found")
            return

        results = await self.dispatcher.dispatch(user, render_dose_reminder(occurrence, user))
        if any(r.attempted for r in results):
            await self.store.record_notification(occurrence.id)

    # ==================== RECURRENCE ====================

    async def generate_next(self, occurrence: ReminderOccurrence) -> Optional[ReminderOccurrence]:
        """
        Create and schedule the next occurrence of a recurring series

        Returns:
            The new occurrence, or None if the series ended or was already extended
        """
        if occurrence.next_generated:
            return None

        user = await self.store.find_user(occurrence.user_id)
        tz_name = user.timezone if user else None

        next_time = next_fire_time_after(
            rule_from_occurrence(occurrence),
            occurrence.fire_time,
            not_before=self.clock.now(),
            end=occurrence.scheduled_end,
            tz_name=tz_name
        )
        if next_time is None:
            logger.info(f"Series of reminder {occurrence.id} has ended")
            return None

        successor = await self.store.create_successor(occurrence.id, self._clone(occurrence, next_time))
        if successor is None:
            logger.debug(f"Reminder {occurrence.id} was already extended")
            return None

        logger.info(f"Reminder {occurrence.id} continues as {successor.id} at {next_time.isoformat()}")
        await self.schedule_one(successor)
        return successor

    @staticmethod
    def _clone(occurrence: ReminderOccurrence, fire_time: datetime) -> ReminderOccurrence:
        return ReminderOccurrence(
            user_id=occurrence.user_id,
            scheduled_start=occurrence.scheduled_start,
            scheduled_end=occurrence.scheduled_end,
            fire_time=fire_time,
            repeat_kind=occurrence.repeat_kind,
            days_of_week=list(occurrence.days_of_week or []),
            days_of_month=list(occurrence.days_of_month or []),
            custom_interval=occurrence.custom_interval,
            custom_unit=occurrence.custom_unit,
            status=ReminderStatus.PENDING,
            notification_sent=False,
            notification_count=0,
            parent_notified=False,
            next_generated=False,
            previous_occurrence_id=occurrence.id,
            active=True,
            items=[
                ReminderItem(medicine_id=item.medicine_id, position=item.position)
                for item in occurrence.items
            ],
        )

    # ==================== DOSE MARKING ====================

    async def mark_taken(self, occurrence_id: int, medicine_index: int, marked_by: str = "user") -> MarkResult:
        return await self.adherence.mark_taken(occurrence_id, medicine_index, marked_by)

    async def mark_missed(self, occurrence_id: int, medicine_index: int, marked_by: str = "user") -> MarkResult:
        return await self.adherence.mark_missed(occurrence_id, medicine_index, marked_by)

    # ==================== CRUD ENTRY POINTS ====================

    async def _build_occurrence(
        self,
        user_id: int,
        medicine_ids: List[int],
        fire_time: datetime,
        scheduled_start: Optional[datetime] = None,
        scheduled_end: Optional[datetime] = None,
        repeat_kind: RepeatKind = RepeatKind.NONE,
        days_of_week: Optional[List[int]] = None,
        days_of_month: Optional[List[int]] = None,
        custom_interval: Optional[int] = None,
        custom_unit: Optional[CustomUnit] = None
    ) -> ReminderOccurrence:
        """Validate one creation request and build the (unsaved) occurrence"""
        fire_time = to_utc_naive(fire_time)
        scheduled_start = to_utc_naive(scheduled_start) or fire_time
        scheduled_end = to_utc_naive(scheduled_end)

        if not medicine_ids:
            raise ValidationError("A reminder needs at least one medicine")
        if len(medicine_ids) > reminder_config.MAX_MEDICINES_PER_REMINDER:
            raise ValidationError(
                f"A reminder can hold at most {reminder_config.MAX_MEDICINES_PER_REMINDER} medicines"
            )
        if scheduled_end is not None and scheduled_end < fire_time:
            raise ValidationError("scheduled_end must not be before fire_time")
        if repeat_kind == RepeatKind.CUSTOM:
            if custom_interval is None or custom_unit is None:
                raise ValidationError("Custom repeats need custom_interval and custom_unit")
            try:
                validate_rule(Custom(interval=custom_interval, unit=custom_unit))
            except ValueError as e:
                raise ValidationError(str(e))
        if any(d < 0 or d > 6 for d in days_of_week or []):
            raise ValidationError("days_of_week values must be 0-6")
        if any(d < 1 or d > 31 for d in days_of_month or []):
            raise ValidationError("days_of_month values must be 1-31")

        user = await self.store.find_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        medicines = await self.store.find_medicines(user_id, medicine_ids)
        found = {m.id for m in medicines}
        missing = [m for m in medicine_ids if m not in found]
        if missing:
            raise NotFoundError("Medicine", missing[0])

        return ReminderOccurrence(
            user_id=user_id,
            scheduled_start=scheduled_start,
            scheduled_end=scheduled_end,
            fire_time=fire_time,
            repeat_kind=repeat_kind,
            days_of_week=sorted(set(days_of_week or [])) if repeat_kind == RepeatKind.WEEKLY else [],
            days_of_month=sorted(set(days_of_month or [])) if repeat_kind == RepeatKind.MONTHLY else [],
            custom_interval=custom_interval if repeat_kind == RepeatKind.CUSTOM else None,
            custom_unit=custom_unit if repeat_kind == RepeatKind.CUSTOM else None,
            status=ReminderStatus.PENDING,
            items=[
                ReminderItem(medicine_id=medicine_id, position=position)
                for position, medicine_id in enumerate(medicine_ids)
            ],
        )

    async def create_reminder(
        self,
        user_id: int,
        medicine_ids: List[int],
        fire_time: datetime,
        **rule
    ) -> ReminderOccurrence:
        """
        Persist a new occurrence and queue it

        Args:
            user_id: Owner
            medicine_ids: Medicines in this dose, in display order
            fire_time: When to notify
            **rule: scheduled_start (defaults to fire_time), scheduled_end,
                repeat_kind and its rule fields

        Returns:
            The stored occurrence
        """
        occurrence = await self._build_occurrence(user_id, medicine_ids, fire_time, **rule)
        created = await self.store.create(occurrence)
        await self.schedule_one(created)
        return created

    async def create_reminders(
        self,
        user_id: int,
        medicine_ids: List[int],
        fire_times: List[datetime],
        **rule
    ) -> List[ReminderOccurrence]:
        """
        Create one occurrence per time of day. Every entry is validated
        before anything is stored, and all are stored in one transaction.
        """
        if not fire_times:
            raise ValidationError("At least one fire time is required")

        occurrences = [
            await self._build_occurrence(user_id, medicine_ids, fire_time, **rule)
            for fire_time in fire_times
        ]
        created = await self.store.create_all(occurrences)
        for occurrence in created:
            await self.schedule_one(occurrence)
        return created

    async def get_reminder(self, occurrence_id: int) -> ReminderOccurrence:
        occurrence = await self.store.find_by_id(occurrence_id)
        if occurrence is None:
            raise NotFoundError("Reminder", occurrence_id)
        return occurrence

    async def delete_reminder(self, occurrence_id: int) -> None:
        """Cancel outstanding jobs and delete the record"""
        self.cancel(occurrence_id)
        if not await self.store.delete_by_id(occurrence_id):
            raise NotFoundError("Reminder", occurrence_id)

    # ==================== STARTUP / MAINTENANCE ====================

    async def prime(self) -> int:
        """Re-queue everything firing within the priming horizon"""
        now = self.clock.now()
        return await self.schedule_range(now, now + timedelta(hours=settings.PRIME_HORIZON_HOURS))

    async def recover_missed_fires(self) -> int:
        """
        Handle occurrences whose fire job was lost or expired (e.g. the
        process was down at fire time)

        Within the grace window the reminder is fired late. Past it, the dose
        is escalated as missed straight away. Either way a recurring series
        is extended, so downtime never ends a series.

        Returns:
            Number of occurrences recovered
        """
        now = self.clock.now()
        overdue = await self.store.find_unfired(now)
        recovered = 0
        for occurrence in overdue:
            if self.queue.has_job(fire_job_id(occurrence.id)):
                continue

            effective = occurrence.effective_fire_time
            if effective >= now - self.grace:
                logger.info(f"Reminder {occurrence.id} was due at {effective.isoformat()}, firing late")
                await self.on_fire(occurrence.id)
            else:
                logger.warning(f"Reminder {occurrence.id} was due at {effective.isoformat()} and never fired")
                # the claim re-arms a snoozed occurrence so the check can escalate it
                if await self.store.claim_fire(occurrence.id, effective, now):
                    await self.escalation.check(occurrence.id)
                if occurrence.is_recurring:
                    await self.generate_next(occurrence)
            recovered += 1

        if recovered:
            logger.info(f"Recovered {recovered} reminders that missed their fire time")
        return recovered

    async def recover_overdue_checks(self) -> int:
        """Run missed-dose checks whose jobs were lost (e.g. expired during downtime)"""
        overdue = await self.store.find_unescalated(self.clock.now() - self.grace)
        recovered = 0
        for occurrence in overdue:
            if self.queue.has_job(missed_check_job_id(occurrence.id)):
                continue
            await self.escalation.check(occurrence.id)
            recovered += 1
        if recovered:
            logger.info(f"Recovered {recovered} overdue missed-dose checks")
        return recovered

    async def _refresh_job(self) -> None:
        try:
            await self.prime()
        except Exception as e:
            logger.error(f"Periodic reminder refresh failed: {e}", exc_info=True)

    async def _safety_rescan_job(self) -> None:
        try:
            await self.prime()
            await self.recover_missed_fires()
            await self.recover_overdue_checks()
        except Exception as e:
            logger.error(f"Reminder safety rescan failed: {e}", exc_info=True)

    async def initialize(self) -> int:
        """
        Startup hook: prime the queue for the upcoming horizon and register
        the periodic refresh and hourly safety rescan

        Returns:
            Number of reminders scheduled by the initial priming
        """
        count = await self.prime()
        await self.recover_missed_fires()
        await self.recover_overdue_checks()

        self.queue.add_interval_job(
            reminder_config.REFRESH_JOB_ID, self._refresh_job, hours=settings.REFRESH_INTERVAL_HOURS
        )
        self.queue.add_interval_job(
            reminder_config.RESCAN_JOB_ID, self._safety_rescan_job, minutes=settings.SAFETY_RESCAN_MINUTES
        )
        logger.info(f"Reminder engine initialized: {count} reminders in the next {settings.PRIME_HORIZON_HOURS}h")
        return count

    def queue_status(self) -> Dict[str, Any]:
        """Counts of outstanding delayed jobs"""
        job_ids = self.queue.job_ids()
        missed_checks = [j for j in job_ids if j.endswith(":missed-check")]
        return {
            "running": self.queue.running,
            "total_jobs": len(job_ids),
            "fire_jobs": len(job_ids) - len(missed_checks),
            "missed_checks": len(missed_checks),
        }


reminder_engine = ReminderSchedulingEngine()
