"""
Reminder Store
Persistence for reminder occurrences.

Every mutation is a single-record atomic operation: either a conditional
UPDATE (compare-and-set) or a read-compute-write inside one transaction.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional
from datetime import datetime
from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, joinedload, sessionmaker

from database import get_db_context
from models import (
    FIREABLE_STATUSES,
    Medicine,
    ReminderOccurrence,
    ReminderStatus,
    User,
)


logger = logging.getLogger(__name__)


class ReminderStore:
    """
    Store for ReminderOccurrence records

    Returned objects are detached from their session; items and their
    medicines are eagerly loaded so they can be read after the session closes.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    def _session(self):
        return get_db_context(self._session_factory)

    @staticmethod
    def _get(session: Session, occurrence_id: int, for_update: bool = False) -> Optional[ReminderOccurrence]:
        query = session.query(ReminderOccurrence).filter(ReminderOccurrence.id == occurrence_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    # ==================== READS ====================

    async def find_by_id(self, occurrence_id: int) -> Optional[ReminderOccurrence]:
        with self._session() as session:
            return self._get(session, occurrence_id)

    async def find_in_range(
        self,
        start: datetime,
        end: datetime,
        statuses: Optional[Iterable[ReminderStatus]] = None,
        user_id: Optional[int] = None,
        active_only: bool = True
    ) -> List[ReminderOccurrence]:
        """
        Occurrences whose effective fire time (snoozed_until or fire_time)
        falls within [start, end]
        """
        effective = func.coalesce(ReminderOccurrence.snoozed_until, ReminderOccurrence.fire_time)
        statuses = list(statuses or FIREABLE_STATUSES)

        with self._session() as session:
            query = session.query(ReminderOccurrence).filter(
                and_(
                    effective >= start,
                    effective <= end,
                    ReminderOccurrence.status.in_(statuses)
                )
            )
            if user_id is not None:
                query = query.filter(ReminderOccurrence.user_id == user_id)
            if active_only:
                query = query.filter(ReminderOccurrence.active == True)  # noqa: E712
            return query.order_by(effective).all()

    async def find_unescalated(self, fired_before: datetime) -> List[ReminderOccurrence]:
        """Fired, still-pending occurrences whose missed check is overdue"""
        with self._session() as session:
            return session.query(ReminderOccurrence).filter(
                and_(
                    ReminderOccurrence.status == ReminderStatus.PENDING,
                    ReminderOccurrence.last_fired_at.isnot(None),
                    ReminderOccurrence.last_fired_at <= fired_before,
                    ReminderOccurrence.active == True  # noqa: E712
                )
            ).all()

    async def find_unfired(self, due_by: datetime) -> List[ReminderOccurrence]:
        """
        Pending/snoozed occurrences whose effective fire time is at or before
        `due_by` but which never fired for it (fire job lost or expired)
        """
        effective = func.coalesce(ReminderOccurrence.snoozed_until, ReminderOccurrence.fire_time)
        with self._session() as session:
            return session.query(ReminderOccurrence).filter(
                and_(
                    effective <= due_by,
                    ReminderOccurrence.status.in_(FIREABLE_STATUSES),
                    ReminderOccurrence.active == True,  # noqa: E712
                    or_(
                        ReminderOccurrence.last_fired_at.is_(None),
                        ReminderOccurrence.last_fired_at < effective
                    )
                )
            ).order_by(effective).all()

    async def find_user(self, user_id: int) -> Optional[User]:
        """User with guardian loaded"""
        with self._session() as session:
            return session.query(User).options(
                joinedload(User.guardian)
            ).filter(User.id == user_id).first()

    async def find_medicines(self, user_id: int, medicine_ids: List[int]) -> List[Medicine]:
        with self._session() as session:
            return session.query(Medicine).filter(
                and_(
                    Medicine.user_id == user_id,
                    Medicine.id.in_(medicine_ids)
                )
            ).all()

    # ==================== WRITES ====================

    async def create(self, occurrence: ReminderOccurrence) -> ReminderOccurrence:
        """Persist a new occurrence (with its items) and return it reloaded"""
        with self._session() as session:
            session.add(occurrence)
            session.flush()
            occurrence_id = occurrence.id

        logger.info(f"Created reminder occurrence {occurrence_id}")
        return await self.find_by_id(occurrence_id)

    async def create_all(self, occurrences: List[ReminderOccurrence]) -> List[ReminderOccurrence]:
        """Persist several occurrences in one transaction (all or nothing)"""
        with self._session() as session:
            session.add_all(occurrences)
            session.flush()
            occurrence_ids = [o.id for o in occurrences]

        logger.info(f"Created reminder occurrences {occurrence_ids}")
        return [await self.find_by_id(occurrence_id) for occurrence_id in occurrence_ids]

    async def update_by_id(self, occurrence_id: int, patch: Dict[str, Any]) -> bool:
        """Unconditional field update. Returns False when the record is gone."""
        with self._session() as session:
            updated = session.query(ReminderOccurrence).filter(
                ReminderOccurrence.id == occurrence_id
            ).update(patch, synchronize_session=False)
        return updated == 1

    async def delete_by_id(self, occurrence_id: int) -> bool:
        with self._session() as session:
            occurrence = self._get(session, occurrence_id)
            if occurrence is None:
                return False
            session.delete(occurrence)
        logger.info(f"Deleted reminder occurrence {occurrence_id}")
        return True

    async def transition(
        self,
        occurrence_id: int,
        mutate: Callable[[ReminderOccurrence], Any]
    ) -> Optional[ReminderOccurrence]:
        """
        Read the record fresh and apply `mutate` in the same transaction.

        `mutate` may raise to abort; nothing is written in that case.
        Returns the updated occurrence, or None if it does not exist.
        """
        with self._session() as session:
            occurrence = self._get(session, occurrence_id, for_update=True)
            if occurrence is None:
                return None
            mutate(occurrence)
            session.flush()
            return occurrence

    # ==================== COMPARE-AND-SET ====================

    async def claim_fire(self, occurrence_id: int, effective_fire_time: datetime, now: datetime) -> bool:
        """
        Claim the right to notify for this firing. Fails if the occurrence
        was actioned, deactivated, or this firing was already claimed.
        A snoozed occurrence is re-armed to pending by the claim.
        """
        with self._session() as session:
            updated = session.query(ReminderOccurrence).filter(
                and_(
                    ReminderOccurrence.id == occurrence_id,
                    ReminderOccurrence.active == True,  # noqa: E712
                    ReminderOccurrence.status.in_(FIREABLE_STATUSES),
                    or_(
                        ReminderOccurrence.last_fired_at.is_(None),
                        ReminderOccurrence.last_fired_at < effective_fire_time
                    )
                )
            ).update(
                {"last_fired_at": now, "status": ReminderStatus.PENDING},
                synchronize_session=False
            )
        return updated == 1

    async def record_notification(self, occurrence_id: int) -> None:
        """Count a send attempt"""
        with self._session() as session:
            session.query(ReminderOccurrence).filter(
                ReminderOccurrence.id == occurrence_id
            ).update(
                {
                    "notification_sent": True,
                    "notification_count": func.coalesce(ReminderOccurrence.notification_count, 0) + 1,
                },
                synchronize_session=False
            )

    async def claim_guardian_notification(self, occurrence_id: int) -> bool:
        """parent_notified false -> true; True only for the single winner"""
        with self._session() as session:
            updated = session.query(ReminderOccurrence).filter(
                and_(
                    ReminderOccurrence.id == occurrence_id,
                    or_(
                        ReminderOccurrence.parent_notified == False,  # noqa: E712
                        ReminderOccurrence.parent_notified.is_(None)
                    )
                )
            ).update({"parent_notified": True}, synchronize_session=False)
        return updated == 1

    async def create_successor(
        self,
        previous_id: int,
        successor: ReminderOccurrence
    ) -> Optional[ReminderOccurrence]:
        """
        Mark `previous_id` as extended and insert its successor in one
        transaction. Returns None if the series was already extended.
        """
        with self._session() as session:
            claimed = session.query(ReminderOccurrence).filter(
                and_(
                    ReminderOccurrence.id == previous_id,
                    or_(
                        ReminderOccurrence.next_generated == False,  # noqa: E712
                        ReminderOccurrence.next_generated.is_(None)
                    )
                )
            ).update({"next_generated": True}, synchronize_session=False)
            if claimed != 1:
                return None
            session.add(successor)
            session.flush()
            successor_id = successor.id

        return await self.find_by_id(successor_id)


reminder_store = ReminderStore()
