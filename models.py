"""
Database Models
SQLAlchemy ORM models for MedRemind
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Enum, Index, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum as PyEnum

from database import Base


# ==================== ENUMS ====================

class ReminderStatus(str, PyEnum):
    """Aggregate status of a reminder occurrence"""
    PENDING = "pending"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    MISSED = "missed"
    SNOOZED = "snoozed"


class ItemStatus(str, PyEnum):
    """Status of a single medicine within an occurrence"""
    PENDING = "pending"
    TAKEN = "taken"
    MISSED = "missed"


class RepeatKind(str, PyEnum):
    """How the next occurrence of a series is derived"""
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class CustomUnit(str, PyEnum):
    """Unit for custom repeat intervals"""
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


# Statuses the fire job still acts on
FIREABLE_STATUSES = (ReminderStatus.PENDING, ReminderStatus.SNOOZED)


# ==================== MODELS ====================

class User(Base):
    """Reminder recipient with channel preferences and an optional guardian"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, index=True)
    phone = Column(String(20))
    timezone = Column(String(50), default="UTC")

    # Notification preferences
    push_token = Column(String(255))
    notify_push = Column(Boolean, default=True)
    notify_sms = Column(Boolean, default=False)
    notify_email = Column(Boolean, default=False)

    # Guardian (parent) receiving missed-dose alerts
    guardian_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    guardian = relationship("User", remote_side=[id], back_populates="dependents")
    dependents = relationship("User", back_populates="guardian")
    medicines = relationship("Medicine", back_populates="user", cascade="all, delete-orphan")
    reminders = relationship("ReminderOccurrence", back_populates="user", cascade="all, delete-orphan")


class Medicine(Base):
    """Medicine a user takes"""
    __tablename__ = "medicines"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    name = Column(String(255), nullable=False)
    dosage = Column(String(100))
    instructions = Column(Text)

    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="medicines")

    __table_args__ = (
        Index("ix_medicines_user_active", "user_id", "active"),
    )


class ReminderOccurrence(Base):
    """One concrete, schedulable dose event. All datetimes are naive UTC."""
    __tablename__ = "reminder_occurrences"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Series bounds and timing
    scheduled_start = Column(DateTime, nullable=False)
    scheduled_end = Column(DateTime)
    fire_time = Column(DateTime, nullable=False)
    snoozed_until = Column(DateTime)
    missed_at = Column(DateTime)

    # Recurrence rule (copied unchanged onto every occurrence of a series)
    repeat_kind = Column(Enum(RepeatKind), default=RepeatKind.NONE, nullable=False)
    days_of_week = Column(JSON, default=list)   # 0=Sunday .. 6=Saturday
    days_of_month = Column(JSON, default=list)  # 1..31
    custom_interval = Column(Integer)
    custom_unit = Column(Enum(CustomUnit))

    # Aggregate status
    status = Column(Enum(ReminderStatus), default=ReminderStatus.PENDING, nullable=False)

    # Delivery bookkeeping
    notification_sent = Column(Boolean, default=False)
    notification_count = Column(Integer, default=0)
    parent_notified = Column(Boolean, default=False)
    last_fired_at = Column(DateTime)
    next_generated = Column(Boolean, default=False)

    previous_occurrence_id = Column(
        Integer, ForeignKey("reminder_occurrences.id", ondelete="SET NULL"), nullable=True
    )
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="reminders")
    items = relationship(
        "ReminderItem",
        back_populates="occurrence",
        cascade="all, delete-orphan",
        order_by="ReminderItem.position",
        lazy="selectin"
    )

    __table_args__ = (
        Index("ix_reminder_occurrences_status_fire", "status", "fire_time"),
        Index("ix_reminder_occurrences_user_fire", "user_id", "fire_time"),
    )

    @property
    def effective_fire_time(self) -> datetime:
        """snoozed_until overrides fire_time while a snooze is set"""
        return self.snoozed_until or self.fire_time

    @property
    def medicine_names(self) -> list:
        return [item.medicine.name for item in self.items if item.medicine is not None]

    @property
    def is_recurring(self) -> bool:
        return self.repeat_kind not in (None, RepeatKind.NONE)


class ReminderItem(Base):
    """Per-medicine status within an occurrence"""
    __tablename__ = "reminder_items"

    id = Column(Integer, primary_key=True, index=True)
    occurrence_id = Column(Integer, ForeignKey("reminder_occurrences.id", ondelete="CASCADE"), nullable=False)
    medicine_id = Column(Integer, ForeignKey("medicines.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    status = Column(Enum(ItemStatus), default=ItemStatus.PENDING, nullable=False)
    marked_by = Column(String(50))  # "user", "guardian", "escalation"
    marked_at = Column(DateTime)

    occurrence = relationship("ReminderOccurrence", back_populates="items")
    medicine = relationship("Medicine", lazy="joined")

    __table_args__ = (
        Index("ix_reminder_items_occurrence_position", "occurrence_id", "position", unique=True),
    )
