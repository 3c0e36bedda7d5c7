"""
Actions Module
Delayed job queue, reminder engine and missed-dose escalation
"""

from .job_queue import (
    DelayedJobQueue,
    job_queue,
    run_job
)

from .missed_dose_escalation import (
    EscalationResult,
    MissedDoseEscalation
)

from .reminder_engine import (
    ReminderSchedulingEngine,
    fire_job_id,
    missed_check_job_id,
    reminder_engine
)


__all__ = [
    # Job Queue
    "DelayedJobQueue",
    "job_queue",
    "run_job",

    # Missed-Dose Escalation
    "EscalationResult",
    "MissedDoseEscalation",

    # Reminder Engine
    "ReminderSchedulingEngine",
    "fire_job_id",
    "missed_check_job_id",
    "reminder_engine"
]
