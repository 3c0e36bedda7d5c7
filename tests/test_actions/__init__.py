"""
Test Actions Package
Tests for the actions module (job queue, reminder engine, missed-dose escalation)
"""

__all__ = [
    "test_job_queue",
    "test_reminder_engine",
    "test_missed_dose_escalation",
]
