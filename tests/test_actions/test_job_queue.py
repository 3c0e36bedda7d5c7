"""
Tests for Delayed Job Queue
Tests scheduling, cancellation and bounded retry
"""

import pytest
from datetime import datetime, timedelta

from actions.job_queue import DelayedJobQueue


NOW = datetime(2024, 3, 4, 7, 0)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def calls():
    return []


@pytest.fixture
def recording_handler(calls):
    async def _handler(payload):
        calls.append(payload)
    return _handler


@pytest.fixture
def failing_handler(calls):
    async def _handler(payload):
        calls.append(payload)
        raise RuntimeError("downstream unavailable")
    return _handler


# =============================================================================
# Test Scheduling
# =============================================================================

class TestSchedule:
    """Tests for queuing and cancelling jobs"""

    @pytest.mark.unit
    def test_future_job_is_queued(self, queue):
        fire_at = NOW + timedelta(hours=1)

        assert queue.schedule("reminder:1", {"kind": "fire", "occurrence_id": 1}, fire_at) is True

        assert queue.has_job("reminder:1")
        assert queue.fire_time_of("reminder:1") == fire_at
        assert queue.attempt_of("reminder:1") == 1

    @pytest.mark.unit
    def test_past_or_present_time_is_dropped(self, queue):
        assert queue.schedule("reminder:1", {"kind": "fire"}, NOW) is False
        assert queue.schedule("reminder:2", {"kind": "fire"}, NOW - timedelta(minutes=1)) is False
        assert queue.job_ids() == []

    @pytest.mark.unit
    def test_same_id_replaces_job(self, queue):
        queue.schedule("reminder:1", {"kind": "fire"}, NOW + timedelta(hours=1))
        queue.schedule("reminder:1", {"kind": "fire"}, NOW + timedelta(hours=2))

        assert queue.job_ids() == ["reminder:1"]
        assert queue.fire_time_of("reminder:1") == NOW + timedelta(hours=2)

    @pytest.mark.unit
    def test_cancel_is_idempotent(self, queue):
        queue.schedule("reminder:1", {"kind": "fire"}, NOW + timedelta(hours=1))

        assert queue.cancel("reminder:1") is True
        assert queue.cancel("reminder:1") is False
        assert queue.cancel("reminder:404") is False
        assert not queue.has_job("reminder:1")

    @pytest.mark.unit
    def test_maintenance_jobs_are_kept_apart(self, queue):
        async def refresh():
            return None

        queue.add_interval_job("maintenance:refresh", refresh, hours=24)

        assert queue.has_job("maintenance:refresh")
        assert queue.job_ids() == []

    @pytest.mark.unit
    def test_not_running_until_started(self, queue):
        assert queue.running is False


# =============================================================================
# Test Execution and Retry
# =============================================================================

class TestExecute:
    """Tests for handler dispatch and backoff"""

    @pytest.mark.unit
    def test_backoff_doubles(self, queue):
        assert [queue.backoff_delay(a) for a in (1, 2, 3)] == [60, 120, 240]

    @pytest.mark.asyncio
    async def test_runs_registered_handler(self, queue, recording_handler, calls):
        queue.register_handler("fire", recording_handler)

        ok = await queue.execute("reminder:1", {"kind": "fire", "occurrence_id": 1})

        assert ok is True
        assert calls == [{"kind": "fire", "occurrence_id": 1}]

    @pytest.mark.asyncio
    async def test_unknown_kind_is_dropped(self, queue):
        ok = await queue.execute("mystery:1", {"kind": "mystery"})

        assert ok is False
        assert not queue.has_job("mystery:1")

    @pytest.mark.asyncio
    async def test_failure_is_retried_with_backoff(self, queue, failing_handler, clock):
        queue.register_handler("fire", failing_handler)

        ok = await queue.execute("reminder:1", {"kind": "fire", "occurrence_id": 1}, attempt=1)

        assert ok is False
        assert queue.attempt_of("reminder:1") == 2
        assert queue.fire_time_of("reminder:1") == clock.now() + timedelta(seconds=60)

        await queue.execute("reminder:1", {"kind": "fire", "occurrence_id": 1}, attempt=2)

        assert queue.attempt_of("reminder:1") == 3
        assert queue.fire_time_of("reminder:1") == clock.now() + timedelta(seconds=120)

    @pytest.mark.asyncio
    async def test_dropped_after_max_attempts(self, queue, failing_handler, calls):
        queue.register_handler("fire", failing_handler)

        ok = await queue.execute("reminder:1", {"kind": "fire", "occurrence_id": 1}, attempt=3)

        assert ok is False
        assert len(calls) == 1
        assert not queue.has_job("reminder:1")

    @pytest.mark.asyncio
    async def test_custom_attempt_limit(self, clock, failing_handler):
        queue = DelayedJobQueue(jobstore_url=None, clock=clock, max_attempts=1)
        queue.register_handler("fire", failing_handler)

        await queue.execute("reminder:1", {"kind": "fire"}, attempt=1)

        assert not queue.has_job("reminder:1")
