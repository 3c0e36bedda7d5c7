"""
Tests for Recurrence Rules
Tests next-fire-time computation for every repeat kind
"""

import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace

from models import CustomUnit, RepeatKind
from tools.recurrence import (
    Custom,
    Daily,
    Monthly,
    NoRepeat,
    Weekly,
    next_fire_time,
    next_fire_time_after,
    rule_from_occurrence,
    validate_rule,
)


# Monday
MONDAY_8AM = datetime(2024, 3, 4, 8, 0)


# =============================================================================
# Test Rule Construction
# =============================================================================

class TestRuleFromOccurrence:
    """Tests for building rule variants from stored columns"""

    @pytest.mark.unit
    def test_none_kind(self):
        occurrence = SimpleNamespace(repeat_kind=RepeatKind.NONE)
        assert rule_from_occurrence(occurrence) == NoRepeat()

    @pytest.mark.unit
    def test_missing_kind_is_no_repeat(self):
        occurrence = SimpleNamespace(repeat_kind=None)
        assert rule_from_occurrence(occurrence) == NoRepeat()

    @pytest.mark.unit
    def test_weekly_days_are_sorted_and_filtered(self):
        occurrence = SimpleNamespace(repeat_kind=RepeatKind.WEEKLY, days_of_week=[5, 1, 9, 3, 1])
        assert rule_from_occurrence(occurrence) == Weekly(days=(1, 3, 5))

    @pytest.mark.unit
    def test_monthly_days(self):
        occurrence = SimpleNamespace(repeat_kind=RepeatKind.MONTHLY, days_of_month=[31, 15, 0])
        assert rule_from_occurrence(occurrence) == Monthly(days=(15, 31))

    @pytest.mark.unit
    def test_custom(self):
        occurrence = SimpleNamespace(
            repeat_kind=RepeatKind.CUSTOM, custom_interval=3, custom_unit=CustomUnit.DAYS
        )
        assert rule_from_occurrence(occurrence) == Custom(interval=3, unit=CustomUnit.DAYS)

    @pytest.mark.unit
    def test_zero_interval_rejected(self):
        with pytest.raises(ValueError):
            validate_rule(Custom(interval=0, unit=CustomUnit.HOURS))


# =============================================================================
# Test next_fire_time
# =============================================================================

class TestNextFireTime:
    """Tests for a single recurrence step"""

    @pytest.mark.unit
    def test_no_repeat_has_no_next(self):
        assert next_fire_time(NoRepeat(), MONDAY_8AM) is None

    @pytest.mark.unit
    def test_daily(self):
        assert next_fire_time(Daily(), MONDAY_8AM) == datetime(2024, 3, 5, 8, 0)

    @pytest.mark.unit
    def test_daily_keeps_local_time_across_dst(self):
        """08:00 New York stays 08:00 when clocks spring forward"""
        before_dst = datetime(2024, 3, 9, 13, 0)  # 08:00 EST
        assert next_fire_time(Daily(), before_dst, "America/New_York") == datetime(2024, 3, 10, 12, 0)

    @pytest.mark.unit
    def test_weekly_mon_wed_fri_from_monday(self):
        rule = Weekly(days=(1, 3, 5))
        assert next_fire_time(rule, MONDAY_8AM) == datetime(2024, 3, 6, 8, 0)

    @pytest.mark.unit
    def test_weekly_mon_wed_fri_from_wednesday(self):
        rule = Weekly(days=(1, 3, 5))
        wednesday = datetime(2024, 3, 6, 8, 0)
        assert next_fire_time(rule, wednesday) == datetime(2024, 3, 8, 8, 0)

    @pytest.mark.unit
    def test_weekly_wraps_to_next_week(self):
        rule = Weekly(days=(1, 3, 5))
        friday = datetime(2024, 3, 8, 8, 0)
        assert next_fire_time(rule, friday) == datetime(2024, 3, 11, 8, 0)

    @pytest.mark.unit
    def test_weekly_sunday_is_day_zero(self):
        rule = Weekly(days=(0,))
        assert next_fire_time(rule, MONDAY_8AM) == datetime(2024, 3, 10, 8, 0)

    @pytest.mark.unit
    def test_weekly_without_days_adds_a_week(self):
        assert next_fire_time(Weekly(), MONDAY_8AM) == datetime(2024, 3, 11, 8, 0)

    @pytest.mark.unit
    def test_monthly_later_day_same_month(self):
        rule = Monthly(days=(15, 31))
        assert next_fire_time(rule, MONDAY_8AM) == datetime(2024, 3, 15, 8, 0)

    @pytest.mark.unit
    def test_monthly_clamps_to_short_month(self):
        rule = Monthly(days=(31,))
        jan_31 = datetime(2024, 1, 31, 8, 0)
        assert next_fire_time(rule, jan_31) == datetime(2024, 2, 29, 8, 0)

    @pytest.mark.unit
    def test_monthly_after_clamped_day_returns_to_requested_day(self):
        rule = Monthly(days=(31,))
        feb_29 = datetime(2024, 2, 29, 8, 0)
        assert next_fire_time(rule, feb_29) == datetime(2024, 3, 31, 8, 0)

    @pytest.mark.unit
    def test_monthly_without_days(self):
        assert next_fire_time(Monthly(), datetime(2024, 1, 31, 8, 0)) == datetime(2024, 2, 29, 8, 0)

    @pytest.mark.unit
    def test_custom_hours_are_absolute(self):
        rule = Custom(interval=8, unit=CustomUnit.HOURS)
        assert next_fire_time(rule, MONDAY_8AM, "America/New_York") == MONDAY_8AM + timedelta(hours=8)

    @pytest.mark.unit
    def test_custom_days_and_weeks(self):
        assert next_fire_time(Custom(3, CustomUnit.DAYS), MONDAY_8AM) == datetime(2024, 3, 7, 8, 0)
        assert next_fire_time(Custom(2, CustomUnit.WEEKS), MONDAY_8AM) == datetime(2024, 3, 18, 8, 0)

    @pytest.mark.unit
    def test_custom_months(self):
        assert next_fire_time(Custom(1, CustomUnit.MONTHS), MONDAY_8AM) == datetime(2024, 4, 4, 8, 0)


# =============================================================================
# Test next_fire_time_after
# =============================================================================

class TestNextFireTimeAfter:
    """Tests for roll-forward and series termination"""

    @pytest.mark.unit
    def test_returns_first_future_slot(self):
        three_days_ago = datetime(2024, 3, 1, 8, 0)
        now = datetime(2024, 3, 4, 7, 0)

        result = next_fire_time_after(Daily(), three_days_ago, not_before=now)

        assert result == datetime(2024, 3, 4, 8, 0)

    @pytest.mark.unit
    def test_ends_at_scheduled_end(self):
        result = next_fire_time_after(
            Daily(),
            datetime(2024, 3, 1, 8, 0),
            not_before=datetime(2024, 3, 4, 7, 0),
            end=datetime(2024, 3, 3, 12, 0)
        )
        assert result is None

    @pytest.mark.unit
    def test_slot_on_end_boundary_is_kept(self):
        result = next_fire_time_after(
            Daily(),
            MONDAY_8AM,
            not_before=MONDAY_8AM,
            end=datetime(2024, 3, 5, 8, 0)
        )
        assert result == datetime(2024, 3, 5, 8, 0)

    @pytest.mark.unit
    def test_no_repeat_terminates(self):
        assert next_fire_time_after(NoRepeat(), MONDAY_8AM, not_before=MONDAY_8AM) is None
