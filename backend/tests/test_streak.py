from datetime import date, datetime, timedelta, timezone

import pytest
from app.engine.errors import InvalidTemplateError
from app.engine.streak import (
    PROTECTION_TEMPLATE_BY_ID, PROTECTION_TEMPLATES, ProtectionTemplate,
    StreakState, StreakTracker, classify_day, next_milestone,
)

# 2026-02-27 is a Friday
FRIDAY = datetime(2026, 2, 27, 10, 0, tzinfo=timezone.utc)
TODAY = FRIDAY.date()
YESTERDAY = TODAY - timedelta(days=1)
TWO_DAYS_AGO = TODAY - timedelta(days=2)

FREEZE = PROTECTION_TEMPLATE_BY_ID["streak_freeze"]
INSURANCE = PROTECTION_TEMPLATE_BY_ID["streak_insurance"]
WEEKEND_PASS = PROTECTION_TEMPLATE_BY_ID["weekend_pass"]


def tracker_with(streak: int, last: date | None, longest: int | None = None) -> StreakTracker:
    return StreakTracker(StreakState(
        current_streak=streak,
        longest_streak=streak if longest is None else longest,
        last_active_date=last,
    ))


class TestClassifyDay:
    def test_first_activity(self):
        assert classify_day(None, TODAY) == "started"

    def test_same_day(self):
        assert classify_day(TODAY, TODAY) == "same_day"

    def test_consecutive(self):
        assert classify_day(YESTERDAY, TODAY) == "continued"

    def test_gap(self):
        assert classify_day(TWO_DAYS_AGO, TODAY) == "reset"

    def test_future_last_date(self):
        assert classify_day(TODAY + timedelta(days=1), TODAY) == "ignored"


class TestRecordActivity:
    def test_first_session_ever_starts_streak_at_1(self):
        result = StreakTracker().record_activity(FRIDAY)
        assert result.outcome == "started"
        assert result.state.current_streak == 1
        assert result.state.longest_streak == 1
        assert result.state.last_active_date == TODAY

    def test_consecutive_day_increments_streak(self):
        result = tracker_with(5, YESTERDAY).record_activity(FRIDAY)
        assert result.outcome == "continued"
        assert result.state.current_streak == 6

    def test_same_day_is_idempotent(self):
        tracker = tracker_with(5, YESTERDAY)
        tracker.record_activity(FRIDAY)
        result = tracker.record_activity(FRIDAY + timedelta(hours=8))
        assert result.outcome == "same_day"
        assert result.state.current_streak == 6

    def test_broken_streak_resets_to_1(self):
        result = tracker_with(10, TWO_DAYS_AGO).record_activity(FRIDAY)
        assert result.outcome == "reset"
        assert result.state.current_streak == 1
        assert result.state.longest_streak == 10

    def test_midnight_crossing_counts_as_two_days(self):
        tracker = StreakTracker()
        late = datetime(2026, 2, 26, 23, 59, tzinfo=timezone.utc)
        tracker.record_activity(late)
        result = tracker.record_activity(late + timedelta(minutes=2))
        assert result.outcome == "continued"
        assert result.state.current_streak == 2

    def test_dates_follow_the_timestamp_offset(self):
        tz = timezone(timedelta(hours=-5))
        tracker = StreakTracker()
        tracker.record_activity(datetime(2026, 2, 26, 22, 0, tzinfo=tz))   # 03:00 UTC next day
        result = tracker.record_activity(datetime(2026, 2, 27, 8, 0, tzinfo=tz))
        assert result.outcome == "continued"

    def test_backwards_clock_ignored(self):
        tracker = tracker_with(4, TODAY)
        result = tracker.record_activity(FRIDAY - timedelta(days=3))
        assert result.outcome == "ignored"
        assert tracker.state.current_streak == 4
        assert tracker.state.last_active_date == TODAY

    def test_longest_streak_invariant_over_sequence(self):
        tracker = StreakTracker()
        tracker.grant_protection(FREEZE, FRIDAY)
        day = FRIDAY
        for step in [1, 1, 1, 3, 1, 5, 1, 1, 0, 2, 1]:
            day = day + timedelta(days=step)
            tracker.record_activity(day)
            assert tracker.state.longest_streak >= tracker.state.current_streak

    def test_milestone_reported_once(self):
        tracker = tracker_with(6, YESTERDAY)
        result = tracker.record_activity(FRIDAY)
        assert result.milestone is not None
        assert result.milestone.days == 7
        result = tracker.record_activity(FRIDAY + timedelta(days=1))
        assert result.milestone is None


class TestProtection:
    def test_freeze_preserves_streak(self):
        tracker = tracker_with(5, TWO_DAYS_AGO)
        freeze = tracker.grant_protection(FREEZE, FRIDAY - timedelta(days=5))
        result = tracker.record_activity(FRIDAY)
        assert result.outcome == "protected"
        assert result.state.current_streak == 5
        assert result.protection_used.id == freeze.id
        assert result.state.protections_consumed_count == 1
        assert not tracker.state.protections[0].is_active
        assert tracker.get_active_protections(FRIDAY) == []

    def test_freeze_used_once(self):
        tracker = tracker_with(5, TWO_DAYS_AGO)
        tracker.grant_protection(FREEZE, FRIDAY - timedelta(days=5))
        tracker.record_activity(FRIDAY)
        result = tracker.record_activity(FRIDAY + timedelta(days=2))
        assert result.outcome == "reset"
        assert result.state.current_streak == 1

    def test_oldest_freeze_first(self):
        tracker = tracker_with(3, TWO_DAYS_AGO)
        newer = tracker.grant_protection(FREEZE, FRIDAY - timedelta(days=1))
        older = tracker.grant_protection(FREEZE, FRIDAY - timedelta(days=4))
        used = tracker.use_protection(FRIDAY)
        assert used.id == older.id
        assert [p.id for p in tracker.get_active_protections(FRIDAY)] == [newer.id]

    def test_insurance_beats_freeze_and_stays_active(self):
        tracker = tracker_with(8, TWO_DAYS_AGO)
        tracker.grant_protection(FREEZE, FRIDAY - timedelta(days=3))
        insurance = tracker.grant_protection(INSURANCE, FRIDAY - timedelta(days=2))
        result = tracker.record_activity(FRIDAY)
        assert result.protection_used.id == insurance.id
        assert len(tracker.get_active_protections(FRIDAY)) == 2
        again = tracker.record_activity(FRIDAY + timedelta(days=3))
        assert again.protection_used.id == insurance.id
        assert again.state.protections_consumed_count == 2

    def test_insurance_expires(self):
        tracker = tracker_with(8, None)
        tracker.grant_protection(INSURANCE, FRIDAY)
        assert tracker.has_active_protection(FRIDAY + timedelta(days=29))
        assert not tracker.has_active_protection(FRIDAY + timedelta(days=30))

    def test_weekend_pass_only_on_weekends(self):
        tracker = tracker_with(4, TWO_DAYS_AGO)
        tracker.grant_protection(WEEKEND_PASS, FRIDAY - timedelta(days=7))
        assert tracker.use_protection(FRIDAY) is None
        saturday = FRIDAY + timedelta(days=1)
        used = tracker.use_protection(saturday)
        assert used.kind == "weekend_pass"
        assert tracker.get_active_protections(saturday) == []

    def test_weekend_pass_beats_freeze_on_weekend(self):
        tracker = tracker_with(4, TODAY - timedelta(days=1))
        tracker.grant_protection(FREEZE, FRIDAY - timedelta(days=9))
        tracker.grant_protection(WEEKEND_PASS, FRIDAY - timedelta(days=8))
        sunday = FRIDAY + timedelta(days=2)
        result = tracker.record_activity(sunday)
        assert result.protection_used.kind == "weekend_pass"

    def test_no_protection_available(self):
        tracker = tracker_with(5, TWO_DAYS_AGO)
        assert tracker.use_protection(FRIDAY) is None
        assert tracker.state.protections_consumed_count == 0

    def test_late_purchase_does_not_repair_reset_streak(self):
        tracker = tracker_with(12, TWO_DAYS_AGO)
        tracker.record_activity(FRIDAY)
        tracker.grant_protection(FREEZE, FRIDAY + timedelta(hours=1))
        result = tracker.record_activity(FRIDAY + timedelta(hours=2))
        assert result.outcome == "same_day"
        assert result.state.current_streak == 1

    def test_gap_not_reached_keeps_protection(self):
        tracker = tracker_with(5, YESTERDAY)
        tracker.grant_protection(FREEZE, FRIDAY - timedelta(days=2))
        tracker.record_activity(FRIDAY)
        assert tracker.has_active_protection(FRIDAY)

    @pytest.mark.parametrize("template", [
        ProtectionTemplate("x", "X", "eternal", 0, 0, ""),
        ProtectionTemplate("x", "X", "timeboxed_insurance", 0, 0, ""),
        ProtectionTemplate("x", "X", "single_use_freeze", -1, 0, ""),
        ProtectionTemplate("x", "X", "weekend_pass", 3, 0, ""),
    ])
    def test_invalid_template_rejected(self, template):
        tracker = StreakTracker()
        with pytest.raises(InvalidTemplateError):
            tracker.grant_protection(template, FRIDAY)
        assert tracker.state.protections == []

    def test_catalog_templates_are_valid(self):
        for template in PROTECTION_TEMPLATES:
            template.validate()


class TestRisk:
    def test_not_at_risk_before_risk_hour(self):
        tracker = tracker_with(3, YESTERDAY)
        assert not tracker.is_at_risk(FRIDAY.replace(hour=17, minute=59))

    def test_at_risk_after_risk_hour(self):
        tracker = tracker_with(3, YESTERDAY)
        assert tracker.is_at_risk(FRIDAY.replace(hour=18))

    def test_not_at_risk_once_active_today(self):
        tracker = tracker_with(3, TODAY)
        assert not tracker.is_at_risk(FRIDAY.replace(hour=22))

    def test_custom_risk_hour(self):
        tracker = StreakTracker(StreakState(current_streak=2, longest_streak=2, last_active_date=YESTERDAY), risk_hour=12)
        assert tracker.is_at_risk(FRIDAY.replace(hour=12))

    def test_hours_until_loss(self):
        tracker = tracker_with(3, YESTERDAY)
        assert tracker.hours_until_loss(FRIDAY.replace(hour=18)) == 6
        assert tracker.hours_until_loss(FRIDAY.replace(hour=22, minute=30)) == 2

    def test_hours_until_loss_after_activity_today(self):
        tracker = tracker_with(3, TODAY)
        assert tracker.hours_until_loss(FRIDAY.replace(hour=18)) == 30

    def test_urgency(self):
        tracker = tracker_with(3, YESTERDAY)
        evening = FRIDAY.replace(hour=20)
        assert tracker.urgency(FRIDAY.replace(hour=9)) == "safe"
        assert tracker.urgency(evening) == "critical"
        tracker.grant_protection(FREEZE, FRIDAY)
        assert tracker.urgency(evening) == "warning"


class TestMisc:
    def test_next_milestone(self):
        assert next_milestone(0).days == 7
        assert next_milestone(7).days == 14
        assert next_milestone(30) is None

    def test_protection_time_remaining(self):
        tracker = StreakTracker()
        insurance = tracker.grant_protection(INSURANCE, FRIDAY)
        freeze = tracker.grant_protection(FREEZE, FRIDAY)
        assert tracker.protection_time_remaining(insurance, FRIDAY + timedelta(days=10)) == timedelta(days=20)
        assert tracker.protection_time_remaining(freeze, FRIDAY) == timedelta(0)

    def test_reset_streak_keeps_longest(self):
        tracker = tracker_with(9, TODAY)
        state = tracker.reset_streak()
        assert state.current_streak == 0
        assert state.last_active_date is None
        assert state.longest_streak == 9

    def test_protection_time_text(self):
        tracker = StreakTracker()
        insurance = tracker.grant_protection(INSURANCE, FRIDAY)
        text = tracker.protection_time_text
        assert text(insurance, FRIDAY) == "4w 2d"
        assert text(insurance, FRIDAY + timedelta(days=16)) == "2 weeks"
        assert text(insurance, FRIDAY + timedelta(days=23)) == "1 week"
        assert text(insurance, FRIDAY + timedelta(days=26, hours=12)) == "4 days"
        assert text(insurance, FRIDAY + timedelta(days=29, hours=1)) == "1 day"
        assert text(insurance, FRIDAY + timedelta(days=30)) == "Expired"

    def test_protection_time_text_without_expiry(self):
        tracker = StreakTracker()
        freeze = tracker.grant_protection(FREEZE, FRIDAY)
        weekend = tracker.grant_protection(WEEKEND_PASS, FRIDAY)
        assert tracker.protection_time_text(weekend, FRIDAY) == "Weekends"
        assert tracker.protection_time_text(freeze, FRIDAY + timedelta(days=90)) == "Until used"
        used = tracker.use_protection(FRIDAY)
        assert used.kind == "single_use_freeze"
        assert tracker.protection_time_text(used, FRIDAY) == "Used"
