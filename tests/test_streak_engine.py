"""Tests for the pure streak computation."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from chemsnap.models.user_profile import Role
from chemsnap.streak.engine import compute_streak_update, normalize_day

TODAY = date(2024, 1, 11)
YESTERDAY = TODAY - timedelta(days=1)


class TestComputeStreakUpdate:
    def test_first_activity_starts_streak_at_1(self):
        update = compute_streak_update(Role.STUDENT, 0, None, TODAY)
        assert update is not None
        assert update.new_streak == 1
        assert update.new_last_activity_date == TODAY

    def test_same_day_is_idempotent(self):
        first = compute_streak_update(Role.STUDENT, 4, TODAY, TODAY)
        second = compute_streak_update(Role.STUDENT, 4, TODAY, TODAY)
        assert first is None
        assert second is None

    def test_consecutive_day_increments(self):
        update = compute_streak_update(Role.STUDENT, 7, YESTERDAY, TODAY)
        assert update.new_streak == 8
        assert update.new_last_activity_date == TODAY

    def test_gap_resets_to_1(self):
        update = compute_streak_update(Role.STUDENT, 10, TODAY - timedelta(days=5), TODAY)
        assert update.new_streak == 1
        assert update.new_last_activity_date == TODAY

    def test_two_day_gap_resets(self):
        update = compute_streak_update(Role.STUDENT, 3, TODAY - timedelta(days=2), TODAY)
        assert update.new_streak == 1

    @pytest.mark.parametrize("role", [Role.TEACHER, Role.PERSONAL, Role.ADMIN])
    @pytest.mark.parametrize("last", [None, YESTERDAY, TODAY - timedelta(days=9)])
    def test_non_students_never_update(self, role, last):
        assert compute_streak_update(role, 3, last, TODAY) is None

    def test_time_of_day_is_ignored(self):
        morning = datetime(2024, 1, 11, 0, 5)
        night = datetime(2024, 1, 11, 23, 55)
        assert compute_streak_update(Role.STUDENT, 2, morning, night) is None
        update = compute_streak_update(Role.STUDENT, 2, datetime(2024, 1, 10, 23, 59), morning)
        assert update.new_streak == 3

    def test_accepts_iso_string_from_store(self):
        update = compute_streak_update(Role.STUDENT, 3, "2024-01-10", TODAY)
        assert update.new_streak == 4

    def test_scenario_across_a_week(self):
        update = compute_streak_update(Role.STUDENT, 3, date(2024, 1, 10), date(2024, 1, 11))
        assert (update.new_streak, update.new_last_activity_date) == (4, date(2024, 1, 11))

        again = compute_streak_update(
            Role.STUDENT, update.new_streak, update.new_last_activity_date, date(2024, 1, 11)
        )
        assert again is None

        later = compute_streak_update(
            Role.STUDENT, update.new_streak, update.new_last_activity_date, date(2024, 1, 14)
        )
        assert (later.new_streak, later.new_last_activity_date) == (1, date(2024, 1, 14))

    def test_future_last_activity_uses_absolute_difference(self):
        update = compute_streak_update(Role.STUDENT, 5, TODAY + timedelta(days=1), TODAY)
        assert update.new_streak == 6


class TestNormalizeDay:
    def test_date_passes_through(self):
        assert normalize_day(TODAY) == TODAY

    def test_naive_datetime_keeps_its_date(self):
        assert normalize_day(datetime(2024, 1, 11, 23, 30)) == TODAY

    def test_aware_datetime_converted_to_zone(self):
        utc_late = datetime(2024, 1, 11, 23, 30, tzinfo=timezone.utc)
        assert normalize_day(utc_late, ZoneInfo("Australia/Sydney")) == date(2024, 1, 12)
        assert normalize_day(utc_late, ZoneInfo("America/New_York")) == TODAY

    def test_iso_strings(self):
        assert normalize_day("2024-01-11") == TODAY
        assert normalize_day("2024-01-11T08:00:00") == TODAY

    def test_dst_boundary_counts_one_day(self):
        tz = ZoneInfo("Australia/Sydney")
        # DST ends in Sydney on 2024-04-07
        before = datetime(2024, 4, 6, 20, 0, tzinfo=tz)
        after = datetime(2024, 4, 7, 20, 0, tzinfo=tz)
        update = compute_streak_update(Role.STUDENT, 2, before, after, tz=tz)
        assert update.new_streak == 3
