"""Tests for streak persistence."""

import asyncio
from datetime import date, datetime
from unittest.mock import AsyncMock

import pytest

from chemsnap.errors import ConflictError, DataStoreError
from chemsnap.models.session import NoticeLevel
from chemsnap.models.user_profile import Role
from chemsnap.storage.data_store import JsonFileDataStore
from chemsnap.storage.user_profile import create_profile, load_profile
from chemsnap.streak.tracker import StreakTracker

NOW = datetime(2024, 1, 11, 9, 30)


@pytest.fixture
def store(tmp_path):
    return JsonFileDataStore(tmp_path)


class TestRecordActivity:
    async def test_increments_and_persists(self, store):
        profile = await create_profile(
            store, "s1", Role.STUDENT, current_streak=3, last_activity_date=date(2024, 1, 10)
        )
        tracker = StreakTracker(store)

        update, notice = await tracker.record_activity(profile, now=NOW)

        assert notice is None
        assert update.new_streak == 4
        assert profile.current_streak == 4
        stored = await load_profile(store, "s1")
        assert stored.current_streak == 4
        assert stored.last_activity_date == date(2024, 1, 11)
        assert stored.updated_at == NOW

    async def test_same_day_writes_nothing(self, store):
        profile = await create_profile(
            store, "s1", Role.STUDENT, current_streak=4, last_activity_date=date(2024, 1, 11)
        )
        spy = AsyncMock(wraps=store)
        tracker = StreakTracker(spy)

        update, notice = await tracker.record_activity(profile, now=NOW)

        assert update is None
        assert notice is None
        spy.update_record.assert_not_called()

    async def test_teacher_streak_untouched(self, store):
        profile = await create_profile(
            store, "t1", Role.TEACHER, current_streak=0, last_activity_date=None
        )
        tracker = StreakTracker(store)

        update, _ = await tracker.record_activity(profile, now=NOW)

        assert update is None
        stored = await load_profile(store, "t1")
        assert stored.current_streak == 0
        assert stored.last_activity_date is None

    async def test_concurrent_calls_increment_once(self, store):
        await create_profile(
            store, "s1", Role.STUDENT, current_streak=3, last_activity_date=date(2024, 1, 10)
        )
        tracker = StreakTracker(store)
        # Two call sites holding their own stale copies of the profile
        first = await load_profile(store, "s1")
        second = await load_profile(store, "s1")

        results = await asyncio.gather(
            tracker.record_activity(first, now=NOW, source="quiz_submission"),
            tracker.record_activity(second, now=NOW, source="page_load"),
        )

        updates = [u for u, _ in results if u is not None]
        assert len(updates) == 1
        stored = await load_profile(store, "s1")
        assert stored.current_streak == 4

    async def test_stale_copy_from_other_process_recomputes(self, store):
        profile = await create_profile(
            store, "s1", Role.STUDENT, current_streak=3, last_activity_date=date(2024, 1, 10)
        )
        # Another writer already recorded today
        await store.update_record(
            "profiles", "s1", {"current_streak": 4, "last_activity_date": date(2024, 1, 11)}
        )
        tracker = StreakTracker(store)

        update, notice = await tracker.record_activity(profile, now=NOW)

        assert update is None
        assert notice is None
        assert profile.current_streak == 4
        assert (await load_profile(store, "s1")).current_streak == 4

    async def test_first_activity_without_streak_fields(self, store):
        await store.insert_record("profiles", {"id": "s1", "role": "student"})
        profile = await load_profile(store, "s1")
        tracker = StreakTracker(store)

        update, notice = await tracker.record_activity(profile, now=NOW)

        assert notice is None
        assert update.new_streak == 1
        stored = await store.get_record("profiles", "s1")
        assert stored["current_streak"] == 1
        assert stored["last_activity_date"] == "2024-01-11"

    async def test_locks_released_after_write(self, store):
        profile = await create_profile(store, "s1", Role.STUDENT)
        tracker = StreakTracker(store)

        await tracker.record_activity(profile, now=NOW)

        assert "s1" not in tracker._locks

    async def test_store_failure_becomes_warning(self, store):
        profile = await create_profile(store, "s1", Role.STUDENT)
        broken = AsyncMock()
        broken.update_record.side_effect = DataStoreError("disk full")
        tracker = StreakTracker(broken)

        update, notice = await tracker.record_activity(profile, now=NOW)

        assert update is None
        assert notice.level == NoticeLevel.WARNING
        assert "disk full" in notice.message
        assert profile.current_streak == 0

    async def test_repeated_conflict_gives_up(self, store):
        profile = await create_profile(store, "s1", Role.STUDENT)
        flaky = AsyncMock()
        flaky.update_record.side_effect = ConflictError("changed")
        flaky.get_record.return_value = profile.model_dump(mode="json")
        tracker = StreakTracker(flaky)

        update, notice = await tracker.record_activity(profile, now=NOW)

        assert update is None
        assert notice.level == NoticeLevel.WARNING
        assert flaky.update_record.await_count == 2
