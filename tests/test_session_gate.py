"""Tests for session admission."""

from datetime import date, datetime
from unittest.mock import AsyncMock, patch

import pytest

from chemsnap.auth.provider import StoreAuthProvider
from chemsnap.errors import DataStoreError, IdentityUnavailable
from chemsnap.models.access import INDEX_PATH, LOGIN_PATH, Page
from chemsnap.models.session import AdmissionState, NoticeLevel
from chemsnap.models.user_profile import Role
from chemsnap.services.session_gate import SessionGate
from chemsnap.storage.data_store import JsonFileDataStore
from chemsnap.storage.user_profile import create_profile, load_profile

NOW = datetime(2024, 1, 11, 8, 0)


@pytest.fixture
def store(tmp_path):
    return JsonFileDataStore(tmp_path)


@pytest.fixture
def auth(store):
    return StoreAuthProvider(store)


class TestCheck:
    async def test_no_session_redirects_to_login(self, store, auth):
        gate = SessionGate(auth, store)

        admission = await gate.check()

        assert admission.state == AdmissionState.UNAUTHENTICATED
        assert admission.decision.redirect_to == LOGIN_PATH
        assert not admission.admitted
        assert gate.transitions == [AdmissionState.CHECKING, AdmissionState.UNAUTHENTICATED]

    async def test_student_admitted_and_streak_recorded(self, store, auth):
        await create_profile(
            store, "s1", Role.STUDENT, current_streak=3, last_activity_date=date(2024, 1, 10)
        )
        await auth.sign_in("s1")
        gate = SessionGate(auth, store)

        admission = await gate.check(Page.MY_CLASSES, now=NOW)

        assert admission.admitted
        assert admission.user_id == "s1"
        assert admission.streak.new_streak == 4
        assert [e.label for e in admission.decision.nav][-2:] == ["My Classes", "My Quiz Results"]
        assert (await load_profile(store, "s1")).current_streak == 4

    async def test_fresh_student_with_null_streak_admitted(self, store, auth):
        await store.insert_record("profiles", {
            "id": "s1",
            "role": "student",
            "current_streak": None,
            "last_activity_date": None,
        })
        await auth.sign_in("s1")
        gate = SessionGate(auth, store)

        admission = await gate.check(now=NOW)

        assert admission.admitted
        assert admission.streak.new_streak == 1
        assert auth.token is not None
        stored = await load_profile(store, "s1")
        assert stored.current_streak == 1
        assert stored.last_activity_date == date(2024, 1, 11)

    async def test_blocked_account_forced_out(self, store, auth):
        await create_profile(store, "s1", Role.STUDENT, is_blocked=True, current_streak=2)
        token = await auth.sign_in("s1")
        gate = SessionGate(auth, store)

        admission = await gate.check(now=NOW)

        assert admission.state == AdmissionState.UNAUTHENTICATED
        assert admission.decision.reason == "blocked_account"
        assert admission.decision.redirect_to == LOGIN_PATH
        assert admission.notices[0].level == NoticeLevel.ERROR
        assert "blocked" in admission.notices[0].message
        assert gate.transitions == [
            AdmissionState.CHECKING,
            AdmissionState.BLOCKED,
            AdmissionState.UNAUTHENTICATED,
        ]
        assert await store.query_records("sessions", {"id": token}) == []
        assert auth.token is None
        # No streak accrues for a blocked account
        assert (await load_profile(store, "s1")).current_streak == 2

    async def test_missing_profile_fails_closed(self, store, auth):
        await auth.sign_in("ghost")
        gate = SessionGate(auth, store)

        admission = await gate.check()

        assert admission.state == AdmissionState.UNAUTHENTICATED
        assert admission.decision.reason == "profile_load_failed"
        assert admission.decision.sign_out
        assert auth.token is None
        assert "Failed to load user profile" in admission.notices[0].message

    async def test_session_lookup_error_fails_closed(self, store):
        auth = AsyncMock()
        auth.get_current_identity.side_effect = IdentityUnavailable("Failed to check session.")
        gate = SessionGate(auth, store)

        admission = await gate.check()

        assert admission.state == AdmissionState.UNAUTHENTICATED
        assert admission.decision.redirect_to == LOGIN_PATH
        assert admission.notices[0].message == "Failed to check session."

    async def test_role_denied_page_still_authenticated(self, store, auth):
        await create_profile(store, "p1", Role.PERSONAL)
        await auth.sign_in("p1")
        gate = SessionGate(auth, store)

        admission = await gate.check(Page.USER_MANAGEMENT, now=NOW)

        assert admission.state == AdmissionState.AUTHENTICATED
        assert not admission.admitted
        assert admission.decision.redirect_to == INDEX_PATH
        assert admission.streak is None

    async def test_streak_write_failure_is_a_warning(self, store, auth):
        await create_profile(store, "s1", Role.STUDENT)
        await auth.sign_in("s1")
        gate = SessionGate(auth, store)

        with patch.object(
            store, "update_record", AsyncMock(side_effect=DataStoreError("unavailable"))
        ):
            admission = await gate.check(now=NOW)

        assert admission.admitted
        assert admission.streak is None
        assert admission.notices[-1].level == NoticeLevel.WARNING


class TestIdentityChanges:
    async def test_sign_in_rechecks(self, store, auth):
        await create_profile(store, "t1", Role.TEACHER)
        gate = SessionGate(auth, store)
        gate.start()

        await auth.sign_in("t1")

        assert gate.state == AdmissionState.AUTHENTICATED
        assert gate.last_admission.user_id == "t1"

    async def test_sign_out_moves_to_unauthenticated(self, store, auth):
        await create_profile(store, "t1", Role.TEACHER)
        gate = SessionGate(auth, store)
        gate.start()
        await auth.sign_in("t1")

        await auth.sign_out()

        assert gate.state == AdmissionState.UNAUTHENTICATED
        assert gate.last_admission.decision.redirect_to == LOGIN_PATH

    async def test_stop_unsubscribes(self, store, auth):
        await create_profile(store, "t1", Role.TEACHER)
        gate = SessionGate(auth, store)
        gate.start()
        gate.stop()

        await auth.sign_in("t1")

        assert gate.state == AdmissionState.UNCHECKED

    async def test_forced_sign_out_keeps_blocked_result(self, store, auth):
        await create_profile(store, "s1", Role.STUDENT, is_blocked=True)
        gate = SessionGate(auth, store)
        gate.start()

        await auth.sign_in("s1")

        assert gate.state == AdmissionState.UNAUTHENTICATED
        assert gate.last_admission.decision.reason == "blocked_account"
