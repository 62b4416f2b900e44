"""Session admission: identity -> profile -> access decision -> streak."""

from datetime import datetime

import structlog

from chemsnap.errors import AppError, DataStoreError, IdentityUnavailable, ProfileLoadFailed
from chemsnap.models.access import LOGIN_PATH, AccessDecision, Action, Page, Resource
from chemsnap.models.session import Admission, AdmissionState, Notice, NoticeLevel
from chemsnap.models.user_profile import AuthUser
from chemsnap.policy.access import AccessPolicy
from chemsnap.storage.user_profile import load_profile
from chemsnap.streak.tracker import StreakTracker

logger = structlog.get_logger()


class SessionGate:
    """Admits a client session to an authenticated page.

    State machine::

        unchecked -> checking -> authenticated | unauthenticated
        checking -> blocked -> (forced sign-out) -> unauthenticated

    Every identity change reported by the auth provider re-enters
    ``checking`` once ``start()`` has subscribed. All failures resolve to an
    ``Admission`` with a redirect and notices; nothing is raised.
    """

    def __init__(
        self,
        auth,
        store,
        policy: AccessPolicy | None = None,
        tracker: StreakTracker | None = None,
    ):
        self.auth = auth
        self.store = store
        self.policy = policy or AccessPolicy()
        self.tracker = tracker or StreakTracker(store)
        self.state = AdmissionState.UNCHECKED
        self.transitions: list[AdmissionState] = []
        self.last_admission: Admission | None = None
        self._page = Page.HOME
        self._unsubscribe = None

    def start(self) -> None:
        """Re-check admission on every identity change."""
        if self._unsubscribe is None:
            self._unsubscribe = self.auth.on_identity_change(self._on_identity_change)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def check(self, page: Page = Page.HOME, now: datetime | None = None) -> Admission:
        self._page = page
        self._enter(AdmissionState.CHECKING)
        notices: list[Notice] = []

        try:
            user: AuthUser | None = await self.auth.get_current_identity()
        except IdentityUnavailable as exc:
            notices.append(Notice(level=NoticeLevel.ERROR, message=exc.message))
            return self._reject(exc, notices)
        if user is None:
            logger.info("no_active_session")
            return self._reject(IdentityUnavailable("No active session."), notices)

        try:
            profile = await load_profile(self.store, user.id)
        except ProfileLoadFailed as exc:
            notices.append(Notice(level=NoticeLevel.ERROR, message=exc.message))
            await self._force_sign_out(user.id)
            return self._reject(exc, notices, user_id=user.id)

        decision = self.policy.authorize(profile.identity, Resource(action=Action.VIEW_PAGE, page=page))
        if decision.sign_out:
            self._enter(AdmissionState.BLOCKED)
            notices.append(Notice(level=NoticeLevel.ERROR, message=decision.message))
            await self._force_sign_out(user.id)
            return self._admit(
                AdmissionState.UNAUTHENTICATED, decision, notices, user_id=user.id
            )

        if not decision.allowed:
            notices.append(Notice(level=NoticeLevel.ERROR, message=decision.message))

        streak, warning = await self.tracker.record_activity(profile, now=now, source="page_load")
        if warning is not None:
            notices.append(warning)

        logger.info("session_admitted", user_id=user.id, page=page.value, allowed=decision.allowed)
        return self._admit(
            AdmissionState.AUTHENTICATED, decision, notices, user_id=user.id, streak=streak
        )

    async def _on_identity_change(self, user: AuthUser | None) -> None:
        if user is None:
            self._reject(IdentityUnavailable("Signed out."), [])
            return
        await self.check(self._page)

    async def _force_sign_out(self, user_id: str) -> None:
        # Unsubscribed first so the sign-out notification does not re-enter the gate.
        subscribed = self._unsubscribe is not None
        self.stop()
        try:
            await self.auth.sign_out()
        except DataStoreError as exc:
            logger.error("forced_sign_out_failed", user_id=user_id, error=str(exc))
        else:
            logger.warning("forced_sign_out", user_id=user_id)
        if subscribed:
            self.start()

    def _reject(self, exc: AppError, notices: list[Notice], user_id: str | None = None) -> Admission:
        decision = AccessDecision(
            allowed=False,
            redirect_to=LOGIN_PATH,
            sign_out=isinstance(exc, ProfileLoadFailed),
            reason=exc.code,
            message=exc.message,
        )
        return self._admit(AdmissionState.UNAUTHENTICATED, decision, notices, user_id=user_id)

    def _admit(self, state: AdmissionState, decision: AccessDecision, notices, **fields) -> Admission:
        self._enter(state)
        self.last_admission = Admission(state=state, decision=decision, notices=notices, **fields)
        return self.last_admission

    def _enter(self, state: AdmissionState) -> None:
        self.state = state
        self.transitions.append(state)
        logger.debug("admission_state", state=state.value)
