"""REST API routes exposing admission, authorization and gated content flows."""

from pathlib import Path
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from chemsnap.auth.provider import StoreAuthProvider
from chemsnap.config import get_settings
from chemsnap.errors import AppError, BlockedAccount, IdentityUnavailable, ProfileLoadFailed
from chemsnap.models.access import AccessDecision, NavEntry, Page, Resource
from chemsnap.models.session import ActivityResult, Admission
from chemsnap.models.user_profile import Identity, Role, UserProfile
from chemsnap.policy.access import AccessPolicy
from chemsnap.services.content import ContentService
from chemsnap.services.session_gate import SessionGate
from chemsnap.services.user_admin import UserAdminService
from chemsnap.storage.data_store import JsonFileDataStore
from chemsnap.storage.user_profile import load_profile
from chemsnap.streak.tracker import StreakTracker

logger = structlog.get_logger()
router = APIRouter(prefix="/api")

policy = AccessPolicy()
# One tracker per data directory so per-user write locks are shared across requests
_trackers: dict[Path, StreakTracker] = {}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError as ``{"error": code, "message": ...}``."""
    return JSONResponse(
        {"error": exc.code, "message": exc.message}, status_code=exc.status_code
    )


# Dependencies ---------------------------------------------------------


def get_store() -> JsonFileDataStore:
    return JsonFileDataStore(get_settings().store_dir)


def get_tracker(store: JsonFileDataStore = Depends(get_store)) -> StreakTracker:
    tracker = _trackers.get(store.data_dir)
    if tracker is None:
        tracker = _trackers[store.data_dir] = StreakTracker(store, tz=get_settings().streak_tz)
    return tracker


def get_auth(request: Request, store: JsonFileDataStore = Depends(get_store)) -> StoreAuthProvider:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    return StoreAuthProvider(store, token if scheme.lower() == "bearer" and token else None)


async def current_actor(
    auth: StoreAuthProvider = Depends(get_auth),
    store: JsonFileDataStore = Depends(get_store),
) -> Identity:
    """Resolve the request's identity, failing closed with a forced sign-out."""
    user = await auth.get_current_identity()
    if user is None:
        raise IdentityUnavailable("You must be logged in to access this page.")
    try:
        profile = await load_profile(store, user.id)
    except ProfileLoadFailed:
        await auth.sign_out()
        raise
    if profile.is_blocked:
        await auth.sign_out()
        logger.warning("blocked_request_rejected", user_id=profile.id)
        raise BlockedAccount("Your account has been blocked. Please contact support.")
    return profile.identity


def get_content(
    store: JsonFileDataStore = Depends(get_store),
    tracker: StreakTracker = Depends(get_tracker),
) -> ContentService:
    return ContentService(store, policy=policy, tracker=tracker)


def get_user_admin(store: JsonFileDataStore = Depends(get_store)) -> UserAdminService:
    return UserAdminService(store, policy=policy)


# Request bodies -------------------------------------------------------


class SessionCheckRequest(BaseModel):
    page: Page = Page.HOME


class ActivityRequest(BaseModel):
    source: str = "page_load"


class JoinClassRequest(BaseModel):
    class_code: str


class SubmissionRequest(BaseModel):
    content: str


class QuizResultRequest(BaseModel):
    score: int
    total_questions: int


class GradeRequest(BaseModel):
    grade: str
    feedback: str | None = None


class RoleChangeRequest(BaseModel):
    role: Role


# Session and access ---------------------------------------------------


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@router.post("/session/check")
async def check_session(
    body: SessionCheckRequest,
    auth: StoreAuthProvider = Depends(get_auth),
    store: JsonFileDataStore = Depends(get_store),
    tracker: StreakTracker = Depends(get_tracker),
) -> Admission:
    """Admit the session to a page and record the day's activity."""
    gate = SessionGate(auth, store, policy=policy, tracker=tracker)
    return await gate.check(body.page)


@router.get("/navigation")
async def navigation(actor: Identity = Depends(current_actor)) -> list[NavEntry]:
    return policy.nav_entries(actor.role)


@router.post("/authorize")
async def authorize(
    resource: Resource,
    auth: StoreAuthProvider = Depends(get_auth),
    store: JsonFileDataStore = Depends(get_store),
) -> AccessDecision:
    """Decide a resource request; never fails, denies on any lookup error."""
    identity = None
    try:
        user = await auth.get_current_identity()
        if user is not None:
            identity = (await load_profile(store, user.id)).identity
    except IdentityUnavailable:
        pass
    except ProfileLoadFailed:
        await auth.sign_out()
    decision = policy.authorize(identity, resource)
    if decision.sign_out:
        await auth.sign_out()
    return decision


@router.post("/activity")
async def record_activity(
    body: ActivityRequest,
    actor: Identity = Depends(current_actor),
    store: JsonFileDataStore = Depends(get_store),
    tracker: StreakTracker = Depends(get_tracker),
) -> ActivityResult:
    profile = await load_profile(store, actor.id)
    streak, warning = await tracker.record_activity(profile, source=body.source)
    return ActivityResult(
        record={"user_id": profile.id, "current_streak": profile.current_streak},
        streak=streak,
        notices=[warning] if warning else [],
    )


# Feed -----------------------------------------------------------------


@router.delete("/posts/{post_id}", status_code=204)
async def delete_post(
    post_id: str,
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> None:
    await content.delete_post(actor, post_id)


@router.delete("/comments/{comment_id}", status_code=204)
async def delete_comment(
    comment_id: str,
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> None:
    await content.delete_comment(actor, comment_id)


# Quizzes and resources ------------------------------------------------


@router.get("/quizzes")
async def list_quizzes(
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> list[dict[str, Any]]:
    """Published quizzes to take."""
    return await content.list_published_quizzes(actor)


@router.get("/quizzes/managed")
async def list_managed_quizzes(
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> list[dict[str, Any]]:
    return await content.list_managed_quizzes(actor)


@router.post("/quizzes/{quiz_id}/results")
async def submit_quiz_result(
    quiz_id: str,
    body: QuizResultRequest,
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> ActivityResult:
    return await content.submit_quiz_result(actor, quiz_id, body.score, body.total_questions)


@router.get("/quiz-results")
async def list_quiz_results(
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> list[dict[str, Any]]:
    return await content.list_quiz_results(actor)


@router.get("/resources/hsc")
async def list_hsc_resources(
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> list[dict[str, Any]]:
    return await content.list_hsc_resources(actor)


@router.get("/resources/general")
async def list_general_resources(
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> list[dict[str, Any]]:
    return await content.list_general_resources(actor)


# Classes and assignments ----------------------------------------------


@router.get("/classes/mine")
async def list_my_classes(
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> list[dict[str, Any]]:
    return await content.list_my_classes(actor)


@router.post("/classes/join", status_code=201)
async def join_class(
    body: JoinClassRequest,
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> dict[str, Any]:
    return await content.join_class(actor, body.class_code)


@router.post("/assignments/{assignment_id}/submissions", status_code=201)
async def submit_assignment(
    assignment_id: str,
    body: SubmissionRequest,
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> ActivityResult:
    return await content.submit_assignment(actor, assignment_id, body.content)


@router.patch("/submissions/{submission_id}/grade")
async def grade_submission(
    submission_id: str,
    body: GradeRequest,
    actor: Identity = Depends(current_actor),
    content: ContentService = Depends(get_content),
) -> dict[str, Any]:
    return await content.grade_submission(actor, submission_id, body.grade, body.feedback)


# User management ------------------------------------------------------


@router.get("/admin/users")
async def list_users(
    actor: Identity = Depends(current_actor),
    admin: UserAdminService = Depends(get_user_admin),
) -> dict[str, list[UserProfile]]:
    return await admin.list_users(actor)


@router.patch("/admin/users/{user_id}/role")
async def change_role(
    user_id: str,
    body: RoleChangeRequest,
    actor: Identity = Depends(current_actor),
    admin: UserAdminService = Depends(get_user_admin),
) -> UserProfile:
    return await admin.change_role(actor, user_id, body.role)


@router.post("/admin/users/{user_id}/block")
async def block_user(
    user_id: str,
    actor: Identity = Depends(current_actor),
    admin: UserAdminService = Depends(get_user_admin),
) -> UserProfile:
    return await admin.set_blocked(actor, user_id, True)


@router.post("/admin/users/{user_id}/unblock")
async def unblock_user(
    user_id: str,
    actor: Identity = Depends(current_actor),
    admin: UserAdminService = Depends(get_user_admin),
) -> UserProfile:
    return await admin.set_blocked(actor, user_id, False)


@router.delete("/admin/users/{user_id}", status_code=204)
async def delete_user(
    user_id: str,
    actor: Identity = Depends(current_actor),
    admin: UserAdminService = Depends(get_user_admin),
) -> None:
    await admin.delete_user(actor, user_id)
