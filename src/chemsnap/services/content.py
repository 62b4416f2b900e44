"""Access-gated content flows: feed moderation, scoped listings, classes and submissions."""

from datetime import datetime
from typing import Any

import structlog

from chemsnap.errors import AccessDenied, AppError, ConflictError, RecordNotFound
from chemsnap.models.access import Action, Resource
from chemsnap.models.session import ActivityResult, Notice, NoticeLevel
from chemsnap.models.user_profile import Identity, Role
from chemsnap.policy.access import AccessPolicy
from chemsnap.storage.user_profile import load_profile
from chemsnap.streak.tracker import StreakTracker

logger = structlog.get_logger()


class ContentService:
    """Reads and writes class, quiz, feed and resource records for an actor.

    Every operation asks the policy first. Listings are filtered with the
    policy's query scope at the store query, not after the fact.
    """

    def __init__(
        self,
        store,
        policy: AccessPolicy | None = None,
        tracker: StreakTracker | None = None,
    ):
        self.store = store
        self.policy = policy or AccessPolicy()
        self.tracker = tracker or StreakTracker(store)

    # Social feed ------------------------------------------------------

    async def delete_post(self, actor: Identity, post_id: str) -> None:
        post = await self.store.get_record("posts", post_id)
        self.policy.require(
            actor, Resource(action=Action.DELETE_POST, owner_id=post.get("author_id"))
        )
        for comment in await self.store.query_records("comments", {"post_id": post_id}):
            await self.store.delete_record("comments", comment["id"])
        await self.store.delete_record("posts", post_id)
        logger.info("post_deleted", actor_id=actor.id, post_id=post_id)

    async def delete_comment(self, actor: Identity, comment_id: str) -> None:
        comment = await self.store.get_record("comments", comment_id)
        self.policy.require(
            actor, Resource(action=Action.DELETE_COMMENT, owner_id=comment.get("author_id"))
        )
        await self.store.delete_record("comments", comment_id)
        logger.info("comment_deleted", actor_id=actor.id, comment_id=comment_id)

    # Scoped listings --------------------------------------------------

    async def list_managed_quizzes(self, actor: Identity) -> list[dict[str, Any]]:
        """Quizzes the actor authors (teacher) or all quizzes (admin)."""
        self.policy.require(actor, Resource(action=Action.MANAGE_QUIZ))
        return await self._scoped_query(actor, "quizzes")

    async def list_published_quizzes(self, actor: Identity) -> list[dict[str, Any]]:
        self.policy.require(actor, Resource(action=Action.TAKE_QUIZ))
        return await self.store.query_records("quizzes", {"is_published": True})

    async def list_quiz_results(self, actor: Identity) -> list[dict[str, Any]]:
        self.policy.require(actor, Resource(action=Action.VIEW_QUIZ_RESULTS))
        return await self._scoped_query(actor, "quiz_results")

    async def list_hsc_resources(self, actor: Identity) -> list[dict[str, Any]]:
        self.policy.require(actor, Resource(action=Action.VIEW_RESOURCES))
        return await self._scoped_query(actor, "hsc_resources")

    async def list_general_resources(self, actor: Identity) -> list[dict[str, Any]]:
        self.policy.require(actor, Resource(action=Action.VIEW_RESOURCES))
        return await self._scoped_query(actor, "general_resources")

    async def list_my_classes(self, actor: Identity) -> list[dict[str, Any]]:
        self.policy.require(actor, Resource(action=Action.VIEW_MY_CLASSES))
        classes = []
        for enrollment in await self._scoped_query(actor, "class_enrollments"):
            try:
                classes.append(await self.store.get_record("classes", enrollment["class_id"]))
            except RecordNotFound:
                logger.warning("enrollment_class_missing", class_id=enrollment["class_id"])
        return classes

    async def _scoped_query(self, actor: Identity, collection: str) -> list[dict[str, Any]]:
        scope = self.policy.query_scope(actor, collection)
        if scope is None:
            raise AccessDenied(f"Access Denied: You cannot view {collection.replace('_', ' ')}.")
        return await self.store.query_records(collection, scope)

    # Classes and assignments ------------------------------------------

    async def join_class(self, actor: Identity, class_code: str) -> dict[str, Any]:
        self.policy.require(actor, Resource(action=Action.JOIN_CLASS))
        matches = await self.store.query_records("classes", {"class_code": class_code})
        if not matches:
            raise RecordNotFound("Invalid class code.")
        class_id = matches[0]["id"]
        if await self._is_enrolled(actor.id, class_id):
            raise ConflictError("You are already enrolled in this class.")
        enrollment = await self.store.insert_record("class_enrollments", {
            "class_id": class_id,
            "student_id": actor.id,
            "enrolled_at": datetime.now(),
        })
        logger.info("class_joined", user_id=actor.id, class_id=class_id)
        return enrollment

    async def submit_assignment(
        self,
        actor: Identity,
        assignment_id: str,
        content: str,
        now: datetime | None = None,
    ) -> ActivityResult:
        assignment = await self.store.get_record("assignments", assignment_id)
        enrolled = (
            actor.role == Role.STUDENT
            and await self._is_enrolled(actor.id, assignment["class_id"])
        )
        self.policy.require(
            actor, Resource(action=Action.SUBMIT_ASSIGNMENT, enrolled=enrolled)
        )
        submission = await self.store.insert_record("assignment_submissions", {
            "assignment_id": assignment_id,
            "student_id": actor.id,
            "content": content,
            "submitted_at": now or datetime.now(),
        })
        logger.info("assignment_submitted", user_id=actor.id, assignment_id=assignment_id)
        return await self._with_streak(actor, submission, now, "assignment_submission")

    async def submit_quiz_result(
        self,
        actor: Identity,
        quiz_id: str,
        score: int,
        total_questions: int,
        now: datetime | None = None,
    ) -> ActivityResult:
        self.policy.require(actor, Resource(action=Action.TAKE_QUIZ))
        quiz = await self.store.get_record("quizzes", quiz_id)
        if actor.role != Role.ADMIN and not quiz.get("is_published"):
            raise RecordNotFound("Quiz not found or not published.")
        result = await self.store.insert_record("quiz_results", {
            "quiz_id": quiz_id,
            "user_id": actor.id,
            "score": score,
            "total_questions": total_questions,
            "completed_at": now or datetime.now(),
        })
        logger.info("quiz_submitted", user_id=actor.id, quiz_id=quiz_id, score=score)
        return await self._with_streak(actor, result, now, "quiz_submission")

    async def grade_submission(
        self,
        actor: Identity,
        submission_id: str,
        grade: str,
        feedback: str | None = None,
    ) -> dict[str, Any]:
        submission = await self.store.get_record("assignment_submissions", submission_id)
        assignment = await self.store.get_record("assignments", submission["assignment_id"])
        klass = await self.store.get_record("classes", assignment["class_id"])
        self.policy.require(
            actor, Resource(action=Action.GRADE_SUBMISSION, owner_id=klass.get("teacher_id"))
        )
        graded = await self.store.update_record("assignment_submissions", submission_id, {
            "grade": grade,
            "feedback": feedback,
            "graded_at": datetime.now(),
        })
        logger.info("submission_graded", actor_id=actor.id, submission_id=submission_id)
        return graded

    async def _is_enrolled(self, student_id: str, class_id: str) -> bool:
        enrollments = await self.store.query_records(
            "class_enrollments", {"class_id": class_id, "student_id": student_id}
        )
        return bool(enrollments)

    async def _with_streak(
        self, actor: Identity, record: dict[str, Any], now: datetime | None, source: str
    ) -> ActivityResult:
        result = ActivityResult(record=record)
        try:
            profile = await load_profile(self.store, actor.id)
        except AppError as exc:
            result.notices.append(Notice(level=NoticeLevel.WARNING, message=exc.message))
            return result
        result.streak, warning = await self.tracker.record_activity(profile, now=now, source=source)
        if warning is not None:
            result.notices.append(warning)
        return result
