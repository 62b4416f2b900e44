"""Role-based access policy: admission, ownership rules, navigation and query scopes."""

from typing import Any

import structlog

from chemsnap.errors import (
    AccessDenied,
    AppError,
    BlockedAccount,
    IdentityUnavailable,
    SelfActionRejected,
)
from chemsnap.models.access import (
    INDEX_PATH,
    LOGIN_PATH,
    AccessDecision,
    Action,
    NavEntry,
    Page,
    Resource,
)
from chemsnap.models.user_profile import Identity, Role

logger = structlog.get_logger()

STUDENT = frozenset({Role.STUDENT})
TEACHER = frozenset({Role.TEACHER})
ADMIN = frozenset({Role.ADMIN})
TEACHER_OR_ADMIN = frozenset({Role.TEACHER, Role.ADMIN})
STUDENT_OR_ADMIN = frozenset({Role.STUDENT, Role.ADMIN})
EVERYONE = frozenset(Role)

# Roles allowed per action, with the denial message shown to everyone else.
ACTION_ROLES: dict[Action, tuple[frozenset[Role], str]] = {
    Action.MANAGE_CLASS: (TEACHER, "Access Denied: Only teachers can manage classes."),
    Action.CREATE_ASSIGNMENT: (TEACHER, "Access Denied: Only teachers can create assignments."),
    Action.GRADE_SUBMISSION: (TEACHER, "Access Denied: Only teachers can grade submissions."),
    Action.JOIN_CLASS: (STUDENT, "Access Denied: Only students can join classes."),
    Action.VIEW_MY_CLASSES: (STUDENT, "Access Denied: Only students can view their classes."),
    Action.SUBMIT_ASSIGNMENT: (STUDENT, "Access Denied: Only students can submit assignments."),
    Action.VIEW_ASSIGNMENT: (
        frozenset({Role.STUDENT, Role.TEACHER}),
        "Access Denied: You cannot view this assignment.",
    ),
    Action.MANAGE_QUIZ: (
        TEACHER_OR_ADMIN,
        "Access Denied: Only teachers and administrators can manage quizzes.",
    ),
    Action.VIEW_QUIZ_ANALYTICS: (
        TEACHER_OR_ADMIN,
        "Access Denied: Only teachers and administrators can view quiz analytics.",
    ),
    Action.TAKE_QUIZ: (
        STUDENT_OR_ADMIN,
        "Access Denied: Only students and administrators can take quizzes.",
    ),
    Action.VIEW_QUIZ_RESULTS: (
        STUDENT_OR_ADMIN,
        "Access Denied: Only students and administrators can view quiz results.",
    ),
    Action.MANAGE_RESOURCE: (ADMIN, "Access Denied: Only administrators can manage resources."),
    Action.VIEW_RESOURCES: (EVERYONE, ""),
    Action.DELETE_POST: (EVERYONE, ""),
    Action.DELETE_COMMENT: (EVERYONE, ""),
    Action.CHANGE_ROLE: (ADMIN, "Access Denied: Only administrators can manage users."),
    Action.BLOCK_USER: (ADMIN, "Access Denied: Only administrators can manage users."),
    Action.UNBLOCK_USER: (ADMIN, "Access Denied: Only administrators can manage users."),
    Action.DELETE_USER: (ADMIN, "Access Denied: Only administrators can manage users."),
}

# Gated pages map to the action whose role rule admits them; None = any role.
PAGE_ACTIONS: dict[Page, Action | None] = {
    Page.HOME: None,
    Page.FEED: None,
    Page.NEWS: None,
    Page.RESOURCES: Action.VIEW_RESOURCES,
    Page.HSC_RESOURCES: Action.VIEW_RESOURCES,
    Page.QUIZZES: None,
    Page.CALENDAR: None,
    Page.PROFILE: None,
    Page.CLASSES: Action.MANAGE_CLASS,
    Page.MY_CLASSES: Action.VIEW_MY_CLASSES,
    Page.MY_QUIZ_RESULTS: Action.VIEW_QUIZ_RESULTS,
    Page.TEACHER_QUIZZES: Action.MANAGE_QUIZ,
    Page.QUIZ_ANALYTICS: Action.VIEW_QUIZ_ANALYTICS,
    Page.ADMIN_RESOURCES: Action.MANAGE_RESOURCE,
    Page.USER_MANAGEMENT: Action.BLOCK_USER,
}

BASE_NAV: list[NavEntry] = [
    NavEntry(path=Page.HOME, label="Home"),
    NavEntry(path=Page.FEED, label="Feed"),
    NavEntry(path=Page.NEWS, label="News"),
    NavEntry(path=Page.RESOURCES, label="Resources"),
    NavEntry(path=Page.QUIZZES, label="Quizzes"),
    NavEntry(path=Page.CALENDAR, label="Calendar"),
]

ROLE_NAV: dict[Role, list[NavEntry]] = {
    Role.STUDENT: [
        NavEntry(path=Page.MY_CLASSES, label="My Classes"),
        NavEntry(path=Page.MY_QUIZ_RESULTS, label="My Quiz Results"),
    ],
    Role.TEACHER: [NavEntry(path=Page.CLASSES, label="Classes")],
    Role.PERSONAL: [],
    Role.ADMIN: [
        NavEntry(path=Page.ADMIN_RESOURCES, label="Admin Resources"),
        NavEntry(path=Page.USER_MANAGEMENT, label="User Management"),
    ],
}

TEACHER_OWNED = frozenset({
    Action.MANAGE_CLASS,
    Action.MANAGE_QUIZ,
    Action.VIEW_QUIZ_ANALYTICS,
})

# Actions on an existing class: the owning teacher must be known and match.
OWNER_REQUIRED = frozenset({Action.CREATE_ASSIGNMENT, Action.GRADE_SUBMISSION})

SELF_ACTION_MESSAGES: dict[Action, str] = {
    Action.CHANGE_ROLE: "You cannot change your own role.",
    Action.BLOCK_USER: "You cannot block/unblock your own account.",
    Action.UNBLOCK_USER: "You cannot block/unblock your own account.",
    Action.DELETE_USER: "You cannot delete your own account from here.",
}


def _check_tables() -> None:
    missing_actions = set(Action) - set(ACTION_ROLES) - {Action.VIEW_PAGE}
    missing_pages = set(Page) - set(PAGE_ACTIONS)
    missing_roles = set(Role) - set(ROLE_NAV)
    if missing_actions or missing_pages or missing_roles:
        raise RuntimeError(
            "Access tables incomplete: "
            f"actions={sorted(missing_actions)} pages={sorted(missing_pages)} "
            f"roles={sorted(missing_roles)}"
        )


_check_tables()


class AccessPolicy:
    """Decides whether an identity may perform an action.

    ``require`` raises an ``AppError`` subclass on denial and is what services
    call; ``authorize`` never raises and turns the same outcome into an
    ``AccessDecision`` for page composition.
    """

    def nav_entries(self, role: Role) -> list[NavEntry]:
        """Navigation visible to a role. UI projection only; not enforcement."""
        return BASE_NAV + ROLE_NAV[role]

    def require(self, identity: Identity | None, resource: Resource) -> Identity:
        if identity is None:
            raise IdentityUnavailable("You must be logged in to access this page.")
        # The block check runs before every other rule, self-action included.
        if identity.is_blocked:
            raise BlockedAccount("Your account has been blocked. Please contact support.")

        if resource.action == Action.VIEW_PAGE:
            action = PAGE_ACTIONS[resource.page or Page.HOME]
            if action is not None:
                self._check_role(identity, action)
            return identity

        self._check_role(identity, resource.action)
        self._check_relationship(identity, resource)
        return identity

    def authorize(self, identity: Identity | None, resource: Resource) -> AccessDecision:
        try:
            self.require(identity, resource)
        except (IdentityUnavailable, BlockedAccount) as exc:
            blocked = isinstance(exc, BlockedAccount)
            if blocked:
                logger.warning("account_blocked", user_id=identity.id, action=resource.action.value)
            return AccessDecision(
                allowed=False,
                redirect_to=LOGIN_PATH,
                sign_out=blocked,
                reason=exc.code,
                message=exc.message,
            )
        except AppError as exc:
            logger.info(
                "access_denied",
                reason=exc.code,
                user_id=identity.id,
                role=identity.role.value,
                action=resource.action.value,
                page=resource.page.value if resource.page else None,
            )
            return AccessDecision(
                allowed=False,
                redirect_to=INDEX_PATH if resource.action == Action.VIEW_PAGE else None,
                reason=exc.code,
                message=exc.message,
                nav=self.nav_entries(identity.role),
            )
        return AccessDecision.allow(self.nav_entries(identity.role))

    def query_scope(self, identity: Identity, collection: str) -> dict[str, Any] | None:
        """Filter to apply when ``identity`` reads ``collection``.

        Returns:
            Equality filter for the store query ({} = unrestricted), or None
            when the identity may not read the collection.
        """
        if identity.is_blocked:
            return None
        role = identity.role
        if collection == "quizzes":
            if role == Role.TEACHER:
                return {"teacher_id": identity.id}
            return {} if role == Role.ADMIN else None
        if collection == "quiz_results":
            if role == Role.STUDENT:
                return {"user_id": identity.id}
            return {} if role == Role.ADMIN else None
        if collection == "hsc_resources":
            # Paid resources never leave the store for non-admins.
            return {} if role == Role.ADMIN else {"is_free": True}
        if collection == "general_resources":
            return {}
        if collection == "class_enrollments":
            return {"student_id": identity.id} if role == Role.STUDENT else None
        if collection == "classes":
            return {"teacher_id": identity.id} if role == Role.TEACHER else None
        return None

    def _check_role(self, identity: Identity, action: Action) -> None:
        roles, message = ACTION_ROLES[action]
        if identity.role not in roles:
            raise AccessDenied(message)

    def _check_relationship(self, identity: Identity, resource: Resource) -> None:
        action = resource.action
        is_owner = resource.owner_id == identity.id

        if action in OWNER_REQUIRED:
            if not is_owner:
                raise AccessDenied("You can only manage assignments for your own classes.")
        elif action in TEACHER_OWNED:
            # Creating a new class or quiz has no owner yet.
            if identity.role == Role.TEACHER and resource.owner_id is not None and not is_owner:
                raise AccessDenied("You can only manage your own classes and quizzes.")
        elif action == Action.SUBMIT_ASSIGNMENT:
            if resource.enrolled is not True:
                raise AccessDenied("You are not enrolled in this class.")
        elif action == Action.VIEW_ASSIGNMENT:
            if identity.role == Role.STUDENT and resource.enrolled is not True:
                raise AccessDenied("You are not enrolled in this class.")
            if identity.role == Role.TEACHER and not is_owner:
                raise AccessDenied("You can only view assignments for your own classes.")
        elif action == Action.VIEW_QUIZ_RESULTS:
            if identity.role == Role.STUDENT and resource.owner_id is not None and not is_owner:
                raise AccessDenied("You can only view your own quiz results.")
        elif action in (Action.DELETE_POST, Action.DELETE_COMMENT):
            if identity.role != Role.ADMIN and not is_owner:
                noun = "posts" if action == Action.DELETE_POST else "comments"
                raise AccessDenied(f"You can only delete your own {noun}.")
        elif action in SELF_ACTION_MESSAGES:
            if resource.target_id is None:
                raise AccessDenied("No target user given.")
            if resource.target_id == identity.id:
                logger.warning("self_action_rejected", user_id=identity.id, action=action.value)
                raise SelfActionRejected(SELF_ACTION_MESSAGES[action])
