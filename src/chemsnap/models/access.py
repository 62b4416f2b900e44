"""Access control models: gated actions, pages and decisions."""

from enum import StrEnum

from pydantic import BaseModel, Field

LOGIN_PATH = "/login"
INDEX_PATH = "/"


class Action(StrEnum):
    """Operations gated by the access policy."""

    VIEW_PAGE = "view_page"
    # Class management (teachers)
    MANAGE_CLASS = "manage_class"
    CREATE_ASSIGNMENT = "create_assignment"
    GRADE_SUBMISSION = "grade_submission"
    # Enrollment (students)
    JOIN_CLASS = "join_class"
    VIEW_MY_CLASSES = "view_my_classes"
    SUBMIT_ASSIGNMENT = "submit_assignment"
    VIEW_ASSIGNMENT = "view_assignment"
    # Quizzes
    MANAGE_QUIZ = "manage_quiz"
    VIEW_QUIZ_ANALYTICS = "view_quiz_analytics"
    TAKE_QUIZ = "take_quiz"
    VIEW_QUIZ_RESULTS = "view_quiz_results"
    # Resources
    MANAGE_RESOURCE = "manage_resource"
    VIEW_RESOURCES = "view_resources"
    # Social feed
    DELETE_POST = "delete_post"
    DELETE_COMMENT = "delete_comment"
    # User management
    CHANGE_ROLE = "change_role"
    BLOCK_USER = "block_user"
    UNBLOCK_USER = "unblock_user"
    DELETE_USER = "delete_user"


class Page(StrEnum):
    """Authenticated client routes."""

    HOME = "/home"
    FEED = "/feed"
    NEWS = "/news"
    RESOURCES = "/resources"
    HSC_RESOURCES = "/hsc-resources"
    QUIZZES = "/quizzes"
    CALENDAR = "/calendar"
    PROFILE = "/profile"
    CLASSES = "/classes"
    MY_CLASSES = "/my-classes"
    MY_QUIZ_RESULTS = "/my-quiz-results"
    TEACHER_QUIZZES = "/teacher-quizzes"
    QUIZ_ANALYTICS = "/quiz-analytics"
    ADMIN_RESOURCES = "/admin/resources"
    USER_MANAGEMENT = "/admin/users"


class Resource(BaseModel):
    """A requested action plus the relationship facts needed to decide it.

    Args:
        action: The gated operation.
        page: Route being entered, for ``Action.VIEW_PAGE``.
        owner_id: Owning user of the content (class/quiz teacher, post/comment
            author, quiz result user).
        target_id: Subject user of a user-management action.
        enrolled: Whether the acting student is enrolled in the content's class.
    """

    action: Action
    page: Page | None = None
    owner_id: str | None = None
    target_id: str | None = None
    enrolled: bool | None = None


class NavEntry(BaseModel):
    path: str
    label: str


class AccessDecision(BaseModel):
    """Outcome of an authorization check. Never persisted."""

    allowed: bool
    redirect_to: str | None = None
    sign_out: bool = False
    reason: str | None = None
    message: str | None = None
    nav: list[NavEntry] = Field(default_factory=list)

    @classmethod
    def allow(cls, nav: list[NavEntry]) -> "AccessDecision":
        return cls(allowed=True, nav=nav)
