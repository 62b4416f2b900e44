"""Administrator user management: role changes, blocking and account deletion."""

from datetime import datetime

import structlog
from pydantic import ValidationError

from chemsnap.auth.provider import SESSIONS
from chemsnap.models.access import Action, Page, Resource
from chemsnap.models.user_profile import Identity, Role, UserProfile
from chemsnap.policy.access import AccessPolicy
from chemsnap.storage.user_profile import PROFILES

logger = structlog.get_logger()

ROLE_ORDER = [Role.ADMIN, Role.TEACHER, Role.STUDENT, Role.PERSONAL]


class UserAdminService:
    """Admin-only mutations on other users' profiles.

    Self-targeted actions are rejected by the policy before the store is
    touched.
    """

    def __init__(self, store, policy: AccessPolicy | None = None):
        self.store = store
        self.policy = policy or AccessPolicy()

    async def list_users(self, actor: Identity) -> dict[str, list[UserProfile]]:
        """All profiles grouped by role, admins first."""
        self.policy.require(actor, Resource(action=Action.VIEW_PAGE, page=Page.USER_MANAGEMENT))
        groups: dict[str, list[UserProfile]] = {role.value: [] for role in ROLE_ORDER}
        for record in await self.store.query_records(PROFILES):
            try:
                profile = UserProfile(**record)
            except ValidationError:
                logger.warning("profile_parse_error", user_id=record.get("id"))
                continue
            groups[profile.role.value].append(profile)
        return groups

    async def change_role(self, actor: Identity, target_id: str, role: Role) -> UserProfile:
        self.policy.require(actor, Resource(action=Action.CHANGE_ROLE, target_id=target_id))
        record = await self.store.update_record(
            PROFILES, target_id, {"role": role.value, "updated_at": datetime.now()}
        )
        logger.info("user_role_changed", actor_id=actor.id, target_id=target_id, role=role.value)
        return UserProfile(**record)

    async def set_blocked(self, actor: Identity, target_id: str, blocked: bool) -> UserProfile:
        action = Action.BLOCK_USER if blocked else Action.UNBLOCK_USER
        self.policy.require(actor, Resource(action=action, target_id=target_id))
        record = await self.store.update_record(
            PROFILES, target_id, {"is_blocked": blocked, "updated_at": datetime.now()}
        )
        if blocked:
            await self._revoke_sessions(target_id)
        logger.info(
            "user_blocked" if blocked else "user_unblocked",
            actor_id=actor.id,
            target_id=target_id,
        )
        return UserProfile(**record)

    async def delete_user(self, actor: Identity, target_id: str) -> None:
        self.policy.require(actor, Resource(action=Action.DELETE_USER, target_id=target_id))
        await self.store.delete_record(PROFILES, target_id)
        await self._revoke_sessions(target_id)
        logger.info("user_deleted", actor_id=actor.id, target_id=target_id)

    async def _revoke_sessions(self, user_id: str) -> None:
        for session in await self.store.query_records(SESSIONS, {"user_id": user_id}):
            await self.store.delete_record(SESSIONS, session["id"])
