"""User profile persistence on top of a DataStore."""

from datetime import datetime

import structlog
from pydantic import ValidationError

from chemsnap.errors import DataStoreError, ProfileLoadFailed
from chemsnap.models.user_profile import Role, UserProfile
from chemsnap.storage.data_store import DataStore

logger = structlog.get_logger()

PROFILES = "profiles"


async def load_profile(store: DataStore, user_id: str) -> UserProfile:
    """Load a profile, failing with ProfileLoadFailed on any store or parse error."""
    try:
        data = await store.get_record(PROFILES, user_id)
        return UserProfile(**data)
    except (DataStoreError, ValidationError) as exc:
        logger.error("profile_load_failed", user_id=user_id, error=str(exc))
        raise ProfileLoadFailed(
            "Failed to load user profile. Please try logging in again."
        ) from exc


async def save_profile(store: DataStore, profile: UserProfile) -> None:
    profile.updated_at = datetime.now()
    await store.update_record(PROFILES, profile.id, profile.model_dump(mode="json"))


async def create_profile(
    store: DataStore, user_id: str, role: Role = Role.STUDENT, **fields
) -> UserProfile:
    profile = UserProfile(id=user_id, role=role, **fields)
    await store.insert_record(PROFILES, profile.model_dump(mode="json"))
    return profile
