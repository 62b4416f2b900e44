"""Persists streak updates for tracked student activity."""

import asyncio
import weakref
from datetime import datetime, tzinfo

import structlog

from chemsnap.errors import AppError, ConflictError, DataStoreError, PersistenceFailed
from chemsnap.models.session import Notice, NoticeLevel
from chemsnap.models.user_profile import StreakUpdate, UserProfile
from chemsnap.storage.user_profile import PROFILES, load_profile
from chemsnap.streak.engine import compute_streak_update

logger = structlog.get_logger()


class StreakTracker:
    """Runs the streak engine for an activity and writes the result back.

    Writes for one user are serialized with a per-user lock and applied as a
    conditional update on the last activity day that was read, so two calls
    racing on the same day produce one increment. A lost race reloads the
    profile and recomputes once.

    Args:
        store: Record store holding the ``profiles`` collection.
        tz: Zone that defines the calendar day; None = server local time.
    """

    def __init__(self, store, tz: tzinfo | None = None):
        self.store = store
        self.tz = tz
        # Entries drop out once no call holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def record_activity(
        self,
        profile: UserProfile,
        now: datetime | None = None,
        source: str = "page_load",
    ) -> tuple[StreakUpdate | None, Notice | None]:
        """Record one tracked activity for ``profile``.

        Returns:
            The persisted update (None when nothing was written) and a warning
            notice when persisting failed. Failures never raise.
        """
        now = now or datetime.now(self.tz)
        lock = self._locks.get(profile.id)
        if lock is None:
            lock = self._locks[profile.id] = asyncio.Lock()
        async with lock:
            for attempt in range(2):
                update = compute_streak_update(
                    profile.role,
                    profile.current_streak,
                    profile.last_activity_date,
                    now,
                    tz=self.tz,
                )
                if update is None:
                    return None, None

                try:
                    await self.store.update_record(
                        PROFILES,
                        profile.id,
                        {
                            "current_streak": update.new_streak,
                            "last_activity_date": update.new_last_activity_date,
                            "updated_at": now,
                        },
                        expected={"last_activity_date": profile.last_activity_date},
                    )
                except ConflictError:
                    if attempt:
                        return None, self._failed(profile.id, source, "concurrent update")
                    logger.info("streak_write_conflict", user_id=profile.id, source=source)
                    try:
                        fresh = await load_profile(self.store, profile.id)
                    except AppError as exc:
                        return None, self._failed(profile.id, source, exc.message)
                    profile.current_streak = fresh.current_streak
                    profile.last_activity_date = fresh.last_activity_date
                    continue
                except DataStoreError as exc:
                    return None, self._failed(profile.id, source, exc.message)

                profile.current_streak = update.new_streak
                profile.last_activity_date = update.new_last_activity_date
                profile.updated_at = now
                logger.info(
                    "streak_updated",
                    user_id=profile.id,
                    streak=update.new_streak,
                    day=update.new_last_activity_date.isoformat(),
                    source=source,
                )
                return update, None
        return None, None

    def _failed(self, user_id: str, source: str, detail: str) -> Notice:
        error = PersistenceFailed(f"Failed to update streak: {detail}")
        logger.warning("streak_update_failed", user_id=user_id, source=source, error=detail)
        return Notice(level=NoticeLevel.WARNING, message=error.message)
