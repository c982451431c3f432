import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from splitsync.core.exceptions import MalformedRecord, NotFound
from splitsync.db.store import RecordStore
from splitsync.models.user import UserProfile

logger = logging.getLogger(__name__)

USERS = "users"


class ProfileCache:
    """
    Memoized user profiles for one identity's session.

    Concurrent resolve() calls for the same id share one pending fetch.
    Misses are not cached, so a later call fetches again.
    """

    def __init__(self, store: RecordStore):
        self.store = store
        self._profiles: Dict[str, UserProfile] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._profiles

    def peek(self, user_id: str) -> Optional[UserProfile]:
        """Cached profile without fetching."""
        return self._profiles.get(user_id)

    async def resolve(self, user_id: str) -> UserProfile:
        """Return the profile for user_id, fetching it at most once at a time."""
        cached = self._profiles.get(user_id)
        if cached is not None:
            return cached

        task = self._pending.get(user_id)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._fetch(user_id))
            self._pending[user_id] = task
            task.add_done_callback(lambda _task: self._forget(user_id, _task))

        # One caller being cancelled must not cancel the shared fetch
        return await asyncio.shield(task)

    async def resolve_or_placeholder(self, user_id: str) -> UserProfile:
        try:
            return await self.resolve(user_id)
        except (NotFound, MalformedRecord) as exc:
            logger.info(f"Using placeholder profile for {user_id}: {exc}")
            return UserProfile.placeholder(user_id)

    async def resolve_many(self, user_ids: Iterable[str]) -> List[UserProfile]:
        """Resolve several ids concurrently; unknown ids become placeholders."""
        unique_ids = sorted(set(user_ids))
        return list(await asyncio.gather(*(self.resolve_or_placeholder(uid) for uid in unique_ids)))

    def clear(self) -> None:
        """Drop every cached profile and cancel pending fetches."""
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()
        self._profiles.clear()

    async def _fetch(self, user_id: str) -> UserProfile:
        doc = await self.store.get(USERS, user_id)
        try:
            profile = UserProfile.model_validate(doc)
        except ValidationError as exc:
            raise MalformedRecord(user_id, f"invalid profile: {exc.error_count()} errors") from exc
        self._profiles[user_id] = profile
        return profile

    def _forget(self, user_id: str, task: asyncio.Task) -> None:
        if self._pending.get(user_id) is task:
            del self._pending[user_id]
