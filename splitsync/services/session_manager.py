import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from splitsync.core.auth import Identity
from splitsync.core.config import settings
from splitsync.db.store import RecordStore
from splitsync.services.session import LedgerSession

logger = logging.getLogger(__name__)


class SessionManager:
    """
    One LedgerSession per identity served by this process.

    Requests and sockets hold a session while they use it (acquire/release).
    A session nobody holds is closed, with its subscriptions, once it has
    been idle for idle_seconds.
    """

    def __init__(
        self,
        store_factory: Callable[[], RecordStore],
        idle_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store_factory = store_factory
        self.idle_seconds = settings.SESSION_IDLE_SECONDS if idle_seconds is None else idle_seconds
        self.clock = clock
        self._sessions: Dict[str, LedgerSession] = {}
        self._holds: Dict[str, int] = {}
        self._last_used: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def get(self, identity: Identity) -> LedgerSession:
        """Session of identity, opened on first use. Does not hold it."""
        session = self._sessions.get(identity.user_id)
        if session is None:
            session = LedgerSession(self.store_factory())
            session.on_identity_change(identity)
            self._sessions[identity.user_id] = session
            self._holds[identity.user_id] = 0
            logger.info(f"Started ledger session for {identity.user_id}")
        self._last_used[identity.user_id] = self.clock()
        return session

    def acquire(self, identity: Identity) -> LedgerSession:
        """Get and hold a session; pair with release()."""
        self.prune()
        session = self.get(identity)
        self._holds[identity.user_id] += 1
        return session

    def release(self, user_id: str) -> None:
        """Drop one hold. The session stays open until it has been idle long enough."""
        if user_id not in self._sessions:
            return
        self._holds[user_id] = max(0, self._holds[user_id] - 1)
        self._last_used[user_id] = self.clock()

    def prune(self) -> int:
        """Close every unheld session idle for at least idle_seconds."""
        now = self.clock()
        expired = [
            user_id for user_id in self._sessions
            if self._holds[user_id] == 0 and now - self._last_used[user_id] >= self.idle_seconds
        ]
        for user_id in expired:
            self.close(user_id)
        return len(expired)

    async def sweep(self, interval: Optional[float] = None) -> None:
        """Prune idle sessions forever; run as a background task."""
        interval = settings.SESSION_SWEEP_SECONDS if interval is None else interval
        while True:
            await asyncio.sleep(interval)
            closed = self.prune()
            if closed:
                logger.info(f"Closed {closed} idle ledger sessions")

    def close(self, user_id: str) -> None:
        session = self._sessions.pop(user_id, None)
        self._holds.pop(user_id, None)
        self._last_used.pop(user_id, None)
        if session is not None:
            session.close()
            logger.info(f"Closed ledger session for {user_id}")

    def close_all(self) -> None:
        for user_id in list(self._sessions):
            self.close(user_id)
