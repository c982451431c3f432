from typing import AsyncIterator

from fastapi import Depends

from splitsync.core.auth import Identity, get_verified_identity
from splitsync.db.mongo import get_db
from splitsync.db.store import MongoRecordStore
from splitsync.services.session import LedgerSession
from splitsync.services.session_manager import SessionManager

session_manager = SessionManager(lambda: MongoRecordStore(get_db()))


def get_session_manager() -> SessionManager:
    """Get the process-wide session manager."""
    return session_manager


async def get_session(
    identity: Identity = Depends(get_verified_identity),
    manager: SessionManager = Depends(get_session_manager)
) -> AsyncIterator[LedgerSession]:
    """Hold the caller's ledger session for the request, opening it on first use."""
    session = manager.acquire(identity)
    try:
        yield session
    finally:
        manager.release(identity.user_id)
