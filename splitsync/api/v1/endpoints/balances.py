import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from splitsync.api.deps import get_session, get_session_manager
from splitsync.core.auth import decode_identity
from splitsync.models.balance import BalanceResponse, BalanceState
from splitsync.services.session import LedgerSession
from splitsync.services.session_manager import SessionManager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=BalanceResponse)
async def get_balance(
    group_id: Optional[str] = None,
    session: LedgerSession = Depends(get_session)
):
    """Balances of a group, or of peer-to-peer expenses when group_id is absent."""
    if group_id is not None:
        session.watch_group(group_id)
    return BalanceResponse(
        balance=session.balance(group_id),
        paused=session.status.paused
    )


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/ws")
async def balance_updates(
    websocket: WebSocket,
    token: str,
    group_id: Optional[str] = None,
    manager: SessionManager = Depends(get_session_manager)
):
    """Push the scope's BalanceState now and after every change."""
    try:
        identity = decode_identity(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if not identity.email_verified:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    session = manager.acquire(identity)
    updates: asyncio.Queue[BalanceState] = asyncio.Queue()
    listener = session.on_balance_change(group_id, updates.put_nowait)
    disconnected = asyncio.ensure_future(_wait_for_disconnect(websocket))
    try:
        if group_id is not None:
            session.watch_group(group_id)
        await websocket.send_json(session.balance(group_id).model_dump(mode="json"))
        while True:
            update = asyncio.ensure_future(updates.get())
            await asyncio.wait({update, disconnected}, return_when=asyncio.FIRST_COMPLETED)
            if disconnected.done():
                update.cancel()
                break
            await websocket.send_json(update.result().model_dump(mode="json"))
        logger.debug(f"Balance socket closed for {identity.user_id}")
    finally:
        disconnected.cancel()
        listener.close()
        manager.release(identity.user_id)
