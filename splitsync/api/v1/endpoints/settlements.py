from fastapi import APIRouter, Depends, HTTPException, status

from splitsync.api.deps import get_session
from splitsync.core.exceptions import InvalidSettlement
from splitsync.models.expense import RecordCreatedResponse, SettleUpRequest, SettlementCreate
from splitsync.services.session import LedgerSession

router = APIRouter()


@router.post("", response_model=RecordCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_settlement(
    payload: SettlementCreate,
    session: LedgerSession = Depends(get_session)
):
    """Record that the caller paid creditor_id."""
    try:
        settlement_id = await session.record_settlement(
            session.identity,
            payload.creditor_id,
            payload.amount_cents,
            payload.group_id
        )
    except InvalidSettlement as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc)
        )
    return RecordCreatedResponse(id=settlement_id)


@router.post("/settle-up", response_model=RecordCreatedResponse, status_code=status.HTTP_201_CREATED)
async def settle_up(
    payload: SettleUpRequest,
    session: LedgerSession = Depends(get_session)
):
    """Pay creditor_id everything the caller currently owes them."""
    try:
        settlement_id = await session.settle_up(payload.creditor_id, payload.group_id)
    except InvalidSettlement as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc)
        )
    return RecordCreatedResponse(id=settlement_id)
