from fastapi import APIRouter, Depends, HTTPException, Response, status

from splitsync.api.deps import get_session
from splitsync.core.exceptions import Forbidden, NotFound
from splitsync.models.expense import ExpenseCreate, RecordCreatedResponse
from splitsync.services.session import LedgerSession

router = APIRouter()


@router.post("", response_model=RecordCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_expense(
    payload: ExpenseCreate,
    session: LedgerSession = Depends(get_session)
):
    """Record an expense paid by the caller."""
    expense_id = await session.record_expense(payload)
    return RecordCreatedResponse(id=expense_id)


@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense(
    expense_id: str,
    session: LedgerSession = Depends(get_session)
):
    """Delete an expense or settlement the caller paid for."""
    try:
        await session.delete_expense(expense_id)
    except NotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Expense not found"
        )
    except Forbidden:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the payer can delete this expense"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
