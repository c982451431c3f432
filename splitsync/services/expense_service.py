import logging

from splitsync.db.store import Predicate, RecordStore
from splitsync.models.expense import ExpenseCreate, ExpenseRecord, record_to_document

logger = logging.getLogger(__name__)

EXPENSES = "expenses"


class ExpenseService:
    @staticmethod
    async def create(store: RecordStore, expense_in: ExpenseCreate, payer_id: str) -> str:
        """
        Persist a new expense paid by payer_id.

        The payer does not have to be a participant.
        """
        expense = ExpenseRecord(
            description=expense_in.description,
            amount_cents=expense_in.amount_cents,
            paid_by=payer_id,
            participants=expense_in.participants,
            group_id=expense_in.group_id,
        )
        expense_id = await store.create(EXPENSES, record_to_document(expense))
        logger.info(f"Recorded expense {expense_id} of {expense.amount_cents} paid by {payer_id}")
        return expense_id

    @staticmethod
    async def delete(store: RecordStore, expense_id: str, payer_id: str) -> None:
        """Delete an expense or settlement. Only its payer may; others get Forbidden."""
        await store.delete(EXPENSES, expense_id, owner=Predicate.equals("paid_by", payer_id))
        logger.info(f"Deleted expense {expense_id} paid by {payer_id}")
