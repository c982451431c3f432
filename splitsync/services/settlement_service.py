import logging

from pydantic import ValidationError

from splitsync.core.config import settings
from splitsync.core.exceptions import InvalidSettlement
from splitsync.db.store import RecordStore
from splitsync.models.balance import BalanceState, Scope
from splitsync.models.expense import SettlementRecord, record_to_document
from splitsync.services.expense_service import EXPENSES

logger = logging.getLogger(__name__)


def record_settlement(debtor_id: str, creditor_id: str, amount_cents: int, scope: Scope) -> SettlementRecord:
    """
    Translate "debtor paid creditor" into a canonical settlement record.

    Raises InvalidSettlement before anything is written.
    """
    if amount_cents is None or amount_cents <= 0:
        raise InvalidSettlement(f"Settlement amount must be positive, got {amount_cents}")
    if debtor_id == creditor_id:
        raise InvalidSettlement("Debtor and creditor must be different users")

    try:
        return SettlementRecord(
            description=settings.SETTLEMENT_DESCRIPTION,
            amount_cents=amount_cents,
            paid_by=debtor_id,
            participants=[creditor_id],
            group_id=scope,
        )
    except ValidationError as exc:
        reasons = "; ".join(error["msg"] for error in exc.errors())
        raise InvalidSettlement(f"Invalid settlement: {reasons}") from exc


def settle_up(balance: BalanceState, debtor_id: str, creditor_id: str) -> SettlementRecord:
    """Settlement for everything debtor currently owes creditor in a scope."""
    outstanding = balance.owed(debtor_id, creditor_id)
    if outstanding <= 0:
        raise InvalidSettlement(f"{debtor_id} owes nothing to {creditor_id}")
    return record_settlement(debtor_id, creditor_id, outstanding, balance.scope)


class SettlementService:
    @staticmethod
    async def submit(store: RecordStore, settlement: SettlementRecord) -> str:
        """Persist a settlement once and return its id."""
        settlement_id = await store.create(EXPENSES, record_to_document(settlement))
        logger.info(
            f"Recorded settlement {settlement_id}: {settlement.debtor_id} paid "
            f"{settlement.creditor_id} {settlement.amount_cents} in scope {settlement.group_id}"
        )
        return settlement_id
