from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# None is the "no group" scope used by peer-to-peer expenses
Scope = Optional[str]


class PairwiseDebt(BaseModel):
    """Netted amount debtor owes creditor within one scope."""
    debtor_id: str
    creditor_id: str
    amount_cents: int = Field(..., gt=0)

    model_config = ConfigDict(frozen=True)


class BalanceState(BaseModel):
    """
    Derived balances for one scope. Never persisted.

    Invariants:
    - at most one PairwiseDebt per unordered pair of users
    - debts sorted by (debtor_id, creditor_id)
    - sum(net_cents.values()) == 0
    """
    scope: Scope = None
    debts: List[PairwiseDebt] = []
    net_cents: Dict[str, int] = {}
    excluded_record_ids: List[str] = []
    record_count: int = 0

    model_config = ConfigDict(frozen=True)

    @classmethod
    def empty(cls, scope: Scope = None) -> "BalanceState":
        return cls(scope=scope)

    def owed(self, debtor_id: str, creditor_id: str) -> int:
        """How much debtor owes creditor after netting (0 if nothing)."""
        for debt in self.debts:
            if debt.debtor_id == debtor_id and debt.creditor_id == creditor_id:
                return debt.amount_cents
        return 0

    def net(self, user_id: str) -> int:
        return self.net_cents.get(user_id, 0)

    def total(self) -> int:
        """Sum of all net balances; always 0."""
        return sum(self.net_cents.values())


class BalanceResponse(BaseModel):
    """Balance response schema."""
    balance: BalanceState
    paused: bool = False
