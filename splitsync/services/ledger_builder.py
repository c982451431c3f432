"""
Ledger builder - derives balances from raw records. Pure, no I/O.

Algorithm:
1. Partition records into expenses and settlements by kind
2. Split each expense evenly; remainder cents go to the lowest ids first
3. Each non-payer participant owes their share to the payer
4. Each settlement reduces what the payer owes the creditor
5. Net opposite-direction amounts per pair into one directed debt
6. Net per user = owed to them - owed by them

Every call recomputes from scratch, so the same inputs always give an
identical BalanceState. Cost is O(records); the per-subscription snapshot
cap bounds it.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from splitsync.core.exceptions import MalformedRecord
from splitsync.models.balance import BalanceState, PairwiseDebt, Scope
from splitsync.models.expense import SETTLEMENT, ExpenseRecord, SettlementRecord
from splitsync.models.group import Group

logger = logging.getLogger(__name__)

Record = Union[ExpenseRecord, SettlementRecord]


def split_evenly(amount_cents: int, participants: Iterable[str]) -> List[Tuple[str, int]]:
    """
    Equal shares of amount_cents, in ascending participant id order.

    The first (amount_cents % n) participants get one extra cent, so the
    shares always sum to amount_cents exactly.
    """
    ordered = sorted(set(participants))
    if not ordered:
        return []
    base, remainder = divmod(amount_cents, len(ordered))
    return [
        (user_id, base + (1 if index < remainder else 0))
        for index, user_id in enumerate(ordered)
    ]


def check_record(record: Record) -> None:
    """Raise MalformedRecord if a record cannot take part in a balance."""
    if record.amount_cents is None or record.amount_cents <= 0:
        raise MalformedRecord(record.id, f"non-positive amount {record.amount_cents}")
    if not record.participants:
        raise MalformedRecord(record.id, "empty participant set")
    if record.kind == SETTLEMENT:
        if len(record.participants) != 1:
            raise MalformedRecord(record.id, "settlement must have exactly one creditor")
        if record.participants[0] == record.paid_by:
            raise MalformedRecord(record.id, "settlement creditor equals payer")


class _SignedLedger:
    """Pairwise amounts keyed by the ordered pair (low id, high id).

    A positive value means low owes high, a negative value means high owes low.
    """

    def __init__(self):
        self._pairs: Dict[Tuple[str, str], int] = defaultdict(int)

    def add(self, debtor_id: str, creditor_id: str, amount_cents: int) -> None:
        if debtor_id == creditor_id or amount_cents == 0:
            return
        if debtor_id < creditor_id:
            self._pairs[(debtor_id, creditor_id)] += amount_cents
        else:
            self._pairs[(creditor_id, debtor_id)] -= amount_cents

    def debts(self) -> List[PairwiseDebt]:
        result = []
        for (low, high), amount in self._pairs.items():
            if amount > 0:
                result.append(PairwiseDebt(debtor_id=low, creditor_id=high, amount_cents=amount))
            elif amount < 0:
                result.append(PairwiseDebt(debtor_id=high, creditor_id=low, amount_cents=-amount))
        result.sort(key=lambda debt: (debt.debtor_id, debt.creditor_id))
        return result


def build_balance(
    scope: Scope,
    members: Iterable[str],
    records: Iterable[Record],
) -> BalanceState:
    """Compute the BalanceState of one scope from its members and records."""
    ledger = _SignedLedger()
    users = set(members)
    excluded: List[str] = []
    counted = 0

    for record in records:
        if record.group_id != scope:
            continue
        try:
            check_record(record)
        except MalformedRecord as exc:
            logger.warning(f"Excluding record from scope {scope}: {exc}")
            excluded.append(record.id or "")
            continue

        counted += 1
        users.add(record.paid_by)
        users.update(record.participants)

        if record.kind == SETTLEMENT:
            # Paying the creditor is a debt in the opposite direction
            ledger.add(record.participants[0], record.paid_by, record.amount_cents)
            continue

        for user_id, share in split_evenly(record.amount_cents, record.participants):
            ledger.add(user_id, record.paid_by, share)

    debts = ledger.debts()
    net: Dict[str, int] = {user_id: 0 for user_id in users}
    for debt in debts:
        net[debt.creditor_id] += debt.amount_cents
        net[debt.debtor_id] -= debt.amount_cents

    return BalanceState(
        scope=scope,
        debts=debts,
        net_cents=dict(sorted(net.items())),
        excluded_record_ids=sorted(excluded),
        record_count=counted,
    )


def partition_by_scope(records: Iterable[Record]) -> Dict[Scope, List[Record]]:
    """Group records by group_id, None being the no-group scope."""
    scopes: Dict[Scope, List[Record]] = defaultdict(list)
    for record in records:
        scopes[record.group_id].append(record)
    return dict(scopes)


def build_balances(
    groups: Sequence[Group],
    records: Iterable[Record],
) -> Dict[Scope, BalanceState]:
    """
    Build every scope visible to the current identity.

    Scopes are every rostered group, every group id seen on a record, and
    the no-group scope when it has records.
    """
    by_scope = partition_by_scope(records)
    members: Dict[Optional[str], List[str]] = {group.id: group.members for group in groups}

    balances: Dict[Scope, BalanceState] = {}
    for scope in set(members) | set(by_scope):
        balances[scope] = build_balance(scope, members.get(scope, []), by_scope.get(scope, []))
    return balances
