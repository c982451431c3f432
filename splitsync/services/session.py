import logging
from typing import Callable, Dict, List, Optional

from splitsync.core.auth import Identity
from splitsync.core.exceptions import MalformedRecord, NoIdentity
from splitsync.db.store import RecordStore, Subscription
from splitsync.models.balance import BalanceState, Scope
from splitsync.models.expense import ExpenseCreate
from splitsync.models.group import Group
from splitsync.models.user import UserProfile
from splitsync.services.expense_service import ExpenseService
from splitsync.services.ledger_builder import Record
from splitsync.services.settlement_service import SettlementService, record_settlement, settle_up
from splitsync.services.subscription_coordinator import FaultHandler, SubscriptionCoordinator
from splitsync.services.view_store import DerivedViewStore, Listener, ViewStatus

logger = logging.getLogger(__name__)


class LedgerSession:
    """What presentation-layer code talks to: live views plus the write operations."""

    def __init__(
        self,
        store: RecordStore,
        fault_handler: Optional[FaultHandler] = None,
        on_malformed: Optional[Callable[[MalformedRecord], None]] = None,
    ):
        self.store = store
        self.view = DerivedViewStore(on_malformed)
        self.coordinator = SubscriptionCoordinator(store, self.view, fault_handler)

    @property
    def identity(self) -> Optional[str]:
        return self.coordinator.identity

    def on_identity_change(self, identity: Optional[Identity]) -> None:
        """Follow the identity provider. Unverified identities watch nothing."""
        if identity is not None and not identity.email_verified:
            logger.info(f"Identity {identity.user_id} has no verified email, not subscribing")
            identity = None
        self.coordinator.set_identity(identity.user_id if identity else None)

    def close(self) -> None:
        self.coordinator.shutdown()

    # Views

    @property
    def groups(self) -> List[Group]:
        return self.view.groups

    @property
    def status(self) -> ViewStatus:
        return self.view.status

    def balance(self, scope: Scope = None) -> BalanceState:
        return self.view.balance(scope)

    def expenses(self, scope: Scope = None) -> List[Record]:
        return self.view.expenses(scope)

    @property
    def profiles(self) -> Dict[str, UserProfile]:
        """Profiles resolved for rostered members so far."""
        return self.view.profiles

    def watch_group(self, group_id: str) -> Optional[Subscription]:
        """
        Follow every expense of a group, including those between other members.

        Only groups in the current roster can be watched; returns None otherwise.
        """
        self._require_identity()
        if not any(group.id == group_id for group in self.groups):
            logger.info(f"{self.identity} is not a member of {group_id}, not watching it")
            return None
        return self.coordinator.watch_group(group_id)

    def on_balance_change(self, scope: Scope, callback: Callable[[BalanceState], None]) -> Listener:
        return self.view.on_balance_change(scope, callback)

    def on_groups_change(self, callback: Callable[[List[Group]], None]) -> Listener:
        return self.view.on_groups_change(callback)

    def on_status_change(self, callback: Callable[[ViewStatus], None]) -> Listener:
        return self.view.on_status_change(callback)

    async def profile(self, user_id: str) -> UserProfile:
        """Profile via the session cache; a placeholder when it cannot be found."""
        cache = self.coordinator.profiles
        if cache is None:
            raise NoIdentity("Sign in to resolve profiles")
        return await cache.resolve_or_placeholder(user_id)

    # Writes

    def _require_identity(self) -> str:
        if self.identity is None:
            raise NoIdentity("No identity is signed in")
        return self.identity

    async def record_expense(self, expense_in: ExpenseCreate) -> str:
        return await ExpenseService.create(self.store, expense_in, self._require_identity())

    async def record_settlement(self, debtor_id: str, creditor_id: str, amount_cents: int, scope: Scope = None) -> str:
        self._require_identity()
        settlement = record_settlement(debtor_id, creditor_id, amount_cents, scope)
        return await SettlementService.submit(self.store, settlement)

    async def settle_up(self, creditor_id: str, scope: Scope = None) -> str:
        """Pay creditor everything the current identity owes them in scope."""
        settlement = settle_up(self.balance(scope), self._require_identity(), creditor_id)
        return await SettlementService.submit(self.store, settlement)

    async def delete_expense(self, expense_id: str) -> None:
        """Delete a record the current identity paid for."""
        await ExpenseService.delete(self.store, expense_id, self._require_identity())
