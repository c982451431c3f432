"""
Subscription coordinator - keeps the open subscriptions equal to what the
current identity should be watching, and nothing more.

For an identity three streams are open:
- groups whose members contain the identity (roster)
- expenses whose participants contain the identity
- expenses paid by the identity

Group expense sets are derived from the two expense streams by group_id.
Every callback carries the generation it was opened under; anything that
arrives after its subscription was closed, or after the identity moved on,
is dropped.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set, Tuple

from splitsync.core.exceptions import StreamError
from splitsync.db.store import Predicate, RecordStore, Subscription
from splitsync.models.balance import Scope
from splitsync.services.profile_cache import ProfileCache
from splitsync.services.view_store import DerivedViewStore, SliceKind

logger = logging.getLogger(__name__)

GROUPS = "groups"
EXPENSES = "expenses"

FaultHandler = Callable[[StreamError], None]


def _log_fault(error: StreamError) -> None:
    logger.error(f"Subscription fault: {error}")


class SubscriptionCoordinator:
    def __init__(
        self,
        store: RecordStore,
        view: DerivedViewStore,
        fault_handler: Optional[FaultHandler] = None,
    ):
        self.store = store
        self.view = view
        self.fault_handler = fault_handler or _log_fault

        self._identity: Optional[str] = None
        self._generation = 0
        self._active: Dict[Subscription, Tuple[SliceKind, Scope]] = {}
        self._profiles: Optional[ProfileCache] = None
        self._warmups: Set[asyncio.Task] = set()

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def profiles(self) -> Optional[ProfileCache]:
        """Profile cache of the current identity, None when signed out."""
        return self._profiles

    @property
    def active_queries(self) -> List[Tuple[str, str]]:
        """(identity, query source) of every open subscription."""
        return sorted((self._identity or "", sub.source) for sub in self._active)

    def set_identity(self, identity: Optional[str]) -> None:
        """Switch every subscription to a new identity (None signs out)."""
        if identity == self._identity:
            return

        self._close_all()
        self._generation += 1
        self._identity = identity
        self.view.reset()

        if identity is None:
            logger.info("Identity cleared, all subscriptions closed")
            return

        self._profiles = ProfileCache(self.store)
        self._open(SliceKind.GROUPS, None, GROUPS, Predicate.contains("members", identity))
        self._open(SliceKind.PARTICIPANT_EXPENSES, None, EXPENSES, Predicate.contains("participants", identity))
        self._open(SliceKind.PAYER_EXPENSES, None, EXPENSES, Predicate.equals("paid_by", identity))
        logger.info(f"Opened {len(self._active)} subscriptions for {identity}")

    def watch_group(self, group_id: str) -> Subscription:
        """Open a per-group expense subscription for the current identity."""
        if self._identity is None:
            raise RuntimeError("No identity to watch a group for")
        for subscription, (kind, scope) in self._active.items():
            if kind is SliceKind.GROUP_EXPENSES and scope == group_id:
                return subscription
        return self._open(SliceKind.GROUP_EXPENSES, group_id, EXPENSES, Predicate.equals("group_id", group_id))

    def shutdown(self) -> None:
        self.set_identity(None)

    def _open(self, kind: SliceKind, scope: Scope, collection: str, predicate: Predicate) -> Subscription:
        generation = self._generation
        holder: List[Subscription] = []

        def on_snapshot(docs: List[dict]) -> None:
            if not self._is_current(generation, holder):
                logger.debug(f"Dropping late snapshot for {predicate.describe()}")
                return
            self.view.apply_snapshot(kind, scope, docs)
            if kind is SliceKind.GROUPS:
                self._warm_profiles()

        def on_error(error: StreamError) -> None:
            if not self._is_current(generation, holder):
                return
            # Keep the last known slice, only flag it as paused
            self.view.mark_stale(kind, scope, error)
            self.fault_handler(error)

        subscription = self.store.subscribe(collection, predicate, on_snapshot, on_error)
        holder.append(subscription)
        self._active[subscription] = (kind, scope)
        return subscription

    def _is_current(self, generation: int, holder: List[Subscription]) -> bool:
        if generation != self._generation or not holder:
            return False
        subscription = holder[0]
        return subscription in self._active and not subscription.closed

    def _close_all(self) -> None:
        for subscription in list(self._active):
            subscription.close()
        self._active.clear()

        for task in self._warmups:
            task.cancel()
        self._warmups.clear()

        if self._profiles is not None:
            self._profiles.clear()
            self._profiles = None

    def _warm_profiles(self) -> None:
        """Resolve every rostered member in the background."""
        cache = self._profiles
        if cache is None:
            return
        member_ids = {member for group in self.view.groups for member in group.members}
        missing = [member for member in member_ids if member not in cache]
        if not missing:
            return

        generation = self._generation

        async def warm() -> None:
            profiles = await cache.resolve_many(missing)
            if generation == self._generation:
                self.view.set_profiles(profiles)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Snapshot applied outside a running loop; profiles resolve on demand
            return
        task = loop.create_task(warm())
        self._warmups.add(task)
        task.add_done_callback(self._warmup_done)

    def _warmup_done(self, task: asyncio.Task) -> None:
        self._warmups.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Profile warmup failed: {task.exception()!r}")
