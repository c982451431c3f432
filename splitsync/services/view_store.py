"""
Derived view store - latest raw slices and the balances derived from them.

Every snapshot replaces one raw slice and triggers a full recompute. Each
scope's BalanceState is replaced as a whole, and listeners of a scope are
only told when that scope's state actually changed.

Views are eventually consistent: a BalanceState reflects the snapshots
applied so far, never data still in flight.
"""

import logging
from collections import defaultdict
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from splitsync.core.exceptions import MalformedRecord
from splitsync.models.balance import BalanceState, Scope
from splitsync.models.expense import parse_record
from splitsync.models.group import Group
from splitsync.models.user import UserProfile
from splitsync.services.ledger_builder import Record, build_balances

logger = logging.getLogger(__name__)


class SliceKind(str, Enum):
    GROUPS = "groups"
    PARTICIPANT_EXPENSES = "participant_expenses"
    PAYER_EXPENSES = "payer_expenses"
    GROUP_EXPENSES = "group_expenses"  # scoped to one group id


SliceKey = Tuple[SliceKind, Scope]


class ViewStatus(BaseModel):
    """Whether any slice is frozen at its last known value."""
    paused: bool = False
    paused_sources: List[str] = []


class Listener:
    """Registration handle returned by the on_* methods."""

    def __init__(self, registry: List["Listener"], callback: Callable):
        self._registry = registry
        self.callback = callback
        registry.append(self)

    @property
    def closed(self) -> bool:
        return self not in self._registry

    def close(self) -> None:
        if self in self._registry:
            self._registry.remove(self)


def _log_malformed(error: MalformedRecord) -> None:
    logger.warning(f"Skipping malformed record: {error}")


def _slice_key(kind: SliceKind, scope: Scope) -> SliceKey:
    # Only per-group expense slices are keyed by scope
    return (kind, scope if kind is SliceKind.GROUP_EXPENSES else None)


class DerivedViewStore:
    def __init__(self, on_malformed: Optional[Callable[[MalformedRecord], None]] = None):
        self._on_malformed = on_malformed or _log_malformed
        self._groups: List[Group] = []
        self._expense_slices: Dict[SliceKey, Dict[str, Record]] = {}
        self._balances: Dict[Scope, BalanceState] = {}
        self._profiles: Dict[str, UserProfile] = {}
        self._stale: Dict[SliceKey, str] = {}

        self._balance_listeners: Dict[Scope, List[Listener]] = defaultdict(list)
        self._group_listeners: List[Listener] = []
        self._status_listeners: List[Listener] = []

    # Readers

    @property
    def groups(self) -> List[Group]:
        return list(self._groups)

    @property
    def balances(self) -> Dict[Scope, BalanceState]:
        return dict(self._balances)

    @property
    def profiles(self) -> Dict[str, UserProfile]:
        return dict(self._profiles)

    @property
    def status(self) -> ViewStatus:
        return ViewStatus(paused=self.paused, paused_sources=self.paused_sources)

    @property
    def paused(self) -> bool:
        return bool(self._stale)

    @property
    def paused_sources(self) -> List[str]:
        return sorted(self._stale.values())

    def balance(self, scope: Scope) -> BalanceState:
        return self._balances.get(scope) or BalanceState.empty(scope)

    def expenses(self, scope: Scope) -> List[Record]:
        """Visible records of a scope, most recent first."""
        records = [record for record in self._merged_records().values() if record.group_id == scope]
        records.sort(key=lambda record: (record.created_at, record.id or ""), reverse=True)
        return records

    # Listeners

    def on_balance_change(self, scope: Scope, callback: Callable[[BalanceState], None]) -> Listener:
        return Listener(self._balance_listeners[scope], callback)

    def on_groups_change(self, callback: Callable[[List[Group]], None]) -> Listener:
        return Listener(self._group_listeners, callback)

    def on_status_change(self, callback: Callable[[ViewStatus], None]) -> Listener:
        return Listener(self._status_listeners, callback)

    # Writers

    def apply_snapshot(self, kind: SliceKind, scope: Scope, docs: List[dict]) -> None:
        """Replace one raw slice with a snapshot and recompute every scope."""
        kind = SliceKind(kind)
        key = _slice_key(kind, scope)
        groups_changed = False

        if kind is SliceKind.GROUPS:
            groups = self._parse_groups(docs)
            groups_changed = groups != self._groups
            self._groups = groups
        else:
            self._expense_slices[key] = self._parse_records(docs)

        resumed = self._stale.pop(key, None) is not None

        self._recompute()
        if groups_changed:
            self._notify(self._group_listeners, self.groups)
        if resumed:
            logger.info(f"Updates resumed for {kind.value}")
            self._notify(self._status_listeners, self.status)

    def mark_stale(self, kind: SliceKind, scope: Scope, error: Exception) -> None:
        """Freeze a slice at its last known value after a stream failure."""
        key = _slice_key(SliceKind(kind), scope)
        was_paused = key in self._stale
        self._stale[key] = str(error)
        logger.warning(f"Updates paused for {key[0].value}: {error}")
        if not was_paused:
            self._notify(self._status_listeners, self.status)

    def set_profiles(self, profiles: List[UserProfile]) -> None:
        for profile in profiles:
            self._profiles[profile.id] = profile

    def reset(self) -> None:
        """Forget all raw and derived state. Only for an identity change."""
        previous = self._balances
        had_groups = bool(self._groups)
        was_paused = self.paused

        self._groups = []
        self._expense_slices = {}
        self._balances = {}
        self._profiles = {}
        self._stale = {}

        for scope in previous:
            self._notify(self._balance_listeners.get(scope, []), BalanceState.empty(scope))
        if had_groups:
            self._notify(self._group_listeners, [])
        if was_paused:
            self._notify(self._status_listeners, self.status)

    # Internals

    def _parse_groups(self, docs: List[dict]) -> List[Group]:
        groups = []
        for doc in docs:
            try:
                groups.append(Group.model_validate(doc))
            except ValidationError as exc:
                self._on_malformed(MalformedRecord(doc.get("id"), f"invalid group: {exc.error_count()} errors"))
        groups.sort(key=lambda group: (group.created_at, group.id))
        return groups

    def _parse_records(self, docs: List[dict]) -> Dict[str, Record]:
        records: Dict[str, Record] = {}
        for doc in docs:
            try:
                record = parse_record(doc)
            except MalformedRecord as exc:
                self._on_malformed(exc)
                continue
            records[record.id] = record
        return records

    def _merged_records(self) -> Dict[str, Record]:
        merged: Dict[str, Record] = {}
        for records in self._expense_slices.values():
            merged.update(records)
        return merged

    def _recompute(self) -> None:
        previous = self._balances
        current = build_balances(self._groups, self._merged_records().values())
        self._balances = current

        for scope in set(previous) | set(current):
            state = current.get(scope) or BalanceState.empty(scope)
            if previous.get(scope) != state:
                self._notify(self._balance_listeners.get(scope, []), state)

    def _notify(self, listeners: List[Listener], payload) -> None:
        for listener in list(listeners):
            try:
                listener.callback(payload)
            except Exception:
                logger.exception("Listener raised while handling a view update")
