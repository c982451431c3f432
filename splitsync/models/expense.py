"""
Expense and settlement records - the raw input of the ledger.

Design principles:
- One collection (expenses/{id}) holds both variants
- Variants are tagged by an explicit `kind` field
- Untagged legacy documents are classified once, at parse time, by the
  settlement signature (single participant + sentinel description)
- All amounts in integer cents
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from splitsync.core.config import settings
from splitsync.core.exceptions import MalformedRecord
from splitsync.models.base import IdStr, StoredModel

# User ids in request bodies
UserId = Annotated[str, Field(min_length=1)]

EXPENSE = "expense"
SETTLEMENT = "settlement"


class _RecordBase(StoredModel):
    description: str = ""
    amount_cents: int = Field(..., gt=0)
    paid_by: IdStr
    participants: List[IdStr] = Field(..., min_length=1)
    group_id: Optional[IdStr] = None  # None: peer-to-peer, outside any group

    @field_validator("participants")
    @classmethod
    def unique_participants(cls, participants: List[str]) -> List[str]:
        return sorted(set(participants))


class ExpenseRecord(_RecordBase):
    """An ordinary shared expense, split evenly across participants."""
    kind: Literal["expense"] = EXPENSE


class SettlementRecord(_RecordBase):
    """
    A payment from a debtor (paid_by) to one creditor (the sole participant).

    Invariants:
    - exactly one participant
    - creditor != debtor
    """
    kind: Literal["settlement"] = SETTLEMENT
    description: str = Field(default_factory=lambda: settings.SETTLEMENT_DESCRIPTION)

    @model_validator(mode="after")
    def single_creditor(self) -> "SettlementRecord":
        if len(self.participants) != 1:
            raise ValueError("settlement must have exactly one participant")
        if self.participants[0] == self.paid_by:
            raise ValueError("settlement creditor must differ from the payer")
        return self

    @property
    def debtor_id(self) -> str:
        return self.paid_by

    @property
    def creditor_id(self) -> str:
        return self.participants[0]


LedgerRecord = Annotated[Union[ExpenseRecord, SettlementRecord], Field(discriminator="kind")]

_record_adapter = TypeAdapter(LedgerRecord)


def has_settlement_signature(doc: dict) -> bool:
    """Structural test used only for documents written before `kind` existed."""
    participants = doc.get("participants") or []
    return (
        len(participants) == 1
        and doc.get("description") == settings.SETTLEMENT_DESCRIPTION
    )


def parse_record(doc: dict) -> Union[ExpenseRecord, SettlementRecord]:
    """Validate a stored document into a tagged record or raise MalformedRecord."""
    data = dict(doc)
    if "kind" not in data:
        data["kind"] = SETTLEMENT if has_settlement_signature(data) else EXPENSE

    try:
        return _record_adapter.validate_python(data)
    except ValidationError as exc:
        record_id = data.get("id", data.get("_id"))
        reason = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}"
            for err in exc.errors()
        )
        raise MalformedRecord(str(record_id) if record_id is not None else None, reason) from exc


def record_to_document(record: Union[ExpenseRecord, SettlementRecord]) -> dict:
    """Fields to persist for a new record; the store assigns the id."""
    return record.model_dump(exclude={"id"})


class ExpenseCreate(BaseModel):
    """Expense creation schema. The payer is the caller."""
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    participants: List[UserId] = Field(..., min_length=1)
    group_id: Optional[str] = None


class SettlementCreate(BaseModel):
    """Record a payment from the caller to creditor_id."""
    creditor_id: UserId
    amount_cents: int
    group_id: Optional[str] = None


class SettleUpRequest(BaseModel):
    """Settle everything the caller owes creditor_id in a scope."""
    creditor_id: UserId
    group_id: Optional[str] = None


class RecordCreatedResponse(BaseModel):
    id: str
