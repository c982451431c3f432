from datetime import datetime, timezone
from typing import Annotated, Any, Optional

from bson import ObjectId
from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_id_str(value: Any) -> str:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, str) and value:
        return value
    raise ValueError("Invalid id")


# Store-assigned ObjectIds and provider-issued identity strings are both kept as str
IdStr = Annotated[str, BeforeValidator(_to_id_str)]


class StoredModel(BaseModel):
    """Read-only copy of a document held by the store."""
    id: Optional[IdStr] = Field(default=None, validation_alias=AliasChoices("id", "_id"))  # None until stored
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True
    )
