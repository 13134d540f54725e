"""In-memory representation of one synced row."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from .schema import Destination


class RecordState(Enum):
    """Lifecycle stage of a record."""

    DRAFT = "draft"  # every destination dirty
    PARTIALLY_SYNCED = "partially_synced"
    SYNCED = "synced"
    PENDING_DELETE = "pending_delete"


@dataclass
class Record:
    """A row plus its bookkeeping attributes."""

    table: str
    local_id: int
    sync_id: str | None
    created: datetime
    updated: datetime
    synced: datetime | None = None
    dirty: dict[Destination, bool] = field(default_factory=dict)
    deletable: bool = False
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def state(self) -> RecordState:
        if self.deletable:
            return RecordState.PENDING_DELETE
        if self.dirty and not any(self.dirty.values()):
            return RecordState.SYNCED
        if all(self.dirty.values()):
            return RecordState.DRAFT
        return RecordState.PARTIALLY_SYNCED

    def is_dirty(self, destination: Destination) -> bool:
        return self.dirty.get(destination, False)

    @property
    def fully_synced(self) -> bool:
        return not any(self.dirty.values())

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    def to_payload(self) -> dict[str, Any]:
        """Serialize for a remote push: entity fields plus sync identity."""
        return {
            "table": self.table,
            "sync_id": self.sync_id,
            "created": self.created.isoformat(),
            "updated": self.updated.isoformat(),
            "deleted": self.deletable,
            "fields": {name: _json_value(value) for name, value in self.fields.items()},
        }


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value
