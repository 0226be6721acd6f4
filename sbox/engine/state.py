"""
Engine-owned state: the processed registry and the current view.

Both are mutated only by the engine controller and the components it owns;
the concurrency guard is the only synchronization they need.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from sbox.classification.categories import Category
from sbox.classification.models import ClassificationSource


class ViewMode(str, Enum):
    LIST = "list"
    DETAIL = "detail"
    COMPOSE = "compose"
    SEARCH = "search"


class ViewState(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: ViewMode = ViewMode.LIST
    since: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ProcessedRecord(BaseModel):
    """What the engine decided for one identity since the last invalidation."""

    model_config = ConfigDict(frozen=True)

    identity: str
    annotated: bool
    category: Category | None = None
    source: ClassificationSource | None = None


class ProcessedRegistry:
    """Identity -> ProcessedRecord. An identity is present iff classification was attempted."""

    def __init__(self) -> None:
        self._records: dict[str, ProcessedRecord] = {}

    def get(self, identity: str) -> ProcessedRecord | None:
        return self._records.get(identity)

    def set(self, record: ProcessedRecord) -> None:
        self._records[record.identity] = record

    def forget(self, identity: str) -> bool:
        return self._records.pop(identity, None) is not None

    def clear(self) -> int:
        count = len(self._records)
        self._records.clear()
        return count

    def annotated_identities(self) -> set[str]:
        return {identity for identity, record in self._records.items() if record.annotated}

    def __contains__(self, identity: object) -> bool:
        return identity in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ProcessedRecord]:
        return iter(list(self._records.values()))


class PassGuard:
    """The single boolean that keeps processing passes and repairs from overlapping."""

    def __init__(self) -> None:
        self.busy = False

    def acquire(self) -> bool:
        if self.busy:
            return False
        self.busy = True
        return True

    def release(self) -> None:
        self.busy = False
