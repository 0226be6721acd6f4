"""
Value models (Pydantic v2) passed between extraction, classification and annotation.

Both models are frozen: a later classification supersedes an earlier one, it
never mutates it. Content fields are redacted in repr so records can be logged.
"""

from __future__ import annotations

from hashlib import sha256
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from sbox.classification.categories import Category

ClassificationSource = Literal["model", "fallback", "user"]

_REDACT_FIELDS = ("subject", "excerpt", "originator")


def _hash_value(value: str) -> str:
    digest = sha256(value.encode("utf-8")).hexdigest()
    return f"hash:{digest[:12]}"


class ContentRecord(BaseModel):
    """Minimal structured snapshot of one rendered item."""

    model_config = ConfigDict(frozen=True)

    subject: str = ""
    excerpt: str = ""
    originator: str = ""

    @property
    def is_empty(self) -> bool:
        """True when there is nothing worth classifying."""
        return not self.subject and not self.excerpt

    @property
    def text(self) -> str:
        return f"{self.subject} {self.excerpt}"

    def redacted(self) -> dict[str, Any]:
        data = self.model_dump()
        for field in _REDACT_FIELDS:
            if data.get(field):
                data[field] = _hash_value(data[field])
        return data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.redacted()})"


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Category
    confidence: float = Field(ge=0.0, le=1.0)
    source: ClassificationSource = "model"

    @property
    def percent(self) -> int:
        return round(self.confidence * 100)
