"""
Classifier contract consumed by the gateway.

The model itself (architecture, training, persistence) lives outside this
package. Implementations report readiness through ``is_model_loaded`` and
``is_initializing``; the gateway polls them before every call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sbox.classification.categories import Category
from sbox.classification.models import Classification, ContentRecord


class Classifier(ABC):
    @property
    @abstractmethod
    def is_model_loaded(self) -> bool: ...

    @property
    @abstractmethod
    def is_initializing(self) -> bool: ...

    @abstractmethod
    async def classify(self, record: ContentRecord) -> Classification | None:
        """Return a classification, or None when the model has no usable answer."""

    @abstractmethod
    async def add_training_example(self, record: ContentRecord, category: Category) -> None:
        """Feed a user correction back into the model."""


class NullClassifier(Classifier):
    """A classifier that never loads; every request goes to the fallback table."""

    @property
    def is_model_loaded(self) -> bool:
        return False

    @property
    def is_initializing(self) -> bool:
        return False

    async def classify(self, record: ContentRecord) -> Classification | None:
        return None

    async def add_training_example(self, record: ContentRecord, category: Category) -> None:
        return None
