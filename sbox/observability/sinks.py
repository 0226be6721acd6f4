"""
Telemetry sinks for annotation events.

The engine fires ``record_category`` after every successful annotation and never
waits on the result; a sink that fails only costs a log line.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sbox.classification.categories import Category
from sbox.observability.telemetry import counter


class TelemetrySink(ABC):
    @abstractmethod
    async def record_category(self, category: Category) -> None:
        """Count one annotation for ``category``."""


class CounterTelemetrySink(TelemetrySink):
    """Category breakdown kept in the in-memory telemetry counters."""

    async def record_category(self, category: Category) -> None:
        counter("annotation.total")
        counter(f"annotation.category.{category.value}")


class NullTelemetrySink(TelemetrySink):
    async def record_category(self, category: Category) -> None:
        return None
