"""
Settings collaborator for the engine.

The engine awaits ``SettingsProvider.load()`` at the start of every pass and
reconciliation tick and keeps the result for that unit of work only, so a
settings change takes effect on the next tick.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sbox.classification.categories import Category
from sbox.classification.models import Classification
from sbox.observability.confidence import DEFAULT_THRESHOLD, PER_CATEGORY_THRESHOLDS
from sbox.observability.logging import get_logger

logger = get_logger(__name__)


def _default_thresholds() -> dict[Category, float]:
    thresholds: dict[Category, float] = {}
    for name, value in PER_CATEGORY_THRESHOLDS.items():
        category = Category.parse(name)
        if category is not None:
            thresholds[category] = value
    return thresholds


class EngineSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    per_category_threshold: dict[Category, float] = Field(default_factory=_default_thresholds)
    show_confidence_on_annotation: bool = False
    default_threshold: float = Field(default=DEFAULT_THRESHOLD, ge=0.0, le=1.0)

    @field_validator("per_category_threshold")
    @classmethod
    def _thresholds_in_range(cls, value: dict[Category, float]) -> dict[Category, float]:
        for category, threshold in value.items():
            if not (0.0 <= threshold <= 1.0):
                raise ValueError(f"threshold for {category.value} outside [0, 1]: {threshold}")
        return value

    def threshold_for(self, category: Category) -> float:
        return self.per_category_threshold.get(category, self.default_threshold)

    def meets_threshold(self, classification: Classification) -> bool:
        """Annotation gate: confidence must reach the category's threshold."""
        return classification.confidence >= self.threshold_for(classification.category)


class SettingsProvider(ABC):
    @abstractmethod
    async def load(self) -> EngineSettings: ...


class StaticSettingsProvider(SettingsProvider):
    """In-memory settings, replaceable at runtime (used by tests and the CLI)."""

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self._settings = settings or EngineSettings()

    async def load(self) -> EngineSettings:
        return self._settings

    def update(self, **changes: Any) -> EngineSettings:
        """
        Replace the held settings with a copy carrying ``changes``.

        Side Effects:
            - Swaps the settings returned by subsequent load() calls
        """
        self._settings = self._settings.model_copy(update=changes)
        return self._settings


class YamlSettingsProvider(SettingsProvider):
    """
    Reads settings from a YAML file on every load.

    File layout mirrors the extension's stored settings::

        enabled: true
        showConfidence: false
        categories:
          travelBookings: {confidence: 0.7}

    A missing or malformed file yields defaults (enabled) and a warning.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    async def load(self) -> EngineSettings:
        try:
            with open(self.path) as f:
                raw = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Settings file %s not found, using defaults", self.path)
            return EngineSettings()
        except yaml.YAMLError as e:
            logger.warning("Settings file %s is not valid YAML (%s), using defaults", self.path, e)
            return EngineSettings()

        try:
            return self._parse(raw)
        except (ValidationError, AttributeError, TypeError, ValueError) as e:
            logger.warning("Settings file %s rejected (%s), using defaults", self.path, e)
            return EngineSettings()

    @staticmethod
    def _parse(raw: dict[str, Any]) -> EngineSettings:
        thresholds = _default_thresholds()
        for name, entry in (raw.get("categories") or {}).items():
            category = Category.parse(name)
            if category is None:
                logger.warning("Ignoring unknown category in settings: %s", name)
                continue
            if isinstance(entry, dict) and "confidence" in entry:
                thresholds[category] = float(entry["confidence"])

        return EngineSettings(
            enabled=raw.get("enabled", True) is not False,
            per_category_threshold=thresholds,
            show_confidence_on_annotation=bool(raw.get("showConfidence", False)),
        )
