"""
Field Extractor - minimal ContentRecord from a row's current rendering.

Each field walks the profile's strategy list and keeps the first non-empty
value. Gmail rewrites its markup often, so a failing strategy is logged at
debug level and skipped; ``extract`` itself never raises.
"""

from __future__ import annotations

from sbox.classification.models import ContentRecord
from sbox.config import ANNOTATION_CLASS
from sbox.observability.logging import get_logger
from sbox.surface.base import Node
from sbox.surface.profile import FieldStrategy, SurfaceProfile

logger = get_logger(__name__)


class FieldExtractor:
    def __init__(self, profile: SurfaceProfile) -> None:
        self.profile = profile

    def extract(self, item: Node) -> ContentRecord:
        subject = self._first_value(item, self.profile.subject_strategies, "subject")
        originator = self._first_value(item, self.profile.originator_strategies, "originator")
        excerpt = self._first_value(item, self.profile.excerpt_strategies, "excerpt")

        if not excerpt:
            excerpt = self._excerpt_from_text(item)

        return ContentRecord(subject=subject, excerpt=excerpt, originator=originator)

    def _first_value(self, item: Node, strategies: tuple[FieldStrategy, ...], field: str) -> str:
        for strategy in strategies:
            try:
                value = self._read(item, strategy)
            except Exception as e:
                logger.debug("Strategy %s for %s failed: %s", strategy.selector, field, e)
                continue
            if value:
                return value
        return ""

    @staticmethod
    def _read(item: Node, strategy: FieldStrategy) -> str:
        element = item.select_one(strategy.selector)
        if element is None:
            return ""

        text = element.text(skip=f".{ANNOTATION_CLASS}").replace("\n", " ").strip()
        attribute = ""
        if strategy.attribute:
            attribute = (element.get_attribute(strategy.attribute) or "").strip()

        if strategy.attribute_first:
            return attribute or text
        return text or attribute

    @staticmethod
    def _excerpt_from_text(item: Node) -> str:
        """Second and third non-empty lines of the row; the first is assumed to be the subject."""
        try:
            lines = [line for line in item.text(skip=f".{ANNOTATION_CLASS}").split("\n") if line.strip()]
        except Exception as e:
            logger.debug("Could not read row text for excerpt: %s", e)
            return ""
        return " ".join(lines[1:3]).strip()
