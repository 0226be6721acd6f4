"""
Per-item pipeline shared by processing passes and reconciliation repairs.

    identity -> extract -> classify (model or fallback) -> gate -> annotate -> register -> mark

Context is checked before every external call and again after every await;
a lost context surfaces as ContextLostError for the caller to swallow.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from sbox.classification.categories import Category
from sbox.classification.gateway import ClassificationGateway
from sbox.classification.models import Classification
from sbox.config import PROCESSED_MARKER
from sbox.engine.annotator import Annotator
from sbox.engine.extractor import FieldExtractor
from sbox.engine.state import ProcessedRecord, ProcessedRegistry
from sbox.infrastructure.settings import EngineSettings
from sbox.observability.logging import get_logger
from sbox.observability.sinks import TelemetrySink
from sbox.observability.structured import EventType, StructuredLogger, get_structured_logger
from sbox.observability.telemetry import counter
from sbox.surface.base import Node, RenderSurface
from sbox.surface.profile import SurfaceProfile

logger = get_logger(__name__)

ContextCheck = Callable[[], None]


class Outcome(str, Enum):
    ANNOTATED = "annotated"
    BELOW_THRESHOLD = "below_threshold"
    EMPTY = "empty"
    EXTRACT_ERROR = "extract_error"


@dataclass(frozen=True)
class ItemResult:
    outcome: Outcome
    classification: Classification | None = None

    @property
    def annotated(self) -> bool:
        return self.outcome is Outcome.ANNOTATED


def enumerate_items(surface: RenderSurface, profile: SurfaceProfile) -> list[Node]:
    """
    Rows to visit, in document order.

    The item selectors overlap: a ``tr.zA`` row holds a ``[data-legacy-thread-id]``
    span and sits inside the ``div.aDP`` list container. Selectors are taken in
    priority order and a match that contains, or is contained by, an already
    accepted item is dropped, so every row is one item.
    """
    candidates = surface.select(profile.item_selector)
    accepted: list[Node] = []
    for selector in profile.item_selectors:
        for node in candidates:
            if node in accepted or not node.matches(selector):
                continue
            if any(kept.contains(node) or node.contains(kept) for kept in accepted):
                continue
            accepted.append(node)
    return [node for node in candidates if node in accepted]


class ItemProcessor:
    def __init__(
        self,
        extractor: FieldExtractor,
        gateway: ClassificationGateway,
        annotator: Annotator,
        registry: ProcessedRegistry,
        telemetry: TelemetrySink,
        structured: StructuredLogger | None = None,
    ) -> None:
        self.extractor = extractor
        self.gateway = gateway
        self.annotator = annotator
        self.registry = registry
        self.telemetry = telemetry
        self.structured = structured or get_structured_logger()
        self._telemetry_tasks: set[asyncio.Task[None]] = set()

    async def process(
        self,
        item: Node,
        identity: str,
        settings: EngineSettings,
        ensure_context: ContextCheck,
    ) -> ItemResult:
        """
        Classify one row and annotate it when the classification clears its threshold.

        Side Effects:
            - May insert a label into the row (via Annotator)
            - Registers the identity and adds the processed marker to the row
            - Fires a telemetry task after a successful annotation

        Raises:
            ContextLostError: the host went away or the engine was stopped mid-call
        """
        try:
            record = self.extractor.extract(item)
        except Exception as e:
            logger.warning("Extraction failed for %s: %s", identity, e)
            counter("extract.error")
            self.structured.log_event(EventType.EXTRACT_ERROR, item_id=identity, error=str(e))
            return ItemResult(Outcome.EXTRACT_ERROR)

        if record.is_empty:
            counter("extract.empty")
            logger.debug("Nothing to classify for %s", identity)
            return ItemResult(Outcome.EMPTY)

        previous = self.registry.get(identity)
        if previous is not None and previous.source == "user" and previous.category is not None:
            # A user correction outlives the label it was made on
            classification = Classification(
                category=previous.category, confidence=1.0, source="user"
            )
        else:
            ensure_context()
            classification = await self.gateway.classify(record, item_id=identity)
            ensure_context()

        if settings.meets_threshold(classification):
            self.annotator.apply(
                item,
                classification,
                record,
                identity=identity,
                show_confidence=settings.show_confidence_on_annotation,
            )
            self._emit_telemetry(classification.category)
            counter("annotation.applied")
            self.structured.log_event(
                EventType.ANNOTATION_APPLIED,
                item_id=identity,
                subject=record.subject,
                category=classification.category,
                confidence=round(classification.confidence, 3),
                source=classification.source,
            )
            outcome = Outcome.ANNOTATED
        else:
            counter("annotation.below_threshold")
            self.structured.log_event(
                EventType.CLASSIFY_BELOW_THRESHOLD,
                item_id=identity,
                category=classification.category,
                confidence=round(classification.confidence, 3),
                threshold=settings.threshold_for(classification.category),
            )
            outcome = Outcome.BELOW_THRESHOLD

        self.registry.set(
            ProcessedRecord(
                identity=identity,
                annotated=outcome is Outcome.ANNOTATED,
                category=classification.category,
                source=classification.source,
            )
        )
        item.add_class(PROCESSED_MARKER)
        return ItemResult(outcome, classification)

    def _emit_telemetry(self, category: Category) -> None:
        task = asyncio.create_task(self.telemetry.record_category(category))
        self._telemetry_tasks.add(task)
        task.add_done_callback(self._telemetry_done)

    def _telemetry_done(self, task: asyncio.Task[None]) -> None:
        self._telemetry_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Telemetry sink failed: %s", error)
            counter("telemetry.error")
