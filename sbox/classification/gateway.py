"""
Classification gateway: the only path from the engine to the external classifier.

Flow per request:
    wait (bounded) while the classifier initializes → model call (bounded)
    → validate → fallback rule table on any failure

Unavailability is never surfaced as an error; the caller always receives a
Classification. Gating against per-category thresholds is the caller's job
(see EngineSettings.meets_threshold).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pydantic import ValidationError

from sbox.classification.categories import Category
from sbox.classification.fallback import fallback_classify
from sbox.classification.interfaces import Classifier
from sbox.classification.models import Classification, ContentRecord
from sbox.config import CLASSIFIER_READY_POLL, CLASSIFIER_TIMEOUT
from sbox.engine.errors import ContextLostError
from sbox.observability.logging import get_logger
from sbox.observability.structured import EventType, StructuredLogger, get_structured_logger
from sbox.observability.telemetry import counter, time_block

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModelOutcome:
    """Result of one model attempt: a classification or the reason there is none."""

    classification: Classification | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.classification is not None


class ClassificationGateway:
    def __init__(
        self,
        classifier: Classifier,
        timeout: float = CLASSIFIER_TIMEOUT,
        ready_poll: float = CLASSIFIER_READY_POLL,
        structured: StructuredLogger | None = None,
    ) -> None:
        self.classifier = classifier
        self.timeout = timeout
        self.ready_poll = ready_poll
        self.structured = structured or get_structured_logger()

    @property
    def model_ready(self) -> bool:
        return self.classifier.is_model_loaded and not self.classifier.is_initializing

    async def wait_until_settled(
        self, timeout: float | None = None, poll: float | None = None
    ) -> bool:
        """
        Poll while the classifier reports it is initializing.

        Returns:
            True if the model is loaded once initialization ends or the wait expires
        """
        budget = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget
        while self.classifier.is_initializing:
            if loop.time() >= deadline:
                logger.warning("Classifier still initializing after %.1fs, using fallback", budget)
                break
            await asyncio.sleep(self.ready_poll if poll is None else poll)
        return self.classifier.is_model_loaded

    async def classify(self, record: ContentRecord, item_id: str | None = None) -> Classification:
        """
        Classify a record through the model, falling back to the rule table.

        Side Effects:
            - Increments classification.* telemetry counters
            - Emits a structured fallback event when the model did not answer

        Raises:
            ContextLostError: propagated so the engine can abandon the pass quietly
        """
        with time_block("classification.latency"):
            outcome = await self._ask_model(record)

        if outcome.classification is not None:
            counter("classification.model")
            self.structured.log_event(
                EventType.CLASSIFY_MODEL_OK,
                item_id=item_id,
                category=outcome.classification.category,
                confidence=round(outcome.classification.confidence, 3),
            )
            return outcome.classification

        counter("classification.fallback")
        self.structured.fallback_invoked(item_id, outcome.error or "unknown")
        result = fallback_classify(record)
        logger.debug(
            "Fallback classification %s (%.0f%%) reason=%s",
            result.category.value,
            result.confidence * 100,
            outcome.error,
        )
        return result

    async def _ask_model(self, record: ContentRecord) -> ModelOutcome:
        loop = asyncio.get_running_loop()
        started = loop.time()

        if self.classifier.is_initializing:
            await self.wait_until_settled(self.timeout)
        if not self.classifier.is_model_loaded:
            return ModelOutcome(error="model_not_loaded")

        remaining = self.timeout - (loop.time() - started)
        if remaining <= 0:
            return ModelOutcome(error="timeout")

        try:
            raw = await asyncio.wait_for(self.classifier.classify(record), timeout=remaining)
        except TimeoutError:
            logger.warning("Classifier timed out after %.1fs", self.timeout)
            return ModelOutcome(error="timeout")
        except ContextLostError:
            raise
        except Exception as e:
            logger.warning("Classifier raised %s: %s", type(e).__name__, e)
            counter("classification.model_error")
            self.structured.log_event(EventType.CLASSIFY_MODEL_ERROR, error=type(e).__name__)
            return ModelOutcome(error=f"classifier_error:{type(e).__name__}")

        if raw is None:
            return ModelOutcome(error="no_result")

        try:
            classification = (
                raw if isinstance(raw, Classification) else Classification.model_validate(raw)
            )
        except ValidationError:
            logger.warning("Classifier returned an unusable result: %r", raw)
            return ModelOutcome(error="invalid_result")

        if classification.source != "model":
            classification = classification.model_copy(update={"source": "model"})
        return ModelOutcome(classification=classification)

    async def submit_correction(self, record: ContentRecord, category: Category) -> bool:
        """
        Forward a user correction as a training example.

        Returns:
            True when the classifier accepted the example

        Side Effects:
            - Calls the external classifier's add_training_example
            - Increments correction telemetry counters
        """
        try:
            await asyncio.wait_for(
                self.classifier.add_training_example(record, category), timeout=self.timeout
            )
        except TimeoutError:
            logger.warning("Training example for %s timed out", category.value)
            counter("classification.correction_error")
            return False
        except ContextLostError:
            logger.info("Context lost while submitting correction, dropping it")
            return False
        except Exception as e:
            logger.warning("Failed to submit training example: %s", e)
            counter("classification.correction_error")
            return False

        counter("classification.correction_submitted")
        return True
