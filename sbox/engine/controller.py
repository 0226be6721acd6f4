"""
Engine Controller - lifecycle, the pass guard, and the wiring between components.

State machine: idle -> processing -> idle. A single boolean guard keeps passes
(and reconciliation repairs) from overlapping; a trigger that arrives while a
pass runs is dropped and the next debounced trigger catches up.

Lifecycle:
    start(): wait for the surface and the classifier (both bounded), subscribe the
             watcher, start view polling and reconciliation, run one pass
    stop():  cancel every subscription, timer and task, strip labels and markers,
             clear the registry. Work still in flight sees the bumped epoch at its
             next resumption and returns without touching anything.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import partial

from sbox.classification.categories import Category
from sbox.classification.gateway import ClassificationGateway
from sbox.classification.interfaces import Classifier
from sbox.config import (
    CLASSIFIER_READY_POLL,
    CLASSIFIER_STARTUP_POLL,
    CLASSIFIER_STARTUP_WAIT,
    CLASSIFIER_TIMEOUT,
    DEBOUNCE_DEFAULT,
    DEBOUNCE_LIST_REAPPEAR,
    IDENTITY_HASH_SCHEME,
    INVALIDATION_SETTLE,
    NAVIGATION_SETTLE,
    PROCESSED_MARKER,
    RECLASSIFY_FALLBACK,
    RECONCILE_INTERVAL,
    SURFACE_READY_POLL,
    SURFACE_READY_TIMEOUT,
    TRANSITION_SETTLE,
    VIEW_POLL_INTERVAL,
)
from sbox.engine.annotator import CATEGORY_ATTRIBUTE, Annotator
from sbox.engine.errors import ContextLostError, EngineStateError
from sbox.engine.extractor import FieldExtractor
from sbox.engine.identity import IdentityResolver
from sbox.engine.processor import ContextCheck, ItemProcessor, Outcome, enumerate_items
from sbox.engine.reconciler import Reconciler
from sbox.engine.state import PassGuard, ProcessedRecord, ProcessedRegistry
from sbox.engine.view import ViewDetector, ViewTransition
from sbox.engine.watcher import ChangeWatcher
from sbox.gmail.selectors import GMAIL_PROFILE
from sbox.infrastructure.settings import EngineSettings, SettingsProvider
from sbox.observability.logging import get_logger
from sbox.observability.sinks import CounterTelemetrySink, TelemetrySink
from sbox.observability.structured import EventType, StructuredLogger, get_structured_logger
from sbox.observability.telemetry import counter, time_block
from sbox.surface.base import Node, RenderSurface
from sbox.surface.profile import SurfaceProfile

logger = get_logger(__name__)


@dataclass(frozen=True)
class EngineTimings:
    """Every delay the engine uses, in seconds. Tests inject short ones."""

    debounce_list: float = DEBOUNCE_LIST_REAPPEAR
    debounce_default: float = DEBOUNCE_DEFAULT
    view_poll: float = VIEW_POLL_INTERVAL
    navigation_settle: float = NAVIGATION_SETTLE
    invalidation_settle: float = INVALIDATION_SETTLE
    transition_settle: float = TRANSITION_SETTLE
    reconcile_interval: float = RECONCILE_INTERVAL
    classifier_timeout: float = CLASSIFIER_TIMEOUT
    classifier_startup_wait: float = CLASSIFIER_STARTUP_WAIT
    classifier_ready_poll: float = CLASSIFIER_READY_POLL
    classifier_startup_poll: float = CLASSIFIER_STARTUP_POLL
    surface_ready_timeout: float = SURFACE_READY_TIMEOUT
    surface_ready_poll: float = SURFACE_READY_POLL


@dataclass
class PassStats:
    reason: str
    visited: int = 0
    annotated: int = 0
    below_threshold: int = 0
    marked: int = 0
    skipped: int = 0
    errors: int = 0
    enabled: bool = True
    identities: list[str] = field(default_factory=list)


class EngineController:
    def __init__(
        self,
        surface: RenderSurface,
        classifier: Classifier,
        settings_provider: SettingsProvider,
        telemetry: TelemetrySink | None = None,
        profile: SurfaceProfile = GMAIL_PROFILE,
        timings: EngineTimings | None = None,
        identity_scheme: str = IDENTITY_HASH_SCHEME,
        reclassify_fallback: bool = RECLASSIFY_FALLBACK,
        structured: StructuredLogger | None = None,
    ) -> None:
        self.surface = surface
        self.settings_provider = settings_provider
        self.profile = profile
        self.timings = timings or EngineTimings()
        self.reclassify_fallback = reclassify_fallback
        self.structured = structured or get_structured_logger()

        self.registry = ProcessedRegistry()
        self.guard = PassGuard()
        self.resolver = IdentityResolver(profile, scheme=identity_scheme)
        self.extractor = FieldExtractor(profile)
        self.gateway = ClassificationGateway(
            classifier,
            timeout=self.timings.classifier_timeout,
            ready_poll=self.timings.classifier_ready_poll,
            structured=self.structured,
        )
        self.annotator = Annotator(surface, profile, self.gateway, structured=self.structured)
        self.processor = ItemProcessor(
            self.extractor,
            self.gateway,
            self.annotator,
            self.registry,
            telemetry or CounterTelemetrySink(),
            structured=self.structured,
        )
        self.view = ViewDetector(
            surface,
            profile,
            poll_interval=self.timings.view_poll,
            navigation_settle=self.timings.navigation_settle,
        )
        self.watcher = ChangeWatcher(
            surface,
            profile,
            self.resolver,
            self.registry,
            on_trigger=self.request_pass,
            debounce_list=self.timings.debounce_list,
            debounce_default=self.timings.debounce_default,
        )
        self.reconciler = Reconciler(
            surface,
            profile,
            self.resolver,
            self.annotator,
            self.processor,
            self.registry,
            self.view,
            self.guard,
            settings_provider,
            context_check=self._context_check,
            interval=self.timings.reconcile_interval,
            structured=self.structured,
        )

        self._running = False
        self._epoch = 0
        self._pass_tasks: set[asyncio.Task[PassStats | None]] = set()
        self._timers: set[asyncio.TimerHandle] = set()

    # -- lifecycle -------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def epoch(self) -> int:
        return self._epoch

    async def start(self) -> None:
        """
        Bring the engine up and run the first pass.

        Raises:
            EngineStateError: if the engine is already running

        Side Effects:
            - Subscribes to surface mutations and navigation events
            - Starts the view poll and reconciliation tasks
            - Annotates visible rows
        """
        if self._running:
            raise EngineStateError("engine already running")
        self._running = True
        epoch = self._epoch

        await self._wait_for_surface()
        await self.gateway.wait_until_settled(
            self.timings.classifier_startup_wait, poll=self.timings.classifier_startup_poll
        )
        if epoch != self._epoch or not self._running:
            logger.info("Engine stopped during startup")
            return
        if not self.surface.is_alive:
            logger.warning("Surface went away during startup")
            self._running = False
            return

        if self.gateway.model_ready:
            logger.info("Classifier ready")
        else:
            logger.warning("Classifier not available, using keyword fallback")

        self.watcher.start()
        self.view.start(self._on_transition)
        self.reconciler.start()

        counter("engine.started")
        self.structured.log_event(
            EventType.ENGINE_STARTED,
            profile=self.profile.name,
            model_ready=self.gateway.model_ready,
        )
        logger.info("SBOX engine started on %s", self.profile.name)

        await self.run_pass("startup")

    async def stop(self) -> None:
        """
        Tear everything down and leave no trace on the surface.

        Side Effects:
            - Cancels subscriptions, timers and tasks
            - Removes every label and processed marker
            - Clears the processed registry
        """
        if not self._running:
            return
        self._running = False
        self._epoch += 1

        self.watcher.stop()
        self.view.stop()
        self.reconciler.stop()
        self._cancel_timers()

        if self.surface.is_alive:
            removed = self.annotator.strip_all()
            self._strip_markers()
        else:
            removed = 0
        self.registry.clear()

        counter("engine.stopped")
        self.structured.log_event(EventType.ENGINE_STOPPED, labels_removed=removed)
        logger.info("SBOX engine stopped (%d labels removed)", removed)

    def refresh(self) -> None:
        """
        Forget everything and re-annotate from scratch shortly after.

        Side Effects:
            - Clears the registry, strips labels and markers
            - Schedules a pass after the invalidation settle delay
        """
        logger.info("Refreshing labels")
        self.registry.clear()
        self._strip_markers()
        self.annotator.strip_all()
        self._schedule_pass(self.timings.invalidation_settle, "refresh")

    async def _wait_for_surface(self) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timings.surface_ready_timeout
        while not self._surface_ready():
            if loop.time() >= deadline:
                logger.warning(
                    "Surface not ready after %.1fs, starting anyway",
                    self.timings.surface_ready_timeout,
                )
                return False
            await asyncio.sleep(self.timings.surface_ready_poll)
        return True

    def _surface_ready(self) -> bool:
        return self.surface.is_alive and any(
            self.surface.exists(selector) for selector in self.profile.ready_selectors
        )

    # -- triggers ----------------------------------------------------------------

    def request_pass(self, reason: str) -> None:
        """Start a pass in the background; dropped if one is already running."""
        if not self._running:
            return
        if self.guard.busy:
            counter("pass.skipped_busy")
            self.structured.log_event(EventType.PASS_SKIPPED_BUSY, reason=reason)
            logger.debug("Pass already in progress, dropping %s trigger", reason)
            return
        task = asyncio.create_task(self.run_pass(reason), name=f"sbox-pass-{reason}")
        self._pass_tasks.add(task)
        task.add_done_callback(self._pass_done)

    def _pass_done(self, task: asyncio.Task[PassStats | None]) -> None:
        self._pass_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Processing pass failed: %s", error, exc_info=error)

    def _schedule_pass(self, delay: float, reason: str) -> None:
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            if handle is not None:
                self._timers.discard(handle)
            self.request_pass(reason)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def _cancel_timers(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()

    def _on_transition(self, transition: ViewTransition) -> None:
        self.structured.view_transition(
            transition.previous.value, transition.current.value, transition.invalidates
        )
        if transition.invalidates:
            self.invalidate()
            self._schedule_pass(self.timings.invalidation_settle, "list_reentry")
        else:
            self._schedule_pass(self.timings.transition_settle, "view_change")

    def invalidate(self) -> int:
        """
        Forced invalidation: distrust every per-node marker and all processed state.

        Side Effects:
            - Clears the registry and strips every processed marker
        """
        cleared = self.registry.clear()
        stripped = self._strip_markers()
        counter("engine.invalidations")
        self.structured.log_event(
            EventType.FORCED_INVALIDATION, cleared=cleared, markers_stripped=stripped
        )
        logger.info("Invalidated %d processed rows (%d markers stripped)", cleared, stripped)
        return cleared

    def _strip_markers(self) -> int:
        marked = self.surface.select(f".{PROCESSED_MARKER}")
        for node in marked:
            node.remove_class(PROCESSED_MARKER)
        return len(marked)

    # -- processing ----------------------------------------------------------------

    def _ensure_context(self, epoch: int) -> None:
        if epoch != self._epoch:
            raise ContextLostError("engine stopped")
        if not self.surface.is_alive:
            raise ContextLostError("surface is gone")

    def _context_check(self) -> ContextCheck:
        return partial(self._ensure_context, self._epoch)

    async def run_pass(self, reason: str = "manual") -> PassStats | None:
        """
        Visit every row in document order and apply the decision table.

        Returns:
            Pass statistics, or None when the pass was skipped or abandoned

        Side Effects:
            - Holds the pass guard for the duration
            - Annotates rows, updates the registry and processed markers
        """
        if not self.guard.acquire():
            counter("pass.skipped_busy")
            self.structured.log_event(EventType.PASS_SKIPPED_BUSY, reason=reason)
            return None

        ensure_context = self._context_check()
        stats = PassStats(reason=reason)
        try:
            ensure_context()
            self.structured.log_event(EventType.PASS_START, reason=reason)
            settings = await self.settings_provider.load()
            ensure_context()
            if not settings.enabled:
                logger.debug("Annotation disabled, skipping %s pass", reason)
                stats.enabled = False
                return stats

            with time_block("engine.pass"):
                for item in enumerate_items(self.surface, self.profile):
                    stats.visited += 1
                    await self._visit(item, settings, ensure_context, stats)
            self.annotator.prune()
        except ContextLostError as e:
            counter("engine.context_lost")
            self.structured.log_event(EventType.CONTEXT_LOST, reason=reason, detail=str(e))
            logger.debug("Abandoning %s pass: %s", reason, e)
            return None
        finally:
            self.guard.release()

        counter("engine.passes")
        self.structured.pass_done(reason, stats.visited, stats.annotated, stats.skipped)
        logger.debug(
            "Pass %s: visited=%d annotated=%d marked=%d skipped=%d",
            reason,
            stats.visited,
            stats.annotated,
            stats.marked,
            stats.skipped,
        )
        return stats

    async def _visit(
        self, item: Node, settings: EngineSettings, ensure_context: ContextCheck, stats: PassStats
    ) -> None:
        try:
            identity = self.resolver.resolve(item)
            labelled = self.annotator.has_annotation(item)
            marked = item.has_class(PROCESSED_MARKER)
            record = self.registry.get(identity)

            if not labelled and not marked:
                process = True
            elif labelled and not marked:
                if record is None:
                    self._adopt(item, identity)
                item.add_class(PROCESSED_MARKER)
                stats.marked += 1
                return
            elif marked and not labelled and record is not None and record.annotated:
                logger.debug("Re-labeling %s, its label was removed", identity)
                item.remove_class(PROCESSED_MARKER)
                process = True
            elif self._should_reclassify(record):
                logger.debug("Reclassifying %s now that the model is loaded", identity)
                self.annotator.remove(item)
                process = True
            else:
                process = False

            if not process:
                stats.skipped += 1
                return

            result = await self.processor.process(item, identity, settings, ensure_context)
        except ContextLostError:
            raise
        except Exception as e:
            stats.errors += 1
            counter("engine.item_error")
            logger.warning("Error processing row: %s", e)
            return

        stats.identities.append(identity)
        if result.outcome is Outcome.ANNOTATED:
            stats.annotated += 1
        elif result.outcome is Outcome.BELOW_THRESHOLD:
            stats.below_threshold += 1
        else:
            stats.skipped += 1

    def _should_reclassify(self, record: ProcessedRecord | None) -> bool:
        return (
            self.reclassify_fallback
            and record is not None
            and record.source == "fallback"
            and self.gateway.model_ready
        )

    def _adopt(self, item: Node, identity: str) -> None:
        """Register a label that outlived an invalidation so repairs still cover it."""
        binding = self.annotator.binding_for(item)
        if binding is not None:
            category = binding.classification.category
            source = binding.classification.source
        else:
            label = self.annotator.label_for(item)
            category = Category.parse(label.get_attribute(CATEGORY_ATTRIBUTE)) if label else None
            source = None
        self.registry.set(
            ProcessedRecord(identity=identity, annotated=True, category=category, source=source)
        )
        logger.debug("Adopted surviving label on %s", identity)

    # -- corrections ---------------------------------------------------------------

    async def correct(self, item: Node, category: Category) -> bool:
        """
        Apply a user's category choice to a labelled row and keep it across repairs.

        Returns:
            True when the classifier accepted the training example

        Side Effects:
            - Rewrites the row's label (via Annotator.relabel)
            - Registers the row with ``source="user"`` so a restored label keeps the choice
        """
        if not self.annotator.has_annotation(item):
            logger.warning("Correction requested for a row without a label")
            return False
        identity = self.resolver.resolve(item)
        self.registry.set(
            ProcessedRecord(identity=identity, annotated=True, category=category, source="user")
        )
        return await self.annotator.relabel(item, category)
