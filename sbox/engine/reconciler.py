"""
Reconciliation Loop - periodic repair of labels Gmail dropped during its own re-renders.

Every tick (list view only, never while a pass holds the guard): a row whose
identity is registered as annotated but which shows no label gets that single
row re-extracted, re-classified and re-annotated. Nothing else is touched.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from sbox.config import PROCESSED_MARKER, RECONCILE_INTERVAL
from sbox.engine.annotator import Annotator
from sbox.engine.errors import ContextLostError
from sbox.engine.identity import IdentityResolver
from sbox.engine.processor import ContextCheck, ItemProcessor, enumerate_items
from sbox.engine.state import PassGuard, ProcessedRegistry, ViewMode
from sbox.engine.view import ViewDetector
from sbox.infrastructure.settings import SettingsProvider
from sbox.observability.logging import get_logger
from sbox.observability.structured import StructuredLogger, get_structured_logger
from sbox.observability.telemetry import counter
from sbox.surface.base import RenderSurface
from sbox.surface.profile import SurfaceProfile

logger = get_logger(__name__)


class Reconciler:
    def __init__(
        self,
        surface: RenderSurface,
        profile: SurfaceProfile,
        resolver: IdentityResolver,
        annotator: Annotator,
        processor: ItemProcessor,
        registry: ProcessedRegistry,
        view: ViewDetector,
        guard: PassGuard,
        settings_provider: SettingsProvider,
        context_check: Callable[[], ContextCheck],
        interval: float = RECONCILE_INTERVAL,
        structured: StructuredLogger | None = None,
    ) -> None:
        self.surface = surface
        self.profile = profile
        self.resolver = resolver
        self.annotator = annotator
        self.processor = processor
        self.registry = registry
        self.view = view
        self.guard = guard
        self.settings_provider = settings_provider
        self.context_check = context_check
        self.interval = interval
        self.structured = structured or get_structured_logger()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="sbox-reconcile")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except ContextLostError:
                logger.debug("Context lost during reconciliation tick")
            except Exception:
                logger.exception("Reconciliation tick failed")

    async def tick(self) -> int:
        """
        Run one repair sweep.

        Returns:
            Number of labels restored

        Side Effects:
            - Holds the pass guard while sweeping
            - Re-annotates rows that lost their label
        """
        if self.guard.busy:
            counter("reconcile.skipped_busy")
            return 0
        if self.view.current_view() is not ViewMode.LIST:
            counter("reconcile.skipped_view")
            return 0

        ensure_context = self.context_check()
        ensure_context()
        if not self.guard.acquire():
            return 0

        restored = 0
        try:
            settings = await self.settings_provider.load()
            ensure_context()
            if not settings.enabled:
                return 0

            annotated = self.registry.annotated_identities()
            if not annotated:
                return 0

            for item in enumerate_items(self.surface, self.profile):
                identity = self.resolver.resolve(item)
                if identity not in annotated or self.annotator.has_annotation(item):
                    continue
                logger.debug("Restoring missing label for %s", identity)
                item.remove_class(PROCESSED_MARKER)
                result = await self.processor.process(item, identity, settings, ensure_context)
                if result.annotated:
                    restored += 1
        finally:
            self.guard.release()

        if restored:
            counter("reconcile.restored", restored)
            logger.info("Restored %d missing labels", restored)
            self.structured.reconcile_restored(restored)
        return restored
