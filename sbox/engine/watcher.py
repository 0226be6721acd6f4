"""
Change Watcher - turns noisy mutation batches into debounced processing triggers.

A batch is relevant when it adds or removes item-shaped nodes, or changes the
class of a Gmail container node (nH / aDP / zA). When an added node carries
the rows themselves (or is the list container) the list has just come back and
the shorter debounce applies. Each relevant batch restarts the timer; the
trigger fires once the burst has been quiet for the interval.

Rows removed while carrying the processed marker are forgotten in the registry
so they are treated as new when Gmail renders them again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from sbox.config import DEBOUNCE_DEFAULT, DEBOUNCE_LIST_REAPPEAR, PROCESSED_MARKER
from sbox.engine.identity import IdentityResolver
from sbox.engine.state import ProcessedRegistry
from sbox.observability.logging import get_logger
from sbox.observability.telemetry import counter
from sbox.surface.base import AttributeChange, MutationBatch, Node, RenderSurface, Subscription
from sbox.surface.profile import SurfaceProfile

logger = get_logger(__name__)

TriggerHandler = Callable[[str], None]


class ChangeWatcher:
    def __init__(
        self,
        surface: RenderSurface,
        profile: SurfaceProfile,
        resolver: IdentityResolver,
        registry: ProcessedRegistry,
        on_trigger: TriggerHandler,
        debounce_list: float = DEBOUNCE_LIST_REAPPEAR,
        debounce_default: float = DEBOUNCE_DEFAULT,
    ) -> None:
        self.surface = surface
        self.profile = profile
        self.resolver = resolver
        self.registry = registry
        self.on_trigger = on_trigger
        self.debounce_list = debounce_list
        self.debounce_default = debounce_default
        self._subscription: Subscription | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self.surface.subscribe(self.handle_batch)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self.cancel_pending()

    def cancel_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def handle_batch(self, batch: MutationBatch) -> None:
        """
        Inspect one mutation batch.

        Side Effects:
            - Forgets identities of removed rows that carried the processed marker
            - (Re)starts the debounce timer when the batch is relevant
        """
        self._forget_removed(batch.removed)

        relevant = False
        list_reappeared = False

        for node in batch.added:
            if self._is_item_shaped(node):
                relevant = True
            if self._signals_list(node):
                relevant = True
                list_reappeared = True

        if not relevant and any(self._is_item_shaped(node) for node in batch.removed):
            relevant = True

        if not relevant:
            relevant = any(self._container_class_changed(c) for c in batch.attribute_changes)

        if relevant:
            self._schedule(self.debounce_list if list_reappeared else self.debounce_default)

    def _is_item_shaped(self, node: Node) -> bool:
        selector = self.profile.item_shape_selector
        return node.matches(selector) or node.select_one(selector) is not None

    def _signals_list(self, node: Node) -> bool:
        if node.has_class(self.profile.list_container_class):
            return True
        return node.select_one(self.profile.list_signal_selector) is not None

    def _container_class_changed(self, change: AttributeChange) -> bool:
        if change.name != "class":
            return False
        target = change.target
        if not any(target.has_class(c) for c in self.profile.container_classes):
            return False
        if change.old_value is None:
            return True
        # Our own marker toggles are not a re-render
        changed = set(change.old_value.split()) ^ set(target.classes())
        return not changed <= {PROCESSED_MARKER}

    def _forget_removed(self, removed: tuple[Node, ...]) -> None:
        for node in removed:
            marked = [node] if node.has_class(PROCESSED_MARKER) else []
            marked.extend(node.select(f".{PROCESSED_MARKER}"))
            for row in marked:
                identity = self.resolver.resolve(row)
                if self.registry.forget(identity):
                    counter("watcher.forgotten")
                    logger.debug("Forgot %s after its row was removed", identity)

    def _schedule(self, delay: float) -> None:
        self.cancel_pending()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        self.on_trigger("mutation")
