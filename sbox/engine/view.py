"""
View Detector - which Gmail screen is showing, and when it changes.

Modes:
- detail: a single opened conversation (``#inbox/<id>``, ``#all/<id>``, ``#sent/<id>``)
- compose: ``#compose`` in the location, or a compose dialog on screen
- search: ``#search/...``
- list: everything else

Re-detection runs from a background poll and from a navigation hook. A change
of mode or location is reported to the owner as a ViewTransition; leaving a
detail view for the list is flagged ``invalidates`` because Gmail is about to
rebuild the rows and any per-node state is untrustworthy.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from dataclasses import dataclass

from sbox.config import NAVIGATION_SETTLE, VIEW_POLL_INTERVAL
from sbox.engine.state import ViewMode, ViewState
from sbox.observability.logging import get_logger
from sbox.surface.base import RenderSurface, Subscription
from sbox.surface.profile import SurfaceProfile

logger = get_logger(__name__)

_DETAIL_PATTERN = re.compile(r"#[^/]+/[a-zA-Z0-9]+$")


@dataclass(frozen=True)
class ViewTransition:
    previous: ViewMode
    current: ViewMode
    location: str

    @property
    def invalidates(self) -> bool:
        return self.previous is ViewMode.DETAIL and self.current is ViewMode.LIST


TransitionHandler = Callable[[ViewTransition], None]


class ViewDetector:
    def __init__(
        self,
        surface: RenderSurface,
        profile: SurfaceProfile,
        poll_interval: float = VIEW_POLL_INTERVAL,
        navigation_settle: float = NAVIGATION_SETTLE,
    ) -> None:
        self.surface = surface
        self.profile = profile
        self.poll_interval = poll_interval
        self.navigation_settle = navigation_settle
        self.state = ViewState(mode=self.current_view())
        self._location = surface.location
        self._on_transition: TransitionHandler | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._nav_subscription: Subscription | None = None
        self._nav_handles: set[asyncio.TimerHandle] = set()

    def current_view(self) -> ViewMode:
        location = self.surface.location

        if any(prefix in location for prefix in self.profile.detail_prefixes):
            if _DETAIL_PATTERN.search(location):
                return ViewMode.DETAIL

        if self.profile.compose_fragment in location or self.surface.exists(
            self.profile.compose_dialog_selector
        ):
            return ViewMode.COMPOSE

        if self.profile.search_fragment in location:
            return ViewMode.SEARCH

        return ViewMode.LIST

    @property
    def mode(self) -> ViewMode:
        return self.state.mode

    def check(self) -> ViewTransition | None:
        """
        Re-detect the view and report a transition if mode or location changed.

        Side Effects:
            - Replaces ``state`` on a mode change and remembers the new location
            - Calls the transition handler registered by ``start``
        """
        if not self.surface.is_alive:
            return None

        location = self.surface.location
        mode = self.current_view()
        if mode is self.state.mode and location == self._location:
            return None

        transition = ViewTransition(previous=self.state.mode, current=mode, location=location)
        self._location = location
        if mode is not self.state.mode:
            self.state = ViewState(mode=mode)

        logger.info("View changed from %s to %s", transition.previous.value, mode.value)
        if self._on_transition is not None:
            self._on_transition(transition)
        return transition

    def start(self, on_transition: TransitionHandler) -> None:
        """
        Begin polling and listening for navigation events.

        Side Effects:
            - Creates the poll task and registers a navigation listener
        """
        self._on_transition = on_transition
        self.state = ViewState(mode=self.current_view())
        self._location = self.surface.location
        self._poll_task = asyncio.create_task(self._poll(), name="sbox-view-poll")
        self._nav_subscription = self.surface.add_navigation_listener(self._on_navigation)

    def stop(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        if self._nav_subscription is not None:
            self._nav_subscription.cancel()
            self._nav_subscription = None
        for handle in self._nav_handles:
            handle.cancel()
        self._nav_handles.clear()
        self._on_transition = None

    def _on_navigation(self) -> None:
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            if handle is not None:
                self._nav_handles.discard(handle)
            self.check()

        handle = loop.call_later(self.navigation_settle, fire)
        self._nav_handles.add(handle)

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                self.check()
            except Exception:
                logger.exception("View check failed")
