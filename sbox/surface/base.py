"""
Observed render surface contract.

The engine never touches a concrete UI tree. It sees:
- ``Node``: one element it can query, read and (for its own annotation subtree) write
- ``RenderSurface``: enumerate elements, create annotation nodes, subscribe to
  structural-change batches and navigation events, report location and liveness

The surface is owned by the host. The engine only ever inserts and removes its
own small annotation subtree and toggles a marker class on rows.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field


class Node(ABC):
    @property
    @abstractmethod
    def tag(self) -> str: ...

    @property
    @abstractmethod
    def parent(self) -> Node | None: ...

    @abstractmethod
    def get_attribute(self, name: str) -> str | None: ...

    @abstractmethod
    def set_attribute(self, name: str, value: str) -> None: ...

    @abstractmethod
    def classes(self) -> list[str]: ...

    def has_class(self, name: str) -> bool:
        return name in self.classes()

    @abstractmethod
    def add_class(self, name: str) -> None: ...

    @abstractmethod
    def remove_class(self, name: str) -> None: ...

    @abstractmethod
    def matches(self, selector: str) -> bool: ...

    @abstractmethod
    def select(self, selector: str) -> list[Node]:
        """Descendants matching ``selector`` in document order."""

    def select_one(self, selector: str) -> Node | None:
        found = self.select(selector)
        return found[0] if found else None

    @abstractmethod
    def text(self, skip: str | None = None) -> str:
        """
        Visible text, one stripped non-empty text run per line.

        Args:
            skip: selector whose subtrees are left out (e.g. engine annotations)
        """

    @abstractmethod
    def set_text(self, text: str) -> None: ...

    @abstractmethod
    def is_hidden(self) -> bool: ...

    @abstractmethod
    def append(self, child: Node) -> None: ...

    @abstractmethod
    def remove(self) -> None:
        """Detach this node (and its subtree) from the surface."""

    @abstractmethod
    def contains(self, other: Node) -> bool:
        """True when ``other`` is a strict descendant of this node."""


@dataclass(frozen=True)
class AttributeChange:
    target: Node
    name: str
    old_value: str | None = None


@dataclass(frozen=True)
class MutationBatch:
    """One delivery from the change-notification channel."""

    added: tuple[Node, ...] = ()
    removed: tuple[Node, ...] = ()
    attribute_changes: tuple[AttributeChange, ...] = ()

    @property
    def empty(self) -> bool:
        return not (self.added or self.removed or self.attribute_changes)


MutationListener = Callable[[MutationBatch], None]
NavigationListener = Callable[[], None]


@dataclass
class Subscription:
    """Handle returned by subscribe calls; ``cancel()`` is idempotent."""

    _cancel: Callable[[], None]
    active: bool = field(default=True)

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._cancel()


class RenderSurface(ABC):
    @property
    @abstractmethod
    def location(self) -> str:
        """Current URL (or equivalent navigation state) of the host view."""

    @property
    @abstractmethod
    def is_alive(self) -> bool:
        """False once the hosting runtime has been torn down."""

    @abstractmethod
    def select(self, selector: str) -> list[Node]:
        """All elements matching ``selector`` in document order."""

    def exists(self, selector: str) -> bool:
        return bool(self.select(selector))

    @abstractmethod
    def create_element(
        self,
        tag: str,
        classes: Iterable[str] = (),
        attributes: Mapping[str, str] | None = None,
        text: str = "",
    ) -> Node:
        """Create a detached element owned by the engine."""

    @abstractmethod
    def subscribe(self, listener: MutationListener) -> Subscription: ...

    @abstractmethod
    def add_navigation_listener(self, listener: NavigationListener) -> Subscription: ...
