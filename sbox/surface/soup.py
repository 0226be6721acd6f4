"""
BeautifulSoup-backed render surface.

Holds an HTML document in memory and behaves like a live page for the engine:
CSS selection through soupsieve, mutation records coalesced into batches and
delivered on the next loop iteration (like a MutationObserver), navigation
listeners fired on ``navigate``. The ``host_*`` methods play the part of the
page re-rendering itself.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping

import soupsieve as sv
from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from sbox.observability.logging import get_logger
from sbox.surface.base import (
    AttributeChange,
    MutationBatch,
    MutationListener,
    NavigationListener,
    Node,
    RenderSurface,
    Subscription,
)

logger = get_logger(__name__)

_INVISIBLE_PARENTS = frozenset({"script", "style", "head", "template"})


class SoupNode(Node):
    __slots__ = ("_tag", "_surface")

    def __init__(self, tag: Tag, surface: SoupSurface) -> None:
        self._tag = tag
        self._surface = surface

    def __eq__(self, other: object) -> bool:
        return isinstance(other, SoupNode) and other._tag is self._tag

    def __hash__(self) -> int:
        return id(self._tag)

    def __repr__(self) -> str:
        classes = ".".join(self.classes())
        return f"<SoupNode {self._tag.name}{'.' + classes if classes else ''}>"

    @property
    def tag(self) -> str:
        return self._tag.name

    @property
    def parent(self) -> SoupNode | None:
        parent = self._tag.parent
        if parent is None or isinstance(parent, BeautifulSoup):
            return None
        return SoupNode(parent, self._surface)

    def get_attribute(self, name: str) -> str | None:
        value = self._tag.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)

    def set_attribute(self, name: str, value: str) -> None:
        old_value = self.get_attribute(name)
        self._tag[name] = value
        self._surface._record_attribute(self, name, old_value)

    def classes(self) -> list[str]:
        value = self._tag.get("class") or []
        return list(value) if isinstance(value, list) else str(value).split()

    def add_class(self, name: str) -> None:
        current = self.classes()
        if name in current:
            return
        self._tag["class"] = [*current, name]
        self._surface._record_attribute(self, "class", " ".join(current))

    def remove_class(self, name: str) -> None:
        current = self.classes()
        if name not in current:
            return
        remaining = [c for c in current if c != name]
        if remaining:
            self._tag["class"] = remaining
        else:
            del self._tag["class"]
        self._surface._record_attribute(self, "class", " ".join(current))

    def matches(self, selector: str) -> bool:
        return sv.match(selector, self._tag)

    def select(self, selector: str) -> list[Node]:
        return [SoupNode(t, self._surface) for t in sv.select(selector, self._tag)]

    def text(self, skip: str | None = None) -> str:
        skipped = {id(t) for t in sv.select(skip, self._tag)} if skip else set()
        runs: list[str] = []
        for string in self._tag.find_all(string=True):
            if isinstance(string, Comment) or not isinstance(string, NavigableString):
                continue
            if self._hidden_run(string, skipped):
                continue
            stripped = string.strip()
            if stripped:
                runs.append(stripped)
        return "\n".join(runs)

    def _hidden_run(self, string: NavigableString, skipped: set[int]) -> bool:
        for parent in string.parents:
            if parent is self._tag:
                return False
            if id(parent) in skipped or parent.name in _INVISIBLE_PARENTS:
                return True
        return False

    def set_text(self, text: str) -> None:
        self._tag.string = text

    def is_hidden(self) -> bool:
        if self._tag.has_attr("hidden"):
            return True
        style = (self.get_attribute("style") or "").replace(" ", "").lower()
        return "display:none" in style

    def append(self, child: Node) -> None:
        if not isinstance(child, SoupNode):
            raise TypeError(f"cannot append {type(child).__name__} to a SoupNode")
        self._tag.append(child._tag)
        self._surface._record_added(child)

    def remove(self) -> None:
        if self._tag.parent is None:
            return
        self._tag.extract()
        self._surface._record_removed(self)

    def contains(self, other: Node) -> bool:
        if not isinstance(other, SoupNode):
            return False
        return any(parent is self._tag for parent in other._tag.parents)


class SoupSurface(RenderSurface):
    def __init__(self, html: str, location: str = "https://mail.google.com/mail/u/0/#inbox"):
        self._soup = BeautifulSoup(html, "html.parser")
        self._location = location
        self._alive = True
        self._listeners: list[MutationListener] = []
        self._nav_listeners: list[NavigationListener] = []
        self._added: list[Node] = []
        self._removed: list[Node] = []
        self._attributes: list[AttributeChange] = []
        self._flush_scheduled = False

    # -- RenderSurface -----------------------------------------------------

    @property
    def location(self) -> str:
        return self._location

    @property
    def is_alive(self) -> bool:
        return self._alive

    def select(self, selector: str) -> list[Node]:
        return [SoupNode(t, self) for t in sv.select(selector, self._soup)]

    def create_element(
        self,
        tag: str,
        classes: Iterable[str] = (),
        attributes: Mapping[str, str] | None = None,
        text: str = "",
    ) -> Node:
        element = self._soup.new_tag(tag)
        class_list = list(classes)
        if class_list:
            element["class"] = class_list
        for name, value in (attributes or {}).items():
            element[name] = value
        if text:
            element.string = text
        return SoupNode(element, self)

    def subscribe(self, listener: MutationListener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(lambda: self._discard(self._listeners, listener))

    def add_navigation_listener(self, listener: NavigationListener) -> Subscription:
        self._nav_listeners.append(listener)
        return Subscription(lambda: self._discard(self._nav_listeners, listener))

    @staticmethod
    def _discard(listeners: list, listener: object) -> None:
        if listener in listeners:
            listeners.remove(listener)

    # -- host side -----------------------------------------------------------

    def html(self) -> str:
        return str(self._soup)

    def host_insert_html(self, html: str, parent_selector: str | None = None) -> list[Node]:
        """
        Parse ``html`` and append its top-level elements to the first match of
        ``parent_selector`` (or the document body/root).

        Side Effects:
            - Mutates the document and queues an ``added`` record per element
        """
        parent = self._resolve_parent(parent_selector)
        fragment = BeautifulSoup(html, "html.parser")
        inserted: list[Node] = []
        for element in list(fragment.contents):
            if not isinstance(element, Tag):
                continue
            element.extract()
            node = SoupNode(element, self)
            parent.append(node)
            inserted.append(node)
        return inserted

    def host_replace_html(self, parent_selector: str, html: str) -> list[Node]:
        """Repaint: drop every child of the container and insert fresh markup."""
        parent = self._resolve_parent(parent_selector)
        for child in list(parent._tag.find_all(recursive=False)):
            SoupNode(child, self).remove()
        return self.host_insert_html(html, parent_selector)

    def host_remove(self, selector: str) -> int:
        nodes = self.select(selector)
        for node in nodes:
            node.remove()
        return len(nodes)

    def navigate(self, location: str, notify: bool = True) -> None:
        """
        Change location; ``notify`` fires navigation listeners (history events).

        Side Effects:
            - Calls every registered navigation listener when notify is True
        """
        self._location = location
        if notify:
            for listener in list(self._nav_listeners):
                listener()

    def kill(self) -> None:
        """Simulate the hosting runtime going away."""
        self._alive = False

    # -- mutation records ------------------------------------------------------

    def _resolve_parent(self, selector: str | None) -> SoupNode:
        if selector:
            found = sv.select_one(selector, self._soup)
            if found is None:
                raise LookupError(f"no element matches {selector!r}")
            return SoupNode(found, self)
        body = self._soup.body
        if body is not None:
            return SoupNode(body, self)
        root = next((c for c in self._soup.contents if isinstance(c, Tag)), None)
        if root is None:
            root = self._soup.new_tag("div")
            self._soup.append(root)
        return SoupNode(root, self)

    def _record_added(self, node: Node) -> None:
        self._added.append(node)
        self._schedule_flush()

    def _record_removed(self, node: Node) -> None:
        self._removed.append(node)
        self._schedule_flush()

    def _record_attribute(self, node: Node, name: str, old_value: str | None) -> None:
        self._attributes.append(AttributeChange(target=node, name=name, old_value=old_value))
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        self._flush_scheduled = True
        loop.call_soon(self.flush)

    def flush(self) -> MutationBatch:
        """
        Deliver pending records as one batch to every listener.

        Side Effects:
            - Clears pending records and calls mutation listeners
        """
        self._flush_scheduled = False
        batch = MutationBatch(
            added=tuple(self._added),
            removed=tuple(self._removed),
            attribute_changes=tuple(self._attributes),
        )
        self._added, self._removed, self._attributes = [], [], []
        if batch.empty:
            return batch
        for listener in list(self._listeners):
            try:
                listener(batch)
            except Exception:
                logger.exception("Mutation listener failed")
        return batch
