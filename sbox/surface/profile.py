"""Selector profile describing where things live on a particular host surface."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldStrategy:
    """
    One way to read a field from an item.

    ``selector`` finds the element inside the item; its text is used, or the
    value of ``attribute`` when the text is empty. ``attribute_first`` flips
    that order.
    """

    selector: str
    attribute: str | None = None
    attribute_first: bool = False


@dataclass(frozen=True)
class SurfaceProfile:
    name: str
    # Rows to annotate; the union is visited in document order
    item_selectors: tuple[str, ...]
    # Explicit identifiers, checked on the row, then on a descendant
    identity_attributes: tuple[str, ...]
    identity_descendant_selector: str
    subject_strategies: tuple[FieldStrategy, ...]
    originator_strategies: tuple[FieldStrategy, ...]
    excerpt_strategies: tuple[FieldStrategy, ...]
    # Annotation attachment points, in priority order; the row itself is last resort
    insertion_candidates: tuple[str, ...]
    # Added nodes that match (or contain) one of these are item-shaped
    item_shape_selectors: tuple[str, ...]
    # Added nodes containing these (or carrying list_container_class) mean the list came back
    list_signal_selectors: tuple[str, ...]
    list_container_class: str
    # Class changes on nodes carrying one of these are relevant
    container_classes: tuple[str, ...]
    ready_selectors: tuple[str, ...]
    compose_dialog_selector: str
    detail_prefixes: tuple[str, ...]
    compose_fragment: str
    search_fragment: str

    @property
    def item_selector(self) -> str:
        return ", ".join(self.item_selectors)

    @property
    def item_shape_selector(self) -> str:
        return ", ".join(self.item_shape_selectors)

    @property
    def list_signal_selector(self) -> str:
        return ", ".join(self.list_signal_selectors)
