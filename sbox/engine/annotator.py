"""
Annotator - the visible category label on a row and its affordances.

Label DOM contract:
    <span class="sbox-label sbox-label-<category>"
          data-sbox-category="<category>" data-sbox-confidence="0.80"
          data-sbox-key="<uuid>" style="background-color: <colour>; ...">
        Travel &amp; Bookings
        <span class="sbox-confidence-indicator sbox-confidence-high"></span>  (optional)
    </span>

Applying is idempotent: every existing label in the row is removed first.
The annotator never touches the processed registry; that is the controller's job.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from sbox.classification.categories import ALL_CATEGORIES, Category
from sbox.classification.gateway import ClassificationGateway
from sbox.classification.models import Classification, ContentRecord
from sbox.config import ANNOTATION_CLASS
from sbox.observability.confidence import INDICATOR_HIGH, INDICATOR_MEDIUM
from sbox.observability.logging import get_logger
from sbox.observability.structured import EventType, StructuredLogger, get_structured_logger
from sbox.observability.telemetry import counter
from sbox.surface.base import Node, RenderSurface
from sbox.surface.profile import SurfaceProfile

logger = get_logger(__name__)

INDICATOR_CLASS = "sbox-confidence-indicator"
KEY_ATTRIBUTE = "data-sbox-key"
CATEGORY_ATTRIBUTE = "data-sbox-category"
CONFIDENCE_ATTRIBUTE = "data-sbox-confidence"

_LABEL_STYLE = (
    "background-color: {color}; color: white; padding: 2px 6px; border-radius: 10px; "
    "font-size: 10px; font-weight: bold; margin-left: 8px; margin-right: 4px; "
    "display: inline-block; vertical-align: middle; text-transform: uppercase"
)


def confidence_level(confidence: float) -> str:
    if confidence >= INDICATOR_HIGH:
        return "high"
    if confidence >= INDICATOR_MEDIUM:
        return "medium"
    return "low"


@dataclass(frozen=True)
class MenuOption:
    category: Category
    label: str
    selected: bool


@dataclass(frozen=True)
class CategoryMenu:
    """Category selector shown when a label is clicked."""

    current: Category | None
    options: tuple[MenuOption, ...] = field(default_factory=tuple)


@dataclass
class LabelBinding:
    """What a live label was built from; needed to forward a correction."""

    identity: str
    classification: Classification
    record: ContentRecord


class Annotator:
    def __init__(
        self,
        surface: RenderSurface,
        profile: SurfaceProfile,
        gateway: ClassificationGateway,
        structured: StructuredLogger | None = None,
    ) -> None:
        self.surface = surface
        self.profile = profile
        self.gateway = gateway
        self.structured = structured or get_structured_logger()
        self._bindings: dict[str, LabelBinding] = {}

    def apply(
        self,
        item: Node,
        classification: Classification,
        record: ContentRecord,
        identity: str = "",
        show_confidence: bool = False,
    ) -> Node:
        """
        Replace any label in ``item`` with one for ``classification``.

        Returns:
            The inserted label node

        Side Effects:
            - Removes existing labels from the row and inserts a new one
            - Remembers (identity, classification, record) for later corrections
        """
        self.remove(item)

        key = uuid.uuid4().hex
        label = self._build_label(classification, key, show_confidence)
        target = self._insertion_point(item)
        target.append(label)

        self._bindings[key] = LabelBinding(
            identity=identity, classification=classification, record=record
        )
        logger.debug(
            "Applied %s label (%.0f%%, %s) to %s",
            classification.category.value,
            classification.confidence * 100,
            classification.source,
            identity or item,
        )
        return label

    def _build_label(self, classification: Classification, key: str, show_confidence: bool) -> Node:
        category = classification.category
        attributes = {
            CATEGORY_ATTRIBUTE: category.value,
            CONFIDENCE_ATTRIBUTE: f"{classification.confidence:.2f}",
            KEY_ATTRIBUTE: key,
            "style": _LABEL_STYLE.format(color=category.color),
        }
        if show_confidence:
            attributes["title"] = f"Confidence: {classification.percent}%"

        label = self.surface.create_element(
            "span",
            classes=(ANNOTATION_CLASS, f"{ANNOTATION_CLASS}-{category.css_suffix}"),
            attributes=attributes,
            text=category.display_name,
        )
        if show_confidence:
            level = confidence_level(classification.confidence)
            label.append(
                self.surface.create_element(
                    "span", classes=(INDICATOR_CLASS, f"sbox-confidence-{level}")
                )
            )
        return label

    def _insertion_point(self, item: Node) -> Node:
        for selector in self.profile.insertion_candidates:
            candidate = item.select_one(selector)
            if candidate is not None and not candidate.is_hidden():
                return candidate
        return item

    def remove(self, item: Node) -> int:
        """
        Strip every label from ``item`` (the "Remove label" quick action).

        Side Effects:
            - Detaches label nodes and drops their bindings
        """
        labels = item.select(f".{ANNOTATION_CLASS}")
        for label in labels:
            key = label.get_attribute(KEY_ATTRIBUTE)
            if key:
                self._bindings.pop(key, None)
            label.remove()
        return len(labels)

    def has_annotation(self, item: Node) -> bool:
        return item.select_one(f".{ANNOTATION_CLASS}") is not None

    def label_for(self, item: Node) -> Node | None:
        return item.select_one(f".{ANNOTATION_CLASS}")

    def binding_for(self, item: Node) -> LabelBinding | None:
        label = self.label_for(item)
        if label is None:
            return None
        key = label.get_attribute(KEY_ATTRIBUTE)
        return self._bindings.get(key) if key else None

    def strip_all(self, surface: RenderSurface | None = None) -> int:
        """Remove every label on the surface. Returns how many were removed."""
        labels = (surface or self.surface).select(f".{ANNOTATION_CLASS}")
        for label in labels:
            label.remove()
        self._bindings.clear()
        return len(labels)

    def prune(self) -> int:
        """Drop bindings whose label the host has discarded."""
        live = {
            label.get_attribute(KEY_ATTRIBUTE)
            for label in self.surface.select(f".{ANNOTATION_CLASS}[{KEY_ATTRIBUTE}]")
        }
        stale = [key for key in self._bindings if key not in live]
        for key in stale:
            del self._bindings[key]
        return len(stale)

    def menu_for(self, item: Node) -> CategoryMenu:
        label = self.label_for(item)
        current = Category.parse(label.get_attribute(CATEGORY_ATTRIBUTE)) if label else None
        options = tuple(
            MenuOption(category=c, label=c.display_name, selected=c is current)
            for c in ALL_CATEGORIES
        )
        return CategoryMenu(current=current, options=options)

    async def relabel(
        self, item: Node, category: Category, record: ContentRecord | None = None
    ) -> bool:
        """
        Apply a user correction: update the label now, then send the training example.

        Args:
            item: Row carrying the label
            category: Category chosen by the user
            record: Content to train on; defaults to the record the label was built from

        Returns:
            True when the classifier accepted the training example

        Side Effects:
            - Rewrites the label text, colour and data attributes
            - Calls the classifier's add_training_example through the gateway
        """
        label = self.label_for(item)
        if label is None:
            logger.warning("Relabel requested for a row without a label")
            return False

        previous = Category.parse(label.get_attribute(CATEGORY_ATTRIBUTE))
        binding = self.binding_for(item)
        record = record or (binding.record if binding else None)

        if previous is not None:
            label.remove_class(f"{ANNOTATION_CLASS}-{previous.css_suffix}")
        label.add_class(f"{ANNOTATION_CLASS}-{category.css_suffix}")
        label.set_attribute(CATEGORY_ATTRIBUTE, category.value)
        label.set_attribute("style", _LABEL_STYLE.format(color=category.color))
        self._set_label_text(label, category)

        if binding is not None:
            binding.classification = binding.classification.model_copy(
                update={"category": category, "source": "user"}
            )

        counter("annotation.corrected")
        self.structured.log_event(
            EventType.ANNOTATION_CORRECTED,
            item_id=binding.identity if binding else None,
            previous=previous.value if previous else None,
            category=category.value,
        )
        logger.info(
            "Category corrected from %s to %s",
            previous.value if previous else "unknown",
            category.value,
        )

        if record is None:
            logger.warning("No content record for corrected row, training example skipped")
            return False
        return await self.gateway.submit_correction(record, category)

    def _set_label_text(self, label: Node, category: Category) -> None:
        indicator = label.select_one(f".{INDICATOR_CLASS}")
        if indicator is not None:
            indicator.remove()
        label.set_text(category.display_name)
        if indicator is not None:
            label.append(indicator)
