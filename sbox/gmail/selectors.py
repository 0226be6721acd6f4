"""
Gmail web client selectors.

Gmail's class names are obfuscated and change without notice; every lookup is a
priority list so a single renamed class degrades one strategy, not the engine.
"""

from __future__ import annotations

from sbox.surface.profile import FieldStrategy, SurfaceProfile

GMAIL_PROFILE = SurfaceProfile(
    name="gmail",
    item_selectors=(
        "tr.zA",  # inbox row
        "div.aDP",  # conversation container
        "[data-legacy-thread-id]",
        ".Cp",
    ),
    identity_attributes=("data-legacy-thread-id", "data-thread-id", "id"),
    identity_descendant_selector="[data-legacy-thread-id]",
    subject_strategies=(
        FieldStrategy(".bog .aKS"),  # conversation view
        FieldStrategy(".y6 span[title]", attribute="title"),  # inbox row
        FieldStrategy(".aoT .bog"),
        FieldStrategy(".a4W .bog"),
        FieldStrategy("[data-legacy-subject]", attribute="data-legacy-subject"),
    ),
    originator_strategies=(
        FieldStrategy(".yW span[email]", attribute="email", attribute_first=True),
        FieldStrategy(".yW .go span"),
        FieldStrategy(".a1f .afn"),
        FieldStrategy("[data-sender]", attribute="data-sender"),
    ),
    excerpt_strategies=(
        FieldStrategy(".y2"),
        FieldStrategy(".bog .y2"),
        FieldStrategy(".a4W .y2"),
    ),
    insertion_candidates=(".y6", ".aKS", ".bog", ".yf"),
    item_shape_selectors=(
        "[data-legacy-thread-id]",
        ".zA",
        ".Cp",
        '[role="listitem"]',
        ".aDP",
        ".bog",
    ),
    list_signal_selectors=(".zA", "[data-legacy-thread-id]"),
    list_container_class="aDP",
    container_classes=("nH", "aDP", "zA"),
    ready_selectors=('[role="main"]', ".nH"),
    compose_dialog_selector='[role="dialog"][aria-label*="compose" i]',
    detail_prefixes=("#inbox/", "#all/", "#sent/"),
    compose_fragment="#compose",
    search_fragment="#search/",
)
