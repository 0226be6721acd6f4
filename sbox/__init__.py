"""SBOX - category annotations for Gmail inbox rows"""

from __future__ import annotations

__version__ = "1.0.0"


# Lazy imports so lightweight modules (categories, fallback) load without the engine
def __getattr__(name: str):
    """
    Lazy imports to avoid pulling in bs4 and the engine when only the value models are needed.
    """
    if name in ("Category", "Classification", "ContentRecord"):
        from sbox.classification import categories, models

        if name == "Category":
            return categories.Category
        if name == "Classification":
            return models.Classification
        if name == "ContentRecord":
            return models.ContentRecord

    if name == "EngineController":
        from sbox.engine.controller import EngineController

        return EngineController

    if name == "SoupSurface":
        from sbox.surface.soup import SoupSurface

        return SoupSurface

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "Category",
    "Classification",
    "ContentRecord",
    "EngineController",
    "SoupSurface",
]
