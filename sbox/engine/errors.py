"""Engine exceptions."""

from __future__ import annotations


class SboxError(Exception):
    """Base class for errors raised by the annotation engine."""


class EngineStateError(SboxError):
    """Lifecycle misuse, e.g. starting an engine that is already running."""


class ContextLostError(SboxError):
    """The hosting runtime went away mid-operation; callers treat it as a silent no-op."""
