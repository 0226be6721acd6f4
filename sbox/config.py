"""Centralized configuration for the SBOX annotation engine.

Typed constants with environment overrides. Every value has a safe default so
the engine starts without any env configuration. Per-category confidence
thresholds live in config/sbox_policy.yaml (see sbox.observability.confidence).
"""

from __future__ import annotations

from sbox.infrastructure.env import get_env_bool, get_optional_env

APP_VERSION: str = "1.0.0"

# --- Change Watcher (seconds) ---
DEBOUNCE_LIST_REAPPEAR: float = float(get_optional_env("SBOX_DEBOUNCE_LIST_MS", "100")) / 1000
DEBOUNCE_DEFAULT: float = float(get_optional_env("SBOX_DEBOUNCE_MS", "300")) / 1000

# --- View Detector (seconds) ---
VIEW_POLL_INTERVAL: float = float(get_optional_env("SBOX_VIEW_POLL_INTERVAL", "1.0"))
NAVIGATION_SETTLE: float = 0.1
INVALIDATION_SETTLE: float = 0.5
TRANSITION_SETTLE: float = 1.0

# --- Reconciliation Loop (seconds) ---
RECONCILE_INTERVAL: float = float(get_optional_env("SBOX_RECONCILE_INTERVAL", "5.0"))

# --- Classifier (seconds) ---
CLASSIFIER_TIMEOUT: float = float(get_optional_env("SBOX_CLASSIFIER_TIMEOUT", "10.0"))
CLASSIFIER_STARTUP_WAIT: float = float(get_optional_env("SBOX_CLASSIFIER_STARTUP_WAIT", "15.0"))
CLASSIFIER_READY_POLL: float = 0.1
CLASSIFIER_STARTUP_POLL: float = 0.2

# --- Surface readiness (seconds) ---
SURFACE_READY_TIMEOUT: float = float(get_optional_env("SBOX_SURFACE_READY_TIMEOUT", "30.0"))
SURFACE_READY_POLL: float = 1.0

# --- Identity ---
IDENTITY_TAG: str = "sbox-"
IDENTITY_HASH_SCHEME: str = get_optional_env("SBOX_IDENTITY_HASH", "fnv1a")

# --- Policies ---
# Re-run items classified by the fallback table once the model reports loaded.
RECLASSIFY_FALLBACK: bool = get_env_bool("SBOX_RECLASSIFY_FALLBACK", False)

# --- Annotation DOM contract ---
ANNOTATION_CLASS: str = "sbox-label"
PROCESSED_MARKER: str = "sbox-processed"
