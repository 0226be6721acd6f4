"""
Centralized Confidence Thresholds Configuration

All confidence-related values for the SBOX annotation engine.

IMPORTANT: Values are loaded from config/sbox_policy.yaml.
The constants below are the fallbacks used when the YAML is missing; YAML is the
source of truth.

Design Philosophy:
- Prefer no annotation over a wrong one: annotations need >= threshold
- The fallback rule table is deterministic and reports fixed confidences
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from sbox.observability.logging import get_logger

logger = get_logger(__name__)


def _load_policy_config() -> dict[str, Any]:
    """
    Load configuration from sbox_policy.yaml.

    Side Effects:
        - Reads config/sbox_policy.yaml file from filesystem

    Returns:
        Dict with classification, fallback and annotation sections
    """
    override = os.getenv("SBOX_POLICY_PATH")
    possible_paths = [
        Path(override) if override else None,
        Path(__file__).parent.parent.parent / "config" / "sbox_policy.yaml",
        Path("config/sbox_policy.yaml"),
    ]

    for config_path in possible_paths:
        if config_path is not None and config_path.exists():
            with open(config_path) as f:
                config = yaml.safe_load(f) or {}
                logger.debug("Loaded confidence config from %s", config_path)
                return config

    logger.warning("sbox_policy.yaml not found, using hardcoded defaults")
    return {}


_POLICY_CONFIG = _load_policy_config()
_CLASSIFICATION_CONFIG = _POLICY_CONFIG.get("classification", {})
_FALLBACK_CONFIG = _POLICY_CONFIG.get("fallback", {})
_ANNOTATION_CONFIG = _POLICY_CONFIG.get("annotation", {})

# ============================================================================
# ANNOTATION GATE
# ============================================================================

# Used for any category without its own entry
DEFAULT_THRESHOLD: float = float(_CLASSIFICATION_CONFIG.get("default_threshold", 0.70))

# category name -> minimum confidence
PER_CATEGORY_THRESHOLDS: dict[str, float] = {
    str(name): float(value)
    for name, value in (_CLASSIFICATION_CONFIG.get("per_category") or {}).items()
}

# ============================================================================
# FALLBACK RULE TABLE
# ============================================================================

FALLBACK_MATCH_CONFIDENCE: float = float(_FALLBACK_CONFIG.get("match_confidence", 0.80))
FALLBACK_DEFAULT_CONFIDENCE: float = float(_FALLBACK_CONFIG.get("default_confidence", 0.50))

# ============================================================================
# ANNOTATION INDICATOR BANDS
# ============================================================================

INDICATOR_HIGH: float = float(_ANNOTATION_CONFIG.get("indicator_high", 0.80))
INDICATOR_MEDIUM: float = float(_ANNOTATION_CONFIG.get("indicator_medium", 0.60))


def validate_thresholds() -> bool:
    """
    Validate that all thresholds are within [0, 1] and consistently ordered

    Raises:
        ValueError: If thresholds are inconsistent
    """
    errors = []

    all_values = [
        DEFAULT_THRESHOLD,
        FALLBACK_MATCH_CONFIDENCE,
        FALLBACK_DEFAULT_CONFIDENCE,
        INDICATOR_HIGH,
        INDICATOR_MEDIUM,
        *PER_CATEGORY_THRESHOLDS.values(),
    ]
    for val in all_values:
        if not (0.0 <= val <= 1.0):
            errors.append(f"Threshold {val} is outside valid range [0.0, 1.0]")

    if INDICATOR_MEDIUM > INDICATOR_HIGH:
        errors.append(
            f"INDICATOR_MEDIUM ({INDICATOR_MEDIUM}) must be <= INDICATOR_HIGH ({INDICATOR_HIGH})"
        )

    if errors:
        raise ValueError("Threshold validation failed:\n" + "\n".join(errors))

    return True


try:
    validate_thresholds()
except ValueError as e:
    logger.warning("Confidence threshold validation warning: %s", e)
