"""
Structured Logging Kit for the SBOX engine

Provides one-line JSON event logging with:
- Correlation IDs (session_id + item identity)
- Event taxonomy across the engine stages
- Sampling & rate limits (10% info, 100% error)
- Privacy redaction (subjects, addresses)

Usage:
    from sbox.observability.structured import StructuredLogger, EventType

    logger = StructuredLogger(session_id="20261018_101500")

    logger.log_event(
        EventType.ANNOTATION_APPLIED,
        item_id="18c2a4f8d",
        category="travelBookings",
        confidence=0.8,
    )

Output:
    {"ts":"2026-10-18T10:15:00.123+00:00","level":"INFO","session":"20261018_101500","event":"annotation_applied","item":"5f0c...","category":"travelBookings","confidence":0.8}
"""

from __future__ import annotations

import hmac
import json
import logging
import random
import re
import secrets
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

logger = logging.getLogger("sbox.structured")

_EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b")
_PHONE_PATTERN = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")


class EventType(str, Enum):
    """Event taxonomy covering the engine stages"""

    # 1. Processing passes
    PASS_START = "pass_start"
    PASS_DONE = "pass_done"
    PASS_SKIPPED_BUSY = "pass_skipped_busy"

    # 2. Classification
    CLASSIFY_MODEL_OK = "classify_model_ok"
    CLASSIFY_MODEL_ERROR = "classify_model_error"
    CLASSIFY_FALLBACK_INVOKED = "classify_fallback_invoked"
    CLASSIFY_BELOW_THRESHOLD = "classify_below_threshold"

    # 3. Annotation
    ANNOTATION_APPLIED = "annotation_applied"
    ANNOTATION_CORRECTED = "annotation_corrected"
    EXTRACT_ERROR = "extract_error"

    # 4. View / watcher
    VIEW_TRANSITION = "view_transition"
    FORCED_INVALIDATION = "forced_invalidation"

    # 5. Reconciliation
    RECONCILE_RESTORED = "reconcile_restored"

    # 6. Lifecycle
    ENGINE_STARTED = "engine_started"
    ENGINE_STOPPED = "engine_stopped"
    CONTEXT_LOST = "context_lost"


EVENT_SEVERITY = {
    EventType.PASS_START: logging.DEBUG,
    EventType.PASS_DONE: logging.INFO,
    EventType.PASS_SKIPPED_BUSY: logging.DEBUG,
    EventType.CLASSIFY_MODEL_OK: logging.DEBUG,
    EventType.CLASSIFY_MODEL_ERROR: logging.ERROR,
    EventType.CLASSIFY_FALLBACK_INVOKED: logging.WARNING,
    EventType.CLASSIFY_BELOW_THRESHOLD: logging.INFO,
    EventType.ANNOTATION_APPLIED: logging.DEBUG,
    EventType.ANNOTATION_CORRECTED: logging.INFO,
    EventType.EXTRACT_ERROR: logging.ERROR,
    EventType.VIEW_TRANSITION: logging.INFO,
    EventType.FORCED_INVALIDATION: logging.INFO,
    EventType.RECONCILE_RESTORED: logging.INFO,
    EventType.ENGINE_STARTED: logging.INFO,
    EventType.ENGINE_STOPPED: logging.INFO,
    EventType.CONTEXT_LOST: logging.WARNING,
}


class SafeJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles common non-serializable types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "__dict__"):
            return str(obj)
        return super().default(obj)


class StructuredLogger:
    """
    Structured event logger with sampling and privacy redaction

    Features:
    - Correlation via session_id (engine run) + item_id (salted hash)
    - Sampling: 10% for INFO, 100% for ERROR/CRITICAL
    - Privacy: auto-redacts subjects and addresses
    - One-line JSON output for easy parsing
    """

    def __init__(
        self,
        session_id: str | None = None,
        sample_rate_info: float = 0.1,
        sample_rate_error: float = 1.0,
    ):
        """
        Args:
            session_id: Unique ID for this session (e.g., "20261018_101500")
            sample_rate_info: % of INFO logs to emit (0.0-1.0)
            sample_rate_error: % of ERROR logs to emit (0.0-1.0)
        """
        self.session_id = session_id or self._generate_session_id()
        self.sample_rate_info = sample_rate_info
        self.sample_rate_error = sample_rate_error
        self._rate_limiter: dict[str, datetime] = {}
        self._last_cleanup = datetime.now(UTC)
        self._salt = secrets.token_bytes(32)

    @staticmethod
    def _generate_session_id() -> str:
        """Generate session ID: YYYYMMDD_HHMMSS"""
        return datetime.now(UTC).strftime("%Y%m%d_%H%M%S")

    def hash_item_id(self, item_id: str) -> str:
        """Hash an item identity with HMAC for privacy

        Side Effects:
            None (pure function - computes HMAC hash only)
        """
        if not item_id:
            return "unknown"
        h = hmac.new(self._salt, item_id.encode("utf-8"), "sha256")
        return h.hexdigest()[:16]

    @staticmethod
    def redact_subject(subject: str, max_len: int = 50) -> str:
        """Redact subject line for privacy (keep first 50 chars)

        Side Effects:
            None (pure function - redacts PII from string only)
        """
        if not subject:
            return ""

        truncated = subject[:max_len]
        truncated = _EMAIL_PATTERN.sub("[EMAIL]", truncated)
        truncated = _PHONE_PATTERN.sub("[PHONE]", truncated)

        return truncated + ("..." if len(subject) > max_len else "")

    def _should_log(self, event_type: EventType) -> bool:
        """Determine if event should be logged based on sampling rate"""
        severity = EVENT_SEVERITY.get(event_type, logging.INFO)

        if severity >= logging.ERROR:
            return random.random() < self.sample_rate_error

        return random.random() < self.sample_rate_info

    def _rate_limit(self, event_key: str, min_interval_sec: float = 60.0) -> bool:
        """
        Rate limit events by key (e.g., "annotation_applied:5f0c...")

        Returns:
            True if event should be logged, False if rate limited
        """
        now = datetime.now(UTC)

        # Drop entries older than 1 hour, every 5 minutes
        if (now - self._last_cleanup).total_seconds() > 300:
            cutoff = now - timedelta(hours=1)
            self._rate_limiter = {k: v for k, v in self._rate_limiter.items() if v > cutoff}
            self._last_cleanup = now

        last_log = self._rate_limiter.get(event_key)
        if last_log and (now - last_log).total_seconds() < min_interval_sec:
            return False

        self._rate_limiter[event_key] = now
        return True

    def log_event(
        self,
        event_type: EventType,
        item_id: str | None = None,
        rate_limit_key: str | None = None,
        **kwargs: Any,
    ) -> None:
        """
        Log a structured event

        Args:
            event_type: Event type from EventType enum
            item_id: Item identity (will be hashed)
            rate_limit_key: Optional key for rate limiting (default: event_type + item)
            **kwargs: Additional fields for the event

        Side Effects:
            - Writes structured JSON log entry to logging system
            - Updates rate limiter dictionary
        """
        if not self._should_log(event_type):
            return

        rl_key = rate_limit_key or f"{event_type}:{self.hash_item_id(item_id or 'none')}"
        severity = EVENT_SEVERITY.get(event_type, logging.INFO)

        # Only rate limit INFO/DEBUG (not errors)
        if severity < logging.ERROR and not self._rate_limit(rl_key):
            return

        event: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": logging.getLevelName(severity),
            "session": self.session_id,
            "event": event_type.value,
        }

        if item_id:
            event["item"] = self.hash_item_id(item_id)

        for key, value in kwargs.items():
            if key in ("subject", "originator") and isinstance(value, str):
                event[key] = self.redact_subject(value)
            elif isinstance(value, str) and len(value) > 200:
                event[key] = value[:200] + "..."
            else:
                event[key] = value

        try:
            json_line = json.dumps(event, separators=(",", ":"), cls=SafeJSONEncoder)
            logger.log(severity, json_line)
        except (TypeError, ValueError) as e:
            logger.error(
                "structured_log_error: failed to serialize event type=%s error=%s", event_type, e
            )

    # Convenience methods for common events

    def pass_done(self, reason: str, visited: int, annotated: int, skipped: int) -> None:
        """Log a completed processing pass

        Side Effects:
            - Logs event to application logger via log_event()
        """
        self.log_event(
            EventType.PASS_DONE,
            rate_limit_key=f"{EventType.PASS_DONE}:{reason}",
            reason=reason,
            visited=visited,
            annotated=annotated,
            skipped=skipped,
        )

    def fallback_invoked(self, item_id: str | None, reason: str) -> None:
        self.log_event(EventType.CLASSIFY_FALLBACK_INVOKED, item_id=item_id, reason=reason)

    def view_transition(self, previous: str, current: str, invalidated: bool) -> None:
        self.log_event(
            EventType.VIEW_TRANSITION,
            rate_limit_key=f"{EventType.VIEW_TRANSITION}:{previous}->{current}",
            previous=previous,
            current=current,
            invalidated=invalidated,
        )

    def reconcile_restored(self, restored: int) -> None:
        self.log_event(
            EventType.RECONCILE_RESTORED,
            rate_limit_key=f"{EventType.RECONCILE_RESTORED}",
            restored=restored,
        )


_global_logger: StructuredLogger | None = None


def get_structured_logger(session_id: str | None = None) -> StructuredLogger:
    """
    Get or create global structured logger

    Args:
        session_id: Optional session ID (creates new logger if provided)

    Side Effects:
        - May modify global _global_logger variable if creating new logger
    """
    global _global_logger

    if session_id or _global_logger is None:
        _global_logger = StructuredLogger(session_id=session_id)

    return _global_logger
