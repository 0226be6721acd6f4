"""
Pytest configuration for SBOX tests

Provides a Gmail-like inbox snapshot, fake classifiers and short engine timings
shared across all test files. No browser or network is needed: SoupSurface
stands in for the live page.
"""

from __future__ import annotations

import asyncio

import pytest

from sbox.classification.categories import Category
from sbox.classification.interfaces import Classifier
from sbox.classification.models import Classification, ContentRecord
from sbox.engine.controller import EngineController, EngineTimings
from sbox.infrastructure.settings import EngineSettings, StaticSettingsProvider
from sbox.observability.sinks import CounterTelemetrySink
from sbox.observability.telemetry import reset_counters, reset_latencies
from sbox.surface.soup import SoupSurface

INBOX_URL = "https://mail.google.com/mail/u/0/#inbox"
DETAIL_URL = "https://mail.google.com/mail/u/0/#inbox/FMfcgzQXJWbc"


def make_row(
    subject: str,
    excerpt: str,
    sender: str,
    row_attrs: str = "",
    thread_id: str | None = None,
) -> str:
    """One inbox row shaped like Gmail's ``tr.zA`` markup."""
    subject_inner = (
        f'<span data-legacy-thread-id="{thread_id}">{subject}</span>' if thread_id else subject
    )
    return (
        f'<tr class="zA" {row_attrs}>'
        f'<td class="yX"><div class="yW"><span class="bA4">'
        f'<span email="{sender}" name="{sender.split("@")[0]}">{sender.split("@")[0]}</span>'
        f"</span></div></td>"
        f'<td class="xY"><div class="y6"><span class="bog" title="{subject}">{subject_inner}</span></div>'
        f'<span class="y2">{excerpt}</span></td>'
        f"</tr>"
    )


INBOX_ROWS = [
    make_row(
        "Flight confirmation",
        "Your booking to Rome",
        "travel@airline.com",
        row_attrs='data-thread-id="sbox-482931"',
    ),
    make_row(
        "Your monthly statement",
        "Invoice attached",
        "billing@bank.example",
        thread_id="18c2a4f8d",
    ),
    make_row(
        "Dinner on Saturday?",
        "Are you free this weekend",
        "friend@example.com",
        row_attrs='data-thread-id="thread-personal"',
    ),
    make_row(
        "Flash sale: 50% off",
        "Use this coupon today",
        "shop@store.example",
        row_attrs='data-thread-id="thread-promo"',
    ),
    make_row(
        "Team meeting moved",
        "Quarterly review is now at 3pm",
        "boss@work.example",
    ),
]


def inbox_html(rows: list[str] | None = None) -> str:
    body = "".join(INBOX_ROWS if rows is None else rows)
    return (
        "<html><body>"
        '<div role="main" class="nH">'
        f'<table class="F"><tbody id="rows">{body}</tbody></table>'
        "</div>"
        "</body></html>"
    )


class FakeClassifier(Classifier):
    """Scriptable classifier: answers by subject, records every call."""

    def __init__(
        self,
        answers: dict[str, Classification] | None = None,
        loaded: bool = True,
        initializing: bool = False,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.answers = answers or {}
        self.loaded = loaded
        self.initializing = initializing
        self.delay = delay
        self.error = error
        self.calls: list[ContentRecord] = []
        self.training: list[tuple[ContentRecord, Category]] = []

    @property
    def is_model_loaded(self) -> bool:
        return self.loaded

    @property
    def is_initializing(self) -> bool:
        return self.initializing

    async def classify(self, record: ContentRecord) -> Classification | None:
        self.calls.append(record)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.answers.get(record.subject)

    async def add_training_example(self, record: ContentRecord, category: Category) -> None:
        self.training.append((record, category))


@pytest.fixture(autouse=True)
def clean_telemetry():
    """Counters are process-global; start every test from zero"""
    reset_counters()
    reset_latencies()
    yield
    reset_counters()


@pytest.fixture
def fast_timings():
    """Short delays so debounce, settle and timeout paths run in milliseconds"""
    return EngineTimings(
        debounce_list=0.01,
        debounce_default=0.03,
        view_poll=30.0,
        navigation_settle=0.01,
        invalidation_settle=0.02,
        transition_settle=0.02,
        reconcile_interval=30.0,
        classifier_timeout=0.2,
        classifier_startup_wait=0.1,
        classifier_ready_poll=0.01,
        classifier_startup_poll=0.01,
        surface_ready_timeout=0.1,
        surface_ready_poll=0.01,
    )


@pytest.fixture
def surface():
    return SoupSurface(inbox_html(), location=INBOX_URL)


@pytest.fixture
def settings_provider():
    return StaticSettingsProvider(EngineSettings())


@pytest.fixture
def fallback_classifier():
    """Loaded=False: every row goes through the keyword table"""
    return FakeClassifier(loaded=False)


@pytest.fixture
def make_engine(surface, settings_provider, fast_timings):
    """Factory for engines wired to the shared surface and settings"""
    engines: list[EngineController] = []

    def _make(classifier: Classifier | None = None, **kwargs) -> EngineController:
        engine = EngineController(
            kwargs.pop("surface", surface),
            classifier or FakeClassifier(loaded=False),
            kwargs.pop("settings_provider", settings_provider),
            telemetry=kwargs.pop("telemetry", CounterTelemetrySink()),
            timings=kwargs.pop("timings", fast_timings),
            **kwargs,
        )
        engines.append(engine)
        return engine

    return _make
