"""
Tests for the in-memory telemetry counters and the logger setup
"""

from __future__ import annotations

import logging

import pytest

from sbox.observability import telemetry
from sbox.observability.logging import get_logger


class TestCounters:
    def test_counter_accumulates(self):
        assert telemetry.counter("engine.passes") == 1
        assert telemetry.counter("engine.passes", 2) == 3
        assert telemetry.get_counter("engine.passes") == 3
        assert telemetry.get_counter("engine.never") == 0

    def test_prefix_snapshot(self):
        telemetry.counter("annotation.category.travelBookings")
        telemetry.counter("annotation.total")
        telemetry.counter("reconcile.restored")

        assert telemetry.get_counters("annotation.") == {
            "annotation.category.travelBookings": 1,
            "annotation.total": 1,
        }

    def test_reset(self):
        telemetry.counter("engine.passes")
        telemetry.reset_counters()
        assert telemetry.get_counters() == {}


class TestTimings:
    def test_no_samples(self):
        stats = telemetry.get_latency_stats("engine.pass")
        assert stats["count"] == 0

    def test_block_is_recorded_even_when_it_raises(self):
        with telemetry.time_block("engine.pass"):
            pass
        with pytest.raises(RuntimeError):
            with telemetry.time_block("engine.pass"):
                raise RuntimeError("boom")

        stats = telemetry.get_latency_stats("engine.pass")
        assert stats["count"] == 2
        assert 0.0 <= stats["min"] <= stats["avg"] <= stats["max"]
        assert stats["p95"] == stats["max"]


class TestLogger:
    def test_level_follows_environment(self, monkeypatch):
        monkeypatch.setenv("SBOX_LOG_LEVEL", "debug")
        assert get_logger("sbox.test").level == logging.DEBUG

        monkeypatch.setenv("SBOX_LOG_LEVEL", "WARNING")
        assert get_logger("sbox.test").level == logging.WARNING

    def test_unknown_level_defaults_to_info(self, monkeypatch):
        monkeypatch.setenv("SBOX_LOG_LEVEL", "chatty")
        assert get_logger("sbox.test").level == logging.INFO
