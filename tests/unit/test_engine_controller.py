"""
Tests for the Engine Controller: lifecycle, decision table, guard, invalidation, repair
"""

from __future__ import annotations

import asyncio

import pytest

from sbox.classification.categories import Category
from sbox.classification.models import Classification
from sbox.engine.errors import EngineStateError
from sbox.infrastructure.settings import EngineSettings, StaticSettingsProvider
from sbox.observability.sinks import TelemetrySink
from sbox.observability.telemetry import get_counter
from sbox.surface.base import MutationBatch
from sbox.surface.soup import SoupSurface
from sbox.engine.processor import enumerate_items
from sbox.gmail.selectors import GMAIL_PROFILE
from tests.conftest import DETAIL_URL, INBOX_ROWS, INBOX_URL, FakeClassifier, make_row


def labels(surface):
    return surface.select(".sbox-label")


def categories(surface):
    return sorted(label.get_attribute("data-sbox-category") for label in labels(surface))


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_annotates_visible_rows(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        assert engine.running
        assert categories(surface) == [
            "business",
            "financeBills",
            "promotions",
            "travelBookings",
        ]
        # Personal (0.5) is below the 0.7 threshold: attempted, not annotated
        personal = engine.registry.get("thread-personal")
        assert personal is not None and not personal.annotated
        assert len(engine.registry) == 5
        assert len(surface.select(".sbox-processed")) == 5

        await engine.stop()

    @pytest.mark.asyncio
    async def test_travel_scenario(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        record = engine.registry.get("sbox-482931")
        assert record.annotated
        assert record.category is Category.TRAVEL_BOOKINGS
        assert record.source == "fallback"

        row = surface.select('[data-thread-id="sbox-482931"]')[0]
        label = row.select_one(".sbox-label")
        assert label.get_attribute("data-sbox-category") == "travelBookings"
        assert label.get_attribute("data-sbox-confidence") == "0.80"

        await engine.stop()

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, make_engine):
        engine = make_engine()
        await engine.start()

        with pytest.raises(EngineStateError):
            await engine.start()

        await engine.stop()

    @pytest.mark.asyncio
    async def test_stop_leaves_no_trace(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        await engine.stop()

        assert not engine.running
        assert labels(surface) == []
        assert surface.select(".sbox-processed") == []
        assert len(engine.registry) == 0

    @pytest.mark.asyncio
    async def test_stop_silences_watcher(self, surface, make_engine):
        engine = make_engine()
        await engine.start()
        await engine.stop()

        surface.host_insert_html(make_row("Late arrival", "project update", "a@b.com"), "#rows")
        await asyncio.sleep(0.1)

        assert labels(surface) == []

    @pytest.mark.asyncio
    async def test_start_waits_for_surface_but_not_forever(self, make_engine):
        bare = SoupSurface("<html><body><p>Loading...</p></body></html>", location=INBOX_URL)
        engine = make_engine(surface=bare)

        await engine.start()

        assert engine.running
        await engine.stop()

    @pytest.mark.asyncio
    async def test_refresh_relabels_from_scratch(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        engine.refresh()
        assert labels(surface) == []
        assert len(engine.registry) == 0

        await asyncio.sleep(0.1)
        assert len(labels(surface)) == 4
        assert len(engine.registry) == 5

        await engine.stop()


class TestDecisionTable:
    @pytest.mark.asyncio
    async def test_second_pass_classifies_nothing(self, make_engine):
        classifier = FakeClassifier()
        engine = make_engine(classifier)
        await engine.start()
        calls = len(classifier.calls)

        stats = await engine.run_pass("again")

        assert len(classifier.calls) == calls
        assert stats.visited == 5
        assert stats.skipped == 5

        await engine.stop()

    @pytest.mark.asyncio
    async def test_labelled_unmarked_row_is_only_marked(self, surface, make_engine):
        classifier = FakeClassifier()
        engine = make_engine(classifier)
        await engine.start()
        calls = len(classifier.calls)
        row = surface.select("tr.zA")[0]
        row.remove_class("sbox-processed")

        stats = await engine.run_pass("manual")

        assert stats.marked == 1
        assert row.has_class("sbox-processed")
        assert len(classifier.calls) == calls

        await engine.stop()

    @pytest.mark.asyncio
    async def test_marked_row_that_lost_label_is_relabelled(self, surface, make_engine):
        engine = make_engine()
        await engine.start()
        row = surface.select("tr.zA")[0]
        engine.annotator.remove(row)

        stats = await engine.run_pass("manual")

        assert stats.annotated == 1
        assert row.select_one(".sbox-label") is not None

        await engine.stop()

    @pytest.mark.asyncio
    async def test_below_threshold_row_is_not_retried(self, make_engine):
        classifier = FakeClassifier()
        engine = make_engine(classifier)
        await engine.start()
        personal_calls = [r for r in classifier.calls if r.subject.startswith("Dinner")]

        await engine.run_pass("again")

        assert [r for r in classifier.calls if r.subject.startswith("Dinner")] == personal_calls

        await engine.stop()

    @pytest.mark.asyncio
    async def test_empty_row_is_skipped_and_not_registered(self, make_engine):
        rows = [*INBOX_ROWS, '<tr class="zA" data-thread-id="blank"><td></td></tr>']
        surface = SoupSurface(
            f'<div role="main"><table><tbody>{"".join(rows)}</tbody></table></div>',
            location=INBOX_URL,
        )
        engine = make_engine(surface=surface)
        await engine.start()

        assert "blank" not in engine.registry
        blank = surface.select('[data-thread-id="blank"]')[0]
        assert not blank.has_class("sbox-processed")

        await engine.stop()

    @pytest.mark.asyncio
    async def test_model_classification_is_used_when_loaded(self, surface, make_engine):
        answer = Classification(category=Category.JOB_APPLICATION, confidence=0.95)
        engine = make_engine(FakeClassifier({"Dinner on Saturday?": answer}))
        await engine.start()

        record = engine.registry.get("thread-personal")
        assert record.annotated
        assert record.category is Category.JOB_APPLICATION
        assert record.source == "model"

        await engine.stop()


class TestSettings:
    @pytest.mark.asyncio
    async def test_disabled_engine_annotates_nothing(self, surface, make_engine):
        provider = StaticSettingsProvider(EngineSettings(enabled=False))
        engine = make_engine(settings_provider=provider)
        await engine.start()

        assert labels(surface) == []
        assert len(engine.registry) == 0

        provider.update(enabled=True)
        await engine.run_pass("settings_changed")
        assert len(labels(surface)) == 4

        await engine.stop()

    @pytest.mark.asyncio
    async def test_per_category_threshold(self, surface, make_engine):
        thresholds = dict(EngineSettings().per_category_threshold)
        thresholds[Category.TRAVEL_BOOKINGS] = 0.9
        provider = StaticSettingsProvider(EngineSettings(per_category_threshold=thresholds))
        engine = make_engine(settings_provider=provider)
        await engine.start()

        assert "travelBookings" not in categories(surface)
        record = engine.registry.get("sbox-482931")
        assert record is not None and not record.annotated

        await engine.stop()

    @pytest.mark.asyncio
    async def test_show_confidence(self, surface, make_engine):
        provider = StaticSettingsProvider(EngineSettings(show_confidence_on_annotation=True))
        engine = make_engine(settings_provider=provider)
        await engine.start()

        for label in labels(surface):
            assert label.get_attribute("title") == "Confidence: 80%"
            assert label.select_one(".sbox-confidence-high") is not None

        await engine.stop()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_overlapping_passes_are_refused(self, make_engine):
        engine = make_engine(FakeClassifier(delay=0.01))

        first, second = await asyncio.gather(engine.run_pass("a"), engine.run_pass("b"))

        assert (first is None) != (second is None)
        assert get_counter("pass.skipped_busy") == 1

    @pytest.mark.asyncio
    async def test_triggers_during_pass_add_at_most_one_pass(self, surface, make_engine):
        engine = make_engine(FakeClassifier(delay=0.02))
        start = asyncio.create_task(engine.start())
        await asyncio.sleep(0.03)
        assert engine.guard.busy

        batch = MutationBatch(added=tuple(surface.select("tr.zA")))
        for _ in range(10):
            engine.watcher.handle_batch(batch)
            engine.request_pass("burst")

        await start
        await asyncio.sleep(0.2)

        assert get_counter("engine.passes") <= 2
        assert get_counter("pass.skipped_busy") >= 10

        await engine.stop()

    @pytest.mark.asyncio
    async def test_own_marker_writes_do_not_retrigger(self, make_engine):
        engine = make_engine()
        await engine.start()

        await asyncio.sleep(0.15)

        assert get_counter("engine.passes") == 1
        await engine.stop()


class TestViewTransitions:
    @pytest.mark.asyncio
    async def test_detail_to_list_forces_invalidation(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        surface.navigate(DETAIL_URL, notify=False)
        engine.view.check()
        await asyncio.sleep(0.05)

        surface.navigate(INBOX_URL, notify=False)
        engine.view.check()

        assert len(engine.registry) == 0
        assert surface.select(".sbox-processed") == []
        assert get_counter("engine.invalidations") == 1

        # Gmail rebuilds the list without our labels
        surface.host_replace_html("#rows", "".join(INBOX_ROWS))
        await asyncio.sleep(0.15)

        assert len(labels(surface)) == 4
        assert len(engine.registry) == 5

        await engine.stop()

    @pytest.mark.asyncio
    async def test_navigation_event_drives_transition(self, surface, make_engine):
        engine = make_engine()
        surface.navigate(DETAIL_URL, notify=False)
        await engine.start()
        assert len(engine.registry) == 5

        surface.navigate(INBOX_URL)
        await asyncio.sleep(0.05)

        assert get_counter("engine.invalidations") == 1
        await engine.stop()

    @pytest.mark.asyncio
    async def test_other_transition_keeps_state(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        surface.navigate("https://mail.google.com/mail/u/0/#search/rome", notify=False)
        engine.view.check()

        assert len(engine.registry) == 5
        assert get_counter("engine.invalidations") == 0

        await engine.stop()


class TestListContainer:
    @staticmethod
    def _container_surface(rows):
        return SoupSurface(
            '<div role="main"><div class="aDP"><table><tbody id="rows">'
            f'{"".join(rows)}</tbody></table></div></div>',
            location=INBOX_URL,
        )

    def test_rows_inside_container_are_separate_items(self):
        surface = self._container_surface(INBOX_ROWS)

        items = enumerate_items(surface, GMAIL_PROFILE)

        assert len(items) == 5
        assert all(item.tag == "tr" for item in items)

    def test_conversation_container_without_rows_is_one_item(self):
        surface = SoupSurface(
            '<div role="main"><div class="aDP">'
            '<h2><span class="bog">Flight confirmation</span></h2>'
            '<span data-legacy-thread-id="18c2a4f8d">Your booking</span>'
            "</div></div>",
            location=DETAIL_URL,
        )

        items = enumerate_items(surface, GMAIL_PROFILE)

        assert [item.tag for item in items] == ["div"]

    @pytest.mark.asyncio
    async def test_each_row_in_container_gets_its_own_label(self, make_engine):
        surface = self._container_surface([INBOX_ROWS[0], INBOX_ROWS[1], INBOX_ROWS[3]])
        engine = make_engine(surface=surface)

        stats = await engine.run_pass("manual")

        assert stats.annotated == 3
        for row in surface.select("tr.zA"):
            assert len(row.select(".sbox-label")) == 1
        assert categories(surface) == ["financeBills", "promotions", "travelBookings"]
        assert len(engine.registry) == 3


class TestWatcherIntegration:
    @pytest.mark.asyncio
    async def test_new_row_is_annotated(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        surface.host_insert_html(
            make_row("Job interview", "Next steps", "hr@corp.example", row_attrs='data-thread-id="job-1"'),
            "#rows",
        )
        await asyncio.sleep(0.15)

        record = engine.registry.get("job-1")
        assert record is not None and record.category is Category.JOB_APPLICATION
        assert len(labels(surface)) == 5

        await engine.stop()

    @pytest.mark.asyncio
    async def test_repainted_rows_are_relabelled(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        surface.host_replace_html("#rows", "".join(INBOX_ROWS))
        await asyncio.sleep(0.15)

        assert categories(surface) == [
            "business",
            "financeBills",
            "promotions",
            "travelBookings",
        ]

        await engine.stop()


class TestReconciliation:
    @pytest.mark.asyncio
    async def test_dropped_labels_are_restored_in_list_view(self, surface, make_engine):
        engine = make_engine()
        await engine.start()
        before = categories(surface)

        surface.host_remove(".sbox-label")
        restored = await engine.reconciler.tick()

        assert restored == 4
        assert categories(surface) == before
        assert get_counter("reconcile.restored") == 4

        await engine.stop()

    @pytest.mark.asyncio
    async def test_no_repair_in_detail_view(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        surface.host_remove(".sbox-label")
        surface.navigate(DETAIL_URL, notify=False)
        restored = await engine.reconciler.tick()

        assert restored == 0
        assert labels(surface) == []

        await engine.stop()

    @pytest.mark.asyncio
    async def test_no_repair_while_pass_running(self, surface, make_engine):
        engine = make_engine()
        await engine.start()
        surface.host_remove(".sbox-label")

        engine.guard.acquire()
        try:
            assert await engine.reconciler.tick() == 0
        finally:
            engine.guard.release()

        assert labels(surface) == []
        await engine.stop()

    @pytest.mark.asyncio
    async def test_below_threshold_rows_are_not_repaired(self, surface, make_engine):
        classifier = FakeClassifier()
        engine = make_engine(classifier)
        await engine.start()
        calls = len(classifier.calls)

        restored = await engine.reconciler.tick()

        assert restored == 0
        assert len(classifier.calls) == calls

        await engine.stop()

    @pytest.mark.asyncio
    async def test_loop_runs_on_its_interval(self, surface, make_engine, fast_timings):
        from dataclasses import replace

        engine = make_engine(timings=replace(fast_timings, reconcile_interval=0.02))
        await engine.start()

        surface.host_remove(".sbox-label")
        await asyncio.sleep(0.1)

        assert len(labels(surface)) == 4
        await engine.stop()

    @pytest.mark.asyncio
    async def test_labels_surviving_invalidation_are_still_repaired(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        surface.navigate(DETAIL_URL, notify=False)
        engine.view.check()
        surface.navigate(INBOX_URL, notify=False)
        engine.view.check()
        # Labels survived the trip; the re-entry pass adopts them
        await asyncio.sleep(0.1)
        assert len(labels(surface)) == 4
        assert len(engine.registry.annotated_identities()) == 4

        surface.host_remove(".sbox-label")
        restored = await engine.reconciler.tick()

        assert restored == 4
        assert len(labels(surface)) == 4

        await engine.stop()

    @pytest.mark.asyncio
    async def test_adopted_label_keeps_its_category(self, surface, make_engine):
        engine = make_engine()
        await engine.start()

        engine.invalidate()
        await engine.run_pass("list_reentry")

        record = engine.registry.get("sbox-482931")
        assert record.annotated
        assert record.category is Category.TRAVEL_BOOKINGS
        assert record.source == "fallback"

        await engine.stop()


class TestCorrections:
    @pytest.mark.asyncio
    async def test_correction_is_registered(self, surface, make_engine):
        classifier = FakeClassifier()
        engine = make_engine(classifier)
        await engine.start()
        row = surface.select('[data-thread-id="sbox-482931"]')[0]

        await engine.correct(row, Category.PERSONAL)

        record = engine.registry.get("sbox-482931")
        assert record.category is Category.PERSONAL
        assert record.source == "user"
        assert classifier.training[0][1] is Category.PERSONAL
        assert row.select_one(".sbox-label").get_attribute("data-sbox-category") == "personal"

        await engine.stop()

    @pytest.mark.asyncio
    async def test_restored_label_keeps_correction(self, surface, make_engine):
        classifier = FakeClassifier()
        engine = make_engine(classifier)
        await engine.start()
        row = surface.select('[data-thread-id="sbox-482931"]')[0]
        await engine.correct(row, Category.PERSONAL)
        calls = len(classifier.calls)

        surface.host_remove(".sbox-label")
        restored = await engine.reconciler.tick()

        assert restored == 4
        label = row.select_one(".sbox-label")
        assert label.get_attribute("data-sbox-category") == "personal"
        assert label.get_attribute("data-sbox-confidence") == "1.00"
        # Only the three uncorrected rows went back to the classifier
        assert len(classifier.calls) == calls + 3

        await engine.stop()

    @pytest.mark.asyncio
    async def test_correction_without_label_is_ignored(self, surface, make_engine):
        engine = make_engine()
        await engine.start()
        personal = surface.select('[data-thread-id="thread-personal"]')[0]

        assert not await engine.correct(personal, Category.REMINDERS)
        assert engine.registry.get("thread-personal").source == "fallback"

        await engine.stop()



class TestContextLoss:
    @pytest.mark.asyncio
    async def test_dead_surface_abandons_pass_silently(self, surface, make_engine):
        engine = make_engine(FakeClassifier(delay=0.05))
        task = asyncio.create_task(engine.run_pass("manual"))
        await asyncio.sleep(0.01)

        surface.kill()
        result = await task

        assert result is None
        assert labels(surface) == []
        assert get_counter("engine.context_lost") == 1

    @pytest.mark.asyncio
    async def test_stop_mid_pass_leaves_no_labels(self, surface, make_engine):
        engine = make_engine(FakeClassifier(delay=0.05))
        start = asyncio.create_task(engine.start())
        await asyncio.sleep(0.02)

        await engine.stop()
        await start
        await asyncio.sleep(0.1)

        assert labels(surface) == []
        assert len(engine.registry) == 0
        assert not engine.guard.busy


class TestTelemetry:
    @pytest.mark.asyncio
    async def test_category_counts(self, make_engine):
        engine = make_engine()
        await engine.start()
        await asyncio.sleep(0.01)

        assert get_counter("annotation.total") == 4
        assert get_counter("annotation.category.travelBookings") == 1
        assert get_counter("annotation.category.personal") == 0

        await engine.stop()

    @pytest.mark.asyncio
    async def test_failing_sink_is_not_fatal(self, surface, make_engine):
        class BrokenSink(TelemetrySink):
            async def record_category(self, category):
                raise ConnectionError("stats endpoint down")

        engine = make_engine(telemetry=BrokenSink())
        await engine.start()
        await asyncio.sleep(0.01)

        assert len(labels(surface)) == 4
        assert get_counter("telemetry.error") == 4

        await engine.stop()


class TestReclassifyFallback:
    @pytest.mark.asyncio
    async def test_fallback_rows_reclassified_when_model_loads(self, surface, make_engine):
        answer = Classification(category=Category.NEWSLETTERS, confidence=0.9)
        classifier = FakeClassifier({"Flight confirmation": answer}, loaded=False)
        engine = make_engine(classifier, reclassify_fallback=True)
        await engine.start()
        assert engine.registry.get("sbox-482931").source == "fallback"

        classifier.loaded = True
        await engine.run_pass("model_loaded")

        record = engine.registry.get("sbox-482931")
        assert record.source == "model"
        assert record.category is Category.NEWSLETTERS
        assert len(labels(surface)) == 4

        await engine.stop()

    @pytest.mark.asyncio
    async def test_policy_off_keeps_fallback_labels(self, make_engine):
        answer = Classification(category=Category.NEWSLETTERS, confidence=0.9)
        classifier = FakeClassifier({"Flight confirmation": answer}, loaded=False)
        engine = make_engine(classifier, reclassify_fallback=False)
        await engine.start()

        classifier.loaded = True
        await engine.run_pass("model_loaded")

        assert engine.registry.get("sbox-482931").source == "fallback"
        await engine.stop()
