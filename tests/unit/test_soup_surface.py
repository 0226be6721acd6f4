"""
Tests for the BeautifulSoup render surface
"""

from __future__ import annotations

import asyncio

import pytest

from sbox.surface.base import MutationBatch
from sbox.surface.soup import SoupSurface
from tests.conftest import inbox_html, make_row


@pytest.fixture
def doc():
    return SoupSurface(inbox_html())


class TestNodes:
    def test_select_and_attributes(self, doc):
        rows = doc.select("tr.zA")

        assert len(rows) == 5
        assert rows[0].get_attribute("data-thread-id") == "sbox-482931"
        assert rows[0].get_attribute("class") == "zA"
        assert rows[0].select_one(".y6 span[title]").get_attribute("title") == "Flight confirmation"

    def test_text_skips_hidden_and_selected_subtrees(self):
        doc = SoupSurface(
            "<div id='x'>Hello <b>world</b><script>var a;</script>"
            "<span class='skip'>ignored</span></div>"
        )
        node = doc.select("#x")[0]

        assert node.text() == "Hello\nworld\nignored"
        assert node.text(skip=".skip") == "Hello\nworld"

    def test_class_toggling(self, doc):
        row = doc.select("tr.zA")[0]

        row.add_class("sbox-processed")
        row.add_class("sbox-processed")
        assert row.classes() == ["zA", "sbox-processed"]

        row.remove_class("sbox-processed")
        assert row.classes() == ["zA"]

    def test_hidden(self):
        doc = SoupSurface(
            "<p id='a' hidden></p><p id='b' style='display: none'></p><p id='c'></p>"
        )

        assert doc.select("#a")[0].is_hidden()
        assert doc.select("#b")[0].is_hidden()
        assert not doc.select("#c")[0].is_hidden()

    def test_contains_and_equality(self, doc):
        row = doc.select("tr.zA")[0]
        subject = row.select_one(".bog")

        assert row.contains(subject)
        assert not subject.contains(row)
        assert doc.select("tr.zA")[0] == row
        assert subject.parent.parent.parent == row

    def test_create_and_append(self, doc):
        row = doc.select("tr.zA")[0]
        label = doc.create_element("span", classes=("sbox-label",), attributes={"title": "t"}, text="Hi")

        row.append(label)

        assert row.select_one(".sbox-label").text() == "Hi"
        assert 'title="t"' in doc.html()


class TestMutations:
    def test_without_loop_records_flush_immediately(self, doc):
        batches: list[MutationBatch] = []
        doc.subscribe(batches.append)

        doc.select("tr.zA")[0].add_class("x")

        assert len(batches) == 1
        change = batches[0].attribute_changes[0]
        assert change.name == "class"
        assert change.old_value == "zA"

    @pytest.mark.asyncio
    async def test_records_coalesce_per_loop_iteration(self, doc):
        batches: list[MutationBatch] = []
        doc.subscribe(batches.append)

        doc.host_insert_html(make_row("One", "first", "a@b.com"), "#rows")
        doc.host_remove('[data-thread-id="thread-promo"]')
        await asyncio.sleep(0)

        assert len(batches) == 1
        assert len(batches[0].added) == 1
        assert len(batches[0].removed) == 1

    @pytest.mark.asyncio
    async def test_replace_reports_removed_and_added(self, doc):
        batches: list[MutationBatch] = []
        doc.subscribe(batches.append)

        doc.host_replace_html("#rows", make_row("Only", "row", "a@b.com"))
        await asyncio.sleep(0)

        assert len(batches[0].removed) == 5
        assert len(batches[0].added) == 1
        assert len(doc.select("tr.zA")) == 1

    def test_unsubscribe(self, doc):
        batches: list[MutationBatch] = []
        subscription = doc.subscribe(batches.append)
        subscription.cancel()

        doc.select("tr.zA")[0].add_class("x")

        assert batches == []

    def test_failing_listener_does_not_block_others(self, doc):
        batches: list[MutationBatch] = []

        def broken(batch):
            raise RuntimeError("boom")

        doc.subscribe(broken)
        doc.subscribe(batches.append)

        doc.select("tr.zA")[0].add_class("x")

        assert len(batches) == 1

    def test_insert_into_missing_parent(self, doc):
        with pytest.raises(LookupError):
            doc.host_insert_html("<p></p>", "#nowhere")


class TestNavigation:
    def test_navigate_notifies(self, doc):
        calls: list[str] = []
        doc.add_navigation_listener(lambda: calls.append(doc.location))

        doc.navigate("https://mail.google.com/mail/u/0/#sent")
        doc.navigate("https://mail.google.com/mail/u/0/#inbox", notify=False)

        assert calls == ["https://mail.google.com/mail/u/0/#sent"]
        assert doc.location.endswith("#inbox")

    def test_kill(self, doc):
        assert doc.is_alive
        doc.kill()
        assert not doc.is_alive
