"""Inbound sync: edits made in the native tree reach the local catalog.

Each test starts from an imported tree with bidirectional sync on, then
plays the user by calling the fake host api directly.
"""

from __future__ import annotations

import unittest

from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.domain.models.catalog import Bookmark
from bookmark_sync.domain.models.mapping import NodeType
from tests.fakes import FakeBookmarksApi, StoreFixture, bookmark, build_engine, folder


def sync_tree() -> list[dict]:
    return [
        folder(
            "0",
            "",
            [
                folder("1", "Bookmarks bar"),
                folder(
                    "w",
                    "Work",
                    [
                        folder(
                            "js",
                            "JS",
                            [
                                bookmark("n1", "JS Handbook", "https://example.com/js"),
                                bookmark("n2", "TS", "https://example.com/ts"),
                            ],
                        ),
                        folder(
                            "docs",
                            "Docs",
                            [bookmark("n4", "JS copy", "https://example.com/js?utm_source=z")],
                        ),
                        bookmark("n3", "Direct", "https://work.example.com/"),
                    ],
                ),
            ],
        )
    ]


class InboundTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = StoreFixture()
        self.catalog = self.store.catalog
        self.mappings = self.store.mappings
        self.api = FakeBookmarksApi(sync_tree())
        self.engine = build_engine(self.store, self.api)
        await self.engine.save_sync_settings(enable_bidirectional=True)
        await self.engine.initial_import()
        await self.engine.initialize_bookmark_sync()
        self.api.calls.clear()

    async def asyncTearDown(self) -> None:
        await self.engine.shutdown()
        self.store.close()

    async def _bookmark_for(self, native_id: str) -> Bookmark | None:
        mapping = await self.mappings.async_get_by_native_id(native_id)
        if mapping is None or mapping.local_id is None:
            return None
        return await self.catalog.async_get_bookmark(mapping.local_id)

    async def _category_of_folder(self, native_id: str) -> str | None:
        mapping = await self.mappings.async_get_by_native_id(native_id)
        return mapping.category_id if mapping else None


class TestInboundCreated(InboundTestCase):
    async def test_new_native_bookmark_creates_local_bookmark(self) -> None:
        node = await self.api.create(
            {"parentId": "js", "title": "New", "url": "https://new.example/page?utm_source=x"}
        )
        await self.engine.wait_idle()

        created = await self._bookmark_for(node["id"])
        self.assertIsNotNone(created)
        self.assertEqual(created.url, "https://new.example/page")
        self.assertEqual(created.title, "New")
        self.assertEqual(created.category_id, await self._category_of_folder("js"))
        # Nothing was written back to the native tree.
        self.assertEqual(self.api.calls, [("create", node["id"])])

    async def test_untitled_bookmark_uses_url_as_title(self) -> None:
        node = await self.api.create({"parentId": "js", "title": "  ", "url": "https://t.example/"})
        await self.engine.wait_idle()

        created = await self._bookmark_for(node["id"])
        self.assertEqual(created.title, "https://t.example/")

    async def test_duplicate_url_links_existing_bookmark(self) -> None:
        before = await self.catalog.async_list_bookmarks()
        node = await self.api.create(
            {"parentId": "docs", "title": "Again", "url": "https://EXAMPLE.com/js#top"}
        )
        await self.engine.wait_idle()

        mapping = await self.mappings.async_get_by_native_id(node["id"])
        original = await self.mappings.async_get_by_native_id("n1")
        self.assertEqual(mapping.local_id, original.local_id)
        self.assertEqual(len(await self.catalog.async_list_bookmarks()), len(before))

    async def test_new_folder_becomes_category(self) -> None:
        node = await self.api.create({"parentId": "w", "title": "Rust"})
        await self.engine.wait_idle()

        mapping = await self.mappings.async_get_by_native_id(node["id"])
        self.assertIs(mapping.node_type, NodeType.FOLDER)
        category = await self.catalog.async_get_category(mapping.category_id)
        board = await self.catalog.async_get_board(category.board_id)
        self.assertEqual((board.title, category.title), ("Work", "Rust"))

    async def test_disabled_sync_ignores_events(self) -> None:
        await self.engine.save_sync_settings(enable_bidirectional=False)
        count = len(await self.catalog.async_list_bookmarks())

        node = await self.api.create({"parentId": "js", "title": "X", "url": "https://x.example/"})
        await self.engine.wait_idle()

        self.assertIsNone(await self.mappings.async_get_by_native_id(node["id"]))
        self.assertEqual(len(await self.catalog.async_list_bookmarks()), count)



class TestInboundEchoSuppression(InboundTestCase):
    async def _create_silently(self, details: dict) -> dict:
        self.api.fire_events = False
        try:
            return await self.api.create(details)
        finally:
            self.api.fire_events = True

    async def test_created_event_for_guarded_id_writes_nothing(self) -> None:
        node = await self._create_silently(
            {"parentId": "js", "title": "Echo", "url": "https://echo.example/"}
        )
        bookmarks_before = await self.catalog.async_list_bookmarks()

        self.engine.state.pending_native_ops.mark(node["id"])
        try:
            self.api.emit("created", node["id"], node)
            await self.engine.wait_idle()
        finally:
            self.engine.state.pending_native_ops.release(node["id"])

        self.assertIsNone(await self.mappings.async_get_by_native_id(node["id"]))
        self.assertEqual(await self.catalog.async_list_bookmarks(), bookmarks_before)

    async def test_guard_set_after_queueing_still_drops_the_task(self) -> None:
        node = await self._create_silently(
            {"parentId": "js", "title": "Late", "url": "https://late.example/"}
        )

        self.api.emit("created", node["id"], node)
        self.engine.state.pending_native_ops.mark(node["id"])
        try:
            await self.engine.wait_idle()
        finally:
            self.engine.state.pending_native_ops.release(node["id"])

        self.assertIsNone(await self.mappings.async_get_by_native_id(node["id"]))
        urls = {b.url for b in await self.catalog.async_list_bookmarks()}
        self.assertNotIn("https://late.example/", urls)

    async def test_changed_event_for_guarded_id_leaves_local_bookmark(self) -> None:
        before = await self._bookmark_for("n1")

        self.engine.state.pending_native_ops.mark("n1")
        try:
            self.api.emit("changed", "n1", {"title": "Echoed title", "url": before.url})
            await self.engine.wait_idle()
        finally:
            self.engine.state.pending_native_ops.release("n1")

        self.assertEqual(await self._bookmark_for("n1"), before)

    async def test_same_event_without_guard_is_applied(self) -> None:
        node = await self._create_silently(
            {"parentId": "js", "title": "Real", "url": "https://real.example/"}
        )

        self.api.emit("created", node["id"], node)
        await self.engine.wait_idle()

        created = await self._bookmark_for(node["id"])
        self.assertIsNotNone(created)
        self.assertEqual(created.title, "Real")

class TestInboundChanged(InboundTestCase):
    async def test_newer_native_edit_wins(self) -> None:
        modified = now_ms() + 60_000
        self.api.set_modified("n1", modified)
        await self.api.update("n1", {"title": "Renamed"})
        await self.engine.wait_idle()

        updated = await self._bookmark_for("n1")
        self.assertEqual(updated.title, "Renamed")
        self.assertEqual(updated.updated_at, modified)
        self.assertEqual(self.api.calls, [("update", "n1")])

    async def test_url_change_is_canonicalized(self) -> None:
        self.api.set_modified("n2", now_ms() + 60_000)
        await self.api.update("n2", {"url": "https://example.com/ts-v2/?utm_source=a"})
        await self.engine.wait_idle()

        self.assertEqual((await self._bookmark_for("n2")).url, "https://example.com/ts-v2")

    async def test_older_native_edit_loses(self) -> None:
        self.api.set_modified("n1", 1)
        await self.api.update("n1", {"title": "Stale"})
        await self.engine.wait_idle()

        self.assertEqual((await self._bookmark_for("n1")).title, "JS Handbook")

    async def test_unmapped_node_is_ignored(self) -> None:
        self.api.fire_events = False
        node = await self.api.create(
            {"parentId": "js", "title": "Quiet", "url": "https://q.example/"}
        )
        self.api.fire_events = True

        await self.api.update(node["id"], {"title": "Loud"})
        await self.engine.wait_idle()

        self.assertIsNone(await self.mappings.async_get_by_native_id(node["id"]))


class TestInboundRemoved(InboundTestCase):
    async def test_removing_bookmark_deletes_local_bookmark(self) -> None:
        local_id = (await self.mappings.async_get_by_native_id("n2")).local_id

        await self.api.remove("n2")
        await self.engine.wait_idle()

        self.assertIsNone(await self.catalog.async_get_bookmark(local_id))
        self.assertIsNone(await self.mappings.async_get_by_native_id("n2"))
        self.assertEqual(self.api.calls, [("remove", "n2")])

    async def test_bookmark_survives_while_another_node_maps_to_it(self) -> None:
        local_id = (await self.mappings.async_get_by_native_id("n1")).local_id

        await self.api.remove("n4")
        await self.engine.wait_idle()
        self.assertIsNotNone(await self.catalog.async_get_bookmark(local_id))
        self.assertIsNotNone(await self.mappings.async_get_by_native_id("n1"))

        await self.api.remove("n1")
        await self.engine.wait_idle()
        self.assertIsNone(await self.catalog.async_get_bookmark(local_id))

    async def test_removing_folder_removes_its_subtree(self) -> None:
        await self.api.remove_tree("w")
        await self.engine.wait_idle()

        boards = {board.title for board in await self.catalog.async_list_boards()}
        self.assertNotIn("Work", boards)
        categories = {category.title for category in await self.catalog.async_list_categories()}
        self.assertFalse({"JS", "Docs"} & categories)
        self.assertEqual(await self.catalog.async_list_bookmarks(), [])
        for native_id in ("w", "js", "docs", "n1", "n2", "n3", "n4"):
            self.assertIsNone(await self.mappings.async_get_by_native_id(native_id))


class TestInboundMoved(InboundTestCase):
    async def test_moving_bookmark_changes_category(self) -> None:
        await self.api.move("n2", {"parentId": "docs"})
        await self.engine.wait_idle()

        docs_category = await self._category_of_folder("docs")
        self.assertEqual((await self._bookmark_for("n2")).category_id, docs_category)
        self.assertEqual(
            (await self.mappings.async_get_by_native_id("n2")).category_id, docs_category
        )
        self.assertEqual(self.api.calls, [("move", "n2")])

    async def test_moving_folder_updates_its_mapping(self) -> None:
        await self.api.move("docs", {"parentId": "0"})
        await self.engine.wait_idle()

        mapping = await self.mappings.async_get_by_native_id("docs")
        board = await self.catalog.async_get_board(mapping.board_id)
        self.assertEqual(board.title, "Docs")
        self.assertIsNone(mapping.category_id)


if __name__ == "__main__":
    unittest.main()
