"""Tests for the native tree gateway and mirror root placement."""

from __future__ import annotations

import unittest

from bookmark_sync.adapters.native.gateway import (
    NativeTreeGateway,
    find_writable_folder,
    parse_tree,
)
from bookmark_sync.adapters.native.models import NativeNode
from bookmark_sync.domain.exceptions import UnavailableError
from tests.fakes import FakeBookmarksApi, bookmark, folder, folder_chain


class TestEnsureMirrorRoot(unittest.IsolatedAsyncioTestCase):
    async def test_creates_under_bookmarks_bar(self) -> None:
        api = FakeBookmarksApi()
        gateway = NativeTreeGateway(api)

        root_id = await gateway.ensure_mirror_root("Link-O-Saurus")

        node = api.node(root_id)
        self.assertEqual(node["title"], "Link-O-Saurus")
        self.assertEqual(node["parentId"], "1")

    async def test_reuses_existing_folder_case_insensitively(self) -> None:
        api = FakeBookmarksApi(
            [folder("0", "", [folder("2", "Other bookmarks", [folder("m", " link-o-saurus ")])])]
        )
        gateway = NativeTreeGateway(api)

        self.assertEqual(await gateway.ensure_mirror_root("Link-O-Saurus"), "m")
        self.assertEqual(api.calls, [])

    async def test_skips_unmodifiable_parents(self) -> None:
        api = FakeBookmarksApi(
            [
                folder(
                    "0",
                    "",
                    [
                        folder("1", "Bookmarks bar", unmodifiable="managed"),
                        folder("3", "Bookmarks menu"),
                        folder("2", "Other bookmarks"),
                    ],
                )
            ]
        )
        root_id = await NativeTreeGateway(api).ensure_mirror_root("Mirror")
        self.assertEqual(api.node(root_id)["parentId"], "3")

    async def test_falls_back_to_first_writable_child(self) -> None:
        api = FakeBookmarksApi(
            [folder("0", "", [folder("a", "Locked", unmodifiable="managed"), folder("b", "Stuff")])]
        )
        root_id = await NativeTreeGateway(api).ensure_mirror_root("Mirror")
        self.assertEqual(api.node(root_id)["parentId"], "b")

    async def test_falls_back_to_root(self) -> None:
        api = FakeBookmarksApi([folder("0", "")])
        root_id = await NativeTreeGateway(api).ensure_mirror_root("Mirror")
        self.assertEqual(api.node(root_id)["parentId"], "0")


class TestNativeTreeGateway(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.api = FakeBookmarksApi(
            [
                folder(
                    "0",
                    "",
                    [
                        folder(
                            "w",
                            "Work",
                            [folder("js", "JS", [bookmark("n1", "Doc", "https://example.com/")])],
                        )
                    ],
                )
            ]
        )
        self.gateway = NativeTreeGateway(self.api)

    async def test_unavailable_api(self) -> None:
        gateway = NativeTreeGateway(None)
        self.assertFalse(gateway.available)
        with self.assertRaises(UnavailableError):
            await gateway.get_tree()
        with self.assertRaises(UnavailableError):
            gateway.subscribe("created", lambda native_id, payload: None)

    async def test_get_tree_parses_nodes(self) -> None:
        tree = await self.gateway.get_tree()
        work = tree[0].children[0]
        self.assertIsInstance(work, NativeNode)
        self.assertTrue(work.is_folder)
        self.assertEqual(work.children[0].children[0].url, "https://example.com/")

    async def test_get_missing_returns_none(self) -> None:
        self.assertIsNone(await self.gateway.get("nope"))

    async def test_ancestors_are_root_first(self) -> None:
        node = await self.gateway.get("n1")
        chain = await self.gateway.ancestors(node.parent_id)
        self.assertEqual([n.id for n in chain], ["0", "w", "js"])

    async def test_remove_missing_node_is_noop(self) -> None:
        self.assertFalse(await self.gateway.remove("nope"))
        self.assertEqual(self.api.calls, [])

    async def test_remove_folder_removes_subtree(self) -> None:
        self.assertTrue(await self.gateway.remove("w"))
        self.assertEqual(self.api.calls, [("remove_tree", "w")])
        self.assertIsNone(self.api.node("n1"))

    async def test_remove_bookmark(self) -> None:
        self.assertTrue(await self.gateway.remove("n1"))
        self.assertEqual(self.api.calls, [("remove", "n1")])

    async def test_update_and_move(self) -> None:
        updated = await self.gateway.update("n1", title="Renamed")
        self.assertEqual(updated.title, "Renamed")
        self.assertEqual(updated.url, "https://example.com/")

        moved = await self.gateway.move("n1", "w", index=0)
        self.assertEqual(moved.parent_id, "w")
        self.assertEqual(moved.index, 0)


class TestParseTree(unittest.TestCase):
    def test_parses_trees_deeper_than_the_recursion_limit(self) -> None:
        leaf = bookmark("leaf", "Bottom", "https://deep.example.com/")
        roots = parse_tree([folder("0", "", [folder_chain(1500, leaf)])])

        depth = 0
        node = roots[0]
        while node.children:
            node = node.children[0]
            depth += 1
        self.assertEqual(depth, 1501)
        self.assertEqual(node.id, "leaf")
        self.assertEqual(node.url, "https://deep.example.com/")

    def test_find_writable_folder_reaches_deep_nodes(self) -> None:
        leaf = folder("target", "Link-O-Saurus")
        roots = parse_tree([folder("0", "", [folder_chain(1500, leaf)])])

        match = find_writable_folder(roots, "link-o-saurus")
        self.assertIsNotNone(match)
        self.assertEqual(match.id, "target")

    def test_leaf_folder_keeps_empty_children(self) -> None:
        roots = parse_tree([folder("0", "", [bookmark("b", "Doc", "https://example.com/")])])
        self.assertIsNone(roots[0].children[0].children)
        self.assertEqual(parse_tree([folder("1", "Empty")])[0].children, [])


if __name__ == "__main__":
    unittest.main()
