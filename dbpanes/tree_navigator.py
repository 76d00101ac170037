from dataclasses import dataclass, replace

from loguru import logger

from dbpanes.loader import CatalogLoader
from dbpanes.messages import Action, CloseTreeView, LoadTableDataRequest, OpenQueryEditor
from dbpanes.tree_model import ROOT_LEVEL, CatalogTree, NodeKind, TreeNode, table_target


_REFRESHABLE_KINDS = (NodeKind.DATABASE, NodeKind.SCHEMA, NodeKind.TABLE)


@dataclass
class TreeViewport:
    offset: int = 0
    height: int = 20


class TreeNavigator:
    def __init__(self, tree: CatalogTree, loader: CatalogLoader | None = None) -> None:
        self.tree = tree
        self.loader = loader
        self.viewport = TreeViewport()
        self.search_mode = False
        self.search_query = ""
        if tree.selected is None and tree.server_node is not None:
            tree.server_node.expand()
            self.select_node(tree.server_node)

    @property
    def selected(self) -> TreeNode | None:
        return self.tree.selected

    def position(self) -> int:
        if self.selected is None:
            return 0
        return self.tree.index_of(self.selected) or 0

    def set_viewport_height(self, height: int) -> None:
        self.viewport.height = max(height, 1)
        self._ensure_visible(self.position())

    def visible_window(self) -> list[TreeNode]:
        nodes = self.tree.all_visible_nodes()
        return nodes[self.viewport.offset : self.viewport.offset + self.viewport.height]

    async def handle_key(self, key: str, character: str | None = None) -> Action | None:
        if self.search_mode:
            return self._handle_search_key(key, character)
        if key == "up":
            self._move(-1)
        elif key == "down":
            self._move(1)
        elif key == "pageup":
            self._move(-self.viewport.height)
        elif key == "pagedown":
            self._move(self.viewport.height)
        elif key == "home":
            if self.tree.server_node is not None:
                self.select_node(self.tree.server_node)
        elif key == "end":
            visible = self.tree.all_visible_nodes()
            if visible:
                self.select_node(visible[-1])
        elif key == "left":
            self._collapse_or_parent()
        elif key == "backspace":
            self._select_parent()
        elif key == "right":
            await self._expand(select_first_child=False)
        elif key == "enter":
            await self._expand(select_first_child=True)
        elif key == "ctrl+d":
            return self._table_request()
        elif key == "f5":
            await self.refresh_selected()
        elif key == "/" or character == "/":
            self.search_mode = True
            self.search_query = ""
        elif key == "ctrl+e":
            return OpenQueryEditor()
        elif key == "escape":
            return CloseTreeView()
        return None

    def select_node(self, node: TreeNode) -> None:
        self.tree.set_selected(node)
        index = self.tree.index_of(node)
        if index is not None:
            self._ensure_visible(index)

    def _ensure_visible(self, index: int) -> None:
        if index < self.viewport.offset:
            self.viewport.offset = index
        elif index >= self.viewport.offset + self.viewport.height:
            self.viewport.offset = index - self.viewport.height + 1
        self.viewport.offset = max(self.viewport.offset, 0)

    def _move(self, delta: int) -> None:
        visible = self.tree.all_visible_nodes()
        if not visible:
            return
        index = min(max(self.position() + delta, 0), len(visible) - 1)
        self.select_node(visible[index])

    def _collapse_or_parent(self) -> None:
        node = self.selected
        if node is None:
            return
        if node.has_children and node.expanded:
            node.collapse()
            self._ensure_visible(self.position())
        else:
            self._select_parent()

    def _select_parent(self) -> None:
        node = self.selected
        if node is not None and node.parent is not None and node.parent.level != ROOT_LEVEL:
            self.select_node(node.parent)

    async def _expand(self, select_first_child: bool) -> None:
        node = self.selected
        if node is None:
            return
        if not node.has_children and self.loader is not None:
            await self.loader.load_children(node)
        if not node.has_children:
            return
        node.expand()
        if select_first_child:
            self.select_node(node.children[0])

    async def refresh_selected(self) -> None:
        node = self.selected
        if node is None or node.kind not in _REFRESHABLE_KINDS or self.loader is None:
            return
        was_expanded = node.expanded
        # A failed reload leaves the current children in place.
        scratch = replace(node, children=[], expanded=False, selected=False)
        await self.loader.load_children(scratch)
        node.replace_children(scratch.children)
        if was_expanded:
            node.expand()
        logger.info("Refreshed {} ({} children)", node.path or node.name, len(node.children))

    def _table_request(self) -> LoadTableDataRequest | None:
        node = self.selected
        if node is None or node.kind not in (NodeKind.TABLE, NodeKind.COLUMN):
            return None
        target = table_target(node)
        if target is None:
            return None
        database, schema, table = target
        return LoadTableDataRequest(database=database, schema=schema, table=table)

    def _handle_search_key(self, key: str, character: str | None) -> Action | None:
        if key == "escape":
            self.search_mode = False
            self.search_query = ""
            return None
        if key == "backspace":
            self.search_query = self.search_query[:-1]
        elif key == "enter":
            pass
        elif character is not None and character.isprintable():
            self.search_query += character
        else:
            return None
        match = self.find_match(self.search_query)
        if match is not None:
            self.select_node(match)
        return None

    def find_match(self, query: str) -> TreeNode | None:
        if not query:
            return None
        wanted = query.lower()
        for node in self.tree.all_visible_nodes():
            if node.name.lower() == wanted or node.path.lower() == wanted:
                return node
        return None
