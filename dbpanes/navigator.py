from loguru import logger

from dbpanes.data_grid import DataGrid
from dbpanes.loader import CatalogLoader
from dbpanes.messages import (
    Action,
    EditStarted,
    LoadTableDataRequest,
    OpenQueryEditor,
    QuitApp,
)
from dbpanes.pane_model import PaneSet, PaneType
from dbpanes.tree_model import NodeKind, TreeNode, table_target


class PaneNavigator:
    def __init__(self, panes: PaneSet, grid: DataGrid, loader: CatalogLoader | None = None) -> None:
        self.panes = panes
        self.grid = grid
        self.loader = loader

    async def handle_key(self, key: str) -> Action | None:
        if key == "ctrl+e":
            return OpenQueryEditor()
        if key == "ctrl+x":
            return QuitApp()
        if key == "tab":
            self.panes.cycle_focus()
            return None
        if self.panes.focus == PaneType.DATA:
            return self._handle_data_key(key)
        return await self._handle_pane_key(key)

    async def _handle_pane_key(self, key: str) -> Action | None:
        pane = self.panes.focused
        if key == "up":
            pane.move_selection(-1)
        elif key == "down":
            pane.move_selection(1)
        elif key == "pageup":
            pane.move_selection(-pane.viewport_height)
        elif key == "pagedown":
            pane.move_selection(pane.viewport_height)
        elif key == "home":
            pane.select_first()
        elif key == "end":
            pane.select_last()
        elif key in ("right", "enter"):
            return await self.drill_right()
        elif key == "left":
            self.panes.focus_left()
        elif key == "escape":
            if not self.panes.focus_left():
                return QuitApp()
        return None

    async def drill_right(self) -> Action | None:
        focus = self.panes.focus
        node = self.panes.selected_node()
        if node is None:
            return None
        if focus == PaneType.TABLES and node.kind == NodeKind.TABLE:
            return self.table_request(node)
        if not node.has_children and self.loader is not None:
            await self.loader.load_children(node)
        next_pane = PaneType(focus + 1)
        if node.has_children and next_pane < PaneType.DATA:
            self.panes.seed(next_pane, node.children, node)
            self.panes.set_focus(next_pane)
        return None

    def table_request(self, node: TreeNode) -> LoadTableDataRequest | None:
        target = table_target(node)
        if target is None:
            logger.debug("No table target for {}", node.path)
            return None
        database, schema, table = target
        return LoadTableDataRequest(database=database, schema=schema, table=table)

    def _handle_data_key(self, key: str) -> Action | None:
        grid = self.grid
        if key == "up":
            grid.move_selection(-1, 0)
        elif key == "down":
            grid.move_selection(1, 0)
        elif key == "left":
            grid.move_selection(0, -1)
        elif key == "right":
            grid.move_selection(0, 1)
        elif key == "pageup":
            grid.move_selection(-grid.viewport_rows, 0)
        elif key == "pagedown":
            grid.move_selection(grid.viewport_rows, 0)
        elif key == "home":
            grid.first_column()
        elif key == "end":
            grid.last_column()
        elif key == "enter":
            session = grid.begin_update_cell()
            if session is not None:
                return EditStarted(session)
        elif key == "ctrl+n":
            session = grid.begin_insert_row()
            if session is not None:
                return EditStarted(session)
        elif key == "ctrl+d":
            return grid.request_delete()
        elif key in ("n", "p"):
            return self._page_request(1 if key == "n" else -1)
        elif key == "escape":
            self.panes.set_focus(PaneType.TABLES)
        return None

    def _page_request(self, direction: int) -> LoadTableDataRequest | None:
        offset = self.grid.page_request_offset(direction)
        context = self.grid.context
        if offset is None or context is None:
            return None
        return LoadTableDataRequest(
            database=context.database,
            schema=context.schema,
            table=context.table,
            limit=context.limit,
            offset=offset,
        )
