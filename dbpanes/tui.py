from contextlib import asynccontextmanager
from typing import AsyncIterator

from loguru import logger
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import Key, Resize
from textual.screen import ModalScreen
from textual.widgets import Header, Input, ListItem, ListView, Static

from dbpanes.config import (
    AppConfig,
    ConnectionConfig,
    add_connection,
    find_connection,
    load_last_query,
    save_config,
    save_last_query,
)
from dbpanes.data_grid import DataContext, DataGrid, EditMode, EditSession
from dbpanes.loader import CatalogLoader, DbPanesError, open_loader
from dbpanes.messages import (
    Action,
    CellUpdated,
    CloseTreeView,
    DeleteRowRequest,
    EditStarted,
    ExecuteQueryRequest,
    InsertRowRequest,
    LoadFailed,
    LoadTableDataRequest,
    MutationRequest,
    OpenQueryEditor,
    QueryExecuted,
    QuitApp,
    RequestTracker,
    RowDeleted,
    RowInserted,
    TableDataLoaded,
    TreeLoaded,
    UpdateCellRequest,
    reload_request,
)
from dbpanes.navigator import PaneNavigator
from dbpanes.pane_model import PaneSet, PaneType
from dbpanes.render import grid_position_text, render_grid, render_pane, render_tree
from dbpanes.tree_model import CatalogTree
from dbpanes.tree_navigator import TreeNavigator
from dbpanes.ui_screens import AddConnectionDialog, ErrorDialog, KeyBindingBar


NAVIGATION_KEYS = [
    "up",
    "down",
    "left",
    "right",
    "enter",
    "tab",
    "escape",
    "pageup",
    "pagedown",
    "home",
    "end",
    "backspace",
    "ctrl+e",
    "ctrl+x",
    "ctrl+t",
    "ctrl+n",
    "ctrl+d",
    "f5",
    "/",
    "n",
    "p",
]

_PANE_WIDGET_IDS = {
    PaneType.DATABASES: "pane-databases",
    PaneType.SCHEMAS: "pane-schemas",
    PaneType.TABLES: "pane-tables",
    PaneType.DATA: "pane-data",
}


class ConnectionListItem(ListItem):
    def __init__(self, connection: ConnectionConfig) -> None:
        super().__init__(Static(connection.describe(), markup=False))
        self.connection_name = connection.name


class DatabasePanesApp(App):
    TITLE = "dbpanes"

    DEFAULT_CSS = """
    #top-bar {
        height: 1;
    }

    #selected-status {
        width: 1fr;
    }

    #loading-indicator {
        width: 1fr;
        content-align: right middle;
        color: rgb(255, 170, 60);
    }

    #keybinds-bar {
        height: auto;
        min-height: 1;
        text-wrap: wrap;
    }

    #view-bar {
        height: 1;
        background: rgb(18, 60, 90);
        color: rgb(235, 245, 255);
        padding: 0 1;
        content-align: center middle;
    }

    #view-bar-left {
        width: 1fr;
        content-align: left middle;
    }

    #view-bar-text {
        width: auto;
        content-align: center middle;
    }

    #message-line {
        height: auto;
        background: rgb(28, 32, 36);
        color: rgb(200, 210, 220);
        padding: 0 1;
    }

    #command-input {
        height: 1;
        border: none;
        padding: 0 1;
    }

    #input-bar {
        height: 1;
    }

    #input-prefix {
        width: auto;
        padding: 0 1;
        content-align: left middle;
        color: rgb(160, 200, 255);
    }

    #connection-list {
        height: 1fr;
    }

    #browse {
        height: 1fr;
    }

    .pane {
        width: 1fr;
        height: 1fr;
        border: round rgb(70, 80, 95);
        padding: 0 1;
    }

    .pane.focused {
        border: round rgb(160, 200, 255);
    }

    #pane-data {
        width: 3fr;
    }

    #tree-view {
        width: 2fr;
    }

    ErrorDialog {
        align: center middle;
    }

    #error-dialog {
        width: 70%;
        max-width: 90;
        height: auto;
        max-height: 60%;
        padding: 1 2;
        background: rgb(90, 10, 10);
        border: heavy rgb(200, 60, 60);
        color: rgb(255, 230, 230);
        align: center middle;
    }

    #error-title {
        text-style: bold;
    }

    #error-message {
        text-wrap: wrap;
    }

    #add-connection-dialog {
        width: 70%;
        max-width: 90;
        height: auto;
        max-height: 70%;
        padding: 1 2;
        background: rgb(20, 24, 30);
        border: heavy rgb(80, 120, 180);
        color: rgb(230, 240, 255);
        align: center middle;
    }

    AddConnectionDialog {
        align: center middle;
    }

    #add-connection-title {
        text-style: bold;
    }

    #add-connection-error {
        color: rgb(255, 150, 150);
    }
    """

    BINDINGS = [
        ("a", "add_connection", "Add Connection"),
        *[
            Binding(key, f"nav('{key}')", key, show=False, priority=True)
            for key in NAVIGATION_KEYS
        ],
    ]

    def __init__(
        self,
        config: AppConfig,
        initial_connection_name: str | None = None,
    ) -> None:
        super().__init__()
        self._config = config
        self._connections = config.connections
        self._initial_connection_name = initial_connection_name or ""
        self._selected_connection: ConnectionConfig | None = None
        self._loader: CatalogLoader | None = None
        self._tree: CatalogTree | None = None
        self._panes = PaneSet()
        self._grid = DataGrid()
        self._navigator = PaneNavigator(self._panes, self._grid)
        self._tree_navigator: TreeNavigator | None = None
        self._requests = RequestTracker()
        self._current_view = "connection"
        self._browse_layout = "panes"
        self._input_mode = ""
        self._current_message = ""
        self._data_title = "Data"
        self._error_dialog_open = False
        self._pending_connection_dialog = False

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical():
            with Horizontal(id="top-bar"):
                yield Static(self._status_text(), id="selected-status")
            keybinds = KeyBindingBar()
            keybinds.id = "keybinds-bar"
            yield keybinds
            with Horizontal(id="input-bar"):
                yield Static("", id="input-prefix")
                yield Input(placeholder="Query", id="command-input")
            yield Static("", id="message-line", markup=False)
            with Horizontal(id="view-bar"):
                yield Static("", id="view-bar-left")
                yield Static("", id="view-bar-text")
                yield Static("", id="loading-indicator")
            yield ListView(
                *[ConnectionListItem(connection) for connection in self._connections],
                id="connection-list",
            )
            with Horizontal(id="browse"):
                for pane_type, widget_id in _PANE_WIDGET_IDS.items():
                    if pane_type == PaneType.DATA:
                        yield Static("", id="tree-view", classes="pane")
                    yield Static("", id=widget_id, classes="pane")

    async def on_mount(self) -> None:
        self.query_one("#command-input", Input).display = False
        self.query_one("#input-bar", Horizontal).display = False
        self._apply_view()
        self._update_keybinds()
        if self._connections and self._initial_connection_name:
            try:
                connection = find_connection(self._config, self._initial_connection_name)
            except ValueError as error:
                self._show_error_dialog("Failed to select connection", error)
                return
            self._start_connecting(connection)
            return
        if not self._connections:
            self._open_add_connection_dialog()

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool | None:
        if action == "add_connection":
            return self._current_view == "connection" and not self._input_mode
        if action != "nav":
            return True
        if isinstance(self.screen, ModalScreen):
            return False
        key = str(parameters[0]) if parameters else ""
        if self._current_view == "connection":
            return key in ("escape", "ctrl+x")
        if self._current_view == "connecting":
            return key == "ctrl+x"
        if self._input_mode:
            return key == "escape"
        return True

    async def action_nav(self, key: str) -> None:
        if self._current_view != "browse":
            await self._quit()
            return
        if self._input_mode:
            self._close_input_mode(cancel=True)
            return
        if key == "ctrl+t":
            self._toggle_layout()
            return
        await self._handle_browse_key(key, key if len(key) == 1 else None)

    def action_add_connection(self) -> None:
        self._open_add_connection_dialog()

    async def on_key(self, event: Key) -> None:
        if self._current_view != "browse" or self._input_mode:
            return
        if not self._tree_search_active() or event.character is None:
            return
        if not event.character.isprintable():
            return
        event.stop()
        await self._handle_browse_key(event.key, event.character)

    def on_resize(self, event: Resize) -> None:
        self.call_after_refresh(self._sync_viewports)

    async def on_list_view_selected(self, event: ListView.Selected) -> None:
        if event.list_view.id != "connection-list":
            return
        if self._current_view != "connection":
            return
        if not isinstance(event.item, ConnectionListItem):
            return
        try:
            connection = find_connection(self._config, event.item.connection_name)
        except ValueError as error:
            self._show_error_dialog("Failed to select connection", error)
            return
        self._start_connecting(connection)

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "command-input":
            return
        if self._input_mode == "query":
            query = event.value.strip()
            self._close_input_mode()
            if not query:
                return
            save_last_query(query)
            await self._dispatch(ExecuteQueryRequest(query))
            return
        if self._input_mode == "edit":
            try:
                request = self._grid.commit(event.value)
            except ValueError as error:
                self._close_input_mode()
                self._show_error_dialog("Cannot edit row", error)
                return
            if request is None and self._grid.is_editing:
                self._update_message("Enter column=value pairs separated by commas.")
                return
            self._close_input_mode()
            if request is not None:
                await self._dispatch(request)

    def _tree_search_active(self) -> bool:
        return (
            self._browse_layout == "tree"
            and self._tree_navigator is not None
            and self._tree_navigator.search_mode
            and self._panes.focus != PaneType.DATA
        )

    async def _handle_browse_key(self, key: str, character: str | None) -> None:
        tree_navigator = self._tree_navigator
        use_tree = (
            self._browse_layout == "tree"
            and tree_navigator is not None
            and self._panes.focus != PaneType.DATA
        )
        try:
            async with self._loading("Loading..."):
                if use_tree:
                    action = await tree_navigator.handle_key(key, character)
                else:
                    action = await self._navigator.handle_key(key)
        except (DbPanesError, ValueError) as error:
            logger.warning("Key {} failed: {}", key, error)
            self._show_error_dialog("Failed to load", error)
            self._refresh_browse()
            return
        await self._dispatch(action)
        self._refresh_browse()

    async def _dispatch(self, action: Action | None) -> None:
        if action is None:
            return
        if isinstance(action, QuitApp):
            await self._quit()
        elif isinstance(action, OpenQueryEditor):
            self._enter_input_mode("query")
        elif isinstance(action, CloseTreeView):
            self._browse_layout = "panes"
            self._apply_view()
        elif isinstance(action, EditStarted):
            self._enter_input_mode("edit", action.session)
        elif isinstance(action, LoadTableDataRequest):
            self._start_table_load(action)
        elif isinstance(action, ExecuteQueryRequest):
            self._start_query(action)
        elif isinstance(action, (UpdateCellRequest, InsertRowRequest, DeleteRowRequest)):
            self._start_mutation(action)

    def _start_connecting(self, connection: ConnectionConfig) -> None:
        self._selected_connection = connection
        self._current_view = "connecting"
        self._update_message(f"Connecting to {connection.describe()}...")
        self._apply_view()
        sequence = self._requests.issue("tree")
        self.run_worker(self._connect(connection, sequence), group="tree", exit_on_error=False)

    async def _connect(self, connection: ConnectionConfig, sequence: int) -> None:
        async with self._loading("Connecting..."):
            try:
                await self._close_loader()
                self._loader = await open_loader(connection)
                tree = await self._loader.load_tree(connection.name)
            except Exception as error:
                logger.exception("Failed to connect to {}", connection.name)
                self.post_message(
                    LoadFailed("Failed to connect", error, "tree", sequence, disconnect=True)
                )
                return
        self.post_message(TreeLoaded(tree, sequence))

    def _start_table_load(self, request: LoadTableDataRequest) -> None:
        if self._loader is None:
            return
        sequence = self._requests.issue("grid")
        logger.debug("Loading {}.{}.{} (seq {})", request.database, request.schema, request.table, sequence)
        self.run_worker(self._load_table(self._loader, request, sequence), group="grid", exit_on_error=False)

    async def _load_table(
        self,
        loader: CatalogLoader,
        request: LoadTableDataRequest,
        sequence: int,
    ) -> None:
        async with self._loading("Loading rows..."):
            try:
                rows = await loader.get_table_data(
                    request.database,
                    request.schema,
                    request.table,
                    request.limit,
                    request.offset,
                )
            except Exception as error:
                logger.exception("Failed to load {}.{}", request.schema, request.table)
                self.post_message(LoadFailed("Failed to load rows", error, "grid", sequence))
                return
        self.post_message(TableDataLoaded(request, rows, sequence))

    def _start_query(self, request: ExecuteQueryRequest) -> None:
        if self._loader is None:
            return
        sequence = self._requests.issue("grid")
        self.run_worker(self._run_query(self._loader, request, sequence), group="grid", exit_on_error=False)

    async def _run_query(
        self,
        loader: CatalogLoader,
        request: ExecuteQueryRequest,
        sequence: int,
    ) -> None:
        async with self._loading("Running query..."):
            try:
                rows = await loader.execute_query(request.query)
            except Exception as error:
                logger.exception("Query failed")
                self.post_message(LoadFailed("Query failed", error, "grid", sequence))
                return
        self.post_message(QueryExecuted(request.query, rows, sequence))

    def _start_mutation(self, request: MutationRequest) -> None:
        if self._loader is None:
            return
        sequence = self._requests.latest("grid")
        self.run_worker(self._mutate(self._loader, request, sequence), group="mutation", exit_on_error=False)

    async def _mutate(self, loader: CatalogLoader, request: MutationRequest, sequence: int) -> None:
        async with self._loading("Saving..."):
            try:
                if isinstance(request, UpdateCellRequest):
                    await loader.update_cell(
                        request.database,
                        request.schema,
                        request.table,
                        request.column,
                        request.row_identity,
                        request.value,
                    )
                    message = CellUpdated(request, sequence)
                elif isinstance(request, InsertRowRequest):
                    await loader.insert_row(
                        request.database,
                        request.schema,
                        request.table,
                        request.values,
                    )
                    message = RowInserted(request, sequence)
                else:
                    await loader.delete_row(
                        request.database,
                        request.schema,
                        request.table,
                        request.row_identity,
                    )
                    message = RowDeleted(request, sequence)
            except Exception as error:
                logger.exception("Mutation on {}.{} failed", request.schema, request.table)
                self.post_message(LoadFailed("Failed to save changes", error, "mutation", sequence))
                return
        self.post_message(message)

    def on_tree_loaded(self, message: TreeLoaded) -> None:
        if not self._requests.accept("tree", message.sequence):
            return
        self._tree = message.tree
        server = message.tree.server_node
        databases = server.children if server is not None else []
        self._panes.reset(databases, server)
        self._grid.set_results([])
        self._grid.set_context(None)
        self._data_title = "Data"
        self._navigator.loader = self._loader
        self._tree_navigator = TreeNavigator(message.tree, self._loader)
        self._current_view = "browse"
        self._update_message(f"Loaded {len(databases)} databases.")
        self._apply_view()

    def on_table_data_loaded(self, message: TableDataLoaded) -> None:
        if not self._requests.accept("grid", message.sequence):
            return
        request = message.request
        self._grid.set_results(message.rows)
        self._grid.set_context(
            DataContext(
                database=request.database,
                schema=request.schema,
                table=request.table,
                offset=request.offset,
                limit=request.limit,
            )
        )
        self._grid.set_selection(request.row_index, request.col_index)
        self._data_title = f"{request.schema}.{request.table}"
        self._panes.set_focus(PaneType.DATA)
        self._update_message(f"Loaded {len(message.rows)} rows from {request.schema}.{request.table}.")
        self._refresh_browse()

    def on_query_executed(self, message: QueryExecuted) -> None:
        if not self._requests.accept("grid", message.sequence):
            return
        self._grid.set_results(message.rows)
        self._grid.set_context(None)
        self._data_title = "Query Result"
        self._panes.set_focus(PaneType.DATA)
        self._update_message(f"Query returned {len(message.rows)} rows.")
        self._refresh_browse()

    def on_cell_updated(self, message: CellUpdated) -> None:
        self._reload_after_mutation(message.request, message.sequence, "Cell updated.")

    def on_row_inserted(self, message: RowInserted) -> None:
        self._reload_after_mutation(message.request, message.sequence, "Row inserted.")

    def on_row_deleted(self, message: RowDeleted) -> None:
        self._reload_after_mutation(message.request, message.sequence, "Row deleted.")

    def _reload_after_mutation(self, request: MutationRequest, sequence: int, text: str) -> None:
        self._update_message(text)
        if not self._requests.accept("grid", sequence):
            return
        self._start_table_load(reload_request(request))

    async def on_load_failed(self, message: LoadFailed) -> None:
        if message.channel != "mutation" and not self._requests.accept(
            message.channel, message.sequence
        ):
            return
        if message.disconnect:
            await self._close_loader()
            self._current_view = "connection"
            self._update_message("")
            self._apply_view()
        self._show_error_dialog(message.title, message.error)

    def _toggle_layout(self) -> None:
        self._browse_layout = "tree" if self._browse_layout == "panes" else "panes"
        if self._browse_layout == "tree" and self._panes.focus == PaneType.DATA:
            self._panes.set_focus(PaneType.TABLES)
        self._apply_view()

    def _apply_view(self) -> None:
        connection_list = self.query_one("#connection-list", ListView)
        browse = self.query_one("#browse", Horizontal)
        connection_list.display = self._current_view == "connection"
        browse.display = self._current_view == "browse"
        tree_layout = self._browse_layout == "tree"
        for pane_type, widget_id in _PANE_WIDGET_IDS.items():
            if pane_type != PaneType.DATA:
                self.query_one(f"#{widget_id}", Static).display = not tree_layout
        self.query_one("#tree-view", Static).display = tree_layout
        if self._current_view == "connection":
            connection_list.focus()
        self._update_status()
        self._update_keybinds()
        self._refresh_browse()
        self.call_after_refresh(self._sync_viewports)

    def _sync_viewports(self) -> None:
        if self._current_view != "browse":
            return
        for pane_type, widget_id in _PANE_WIDGET_IDS.items():
            region = self.query_one(f"#{widget_id}", Static).scrollable_content_region
            if region.height <= 0:
                continue
            if pane_type == PaneType.DATA:
                self._grid.set_viewport(region.height - 2, region.width)
            else:
                self._panes[pane_type].set_viewport_height(region.height)
        if self._tree_navigator is not None:
            region = self.query_one("#tree-view", Static).scrollable_content_region
            if region.height > 0:
                self._tree_navigator.set_viewport_height(region.height)
        self._refresh_browse()

    def _refresh_browse(self) -> None:
        if self._current_view != "browse":
            return
        focus = self._panes.focus
        tree_layout = self._browse_layout == "tree"
        for pane_type, widget_id in _PANE_WIDGET_IDS.items():
            widget = self.query_one(f"#{widget_id}", Static)
            focused = pane_type == focus
            widget.set_class(focused, "focused")
            if pane_type == PaneType.DATA:
                widget.border_title = self._data_title
                widget.border_subtitle = grid_position_text(self._grid)
                widget.update(render_grid(self._grid, focused))
            else:
                pane = self._panes[pane_type]
                widget.border_title = pane_type.title
                widget.update(render_pane(pane, focused, widget.scrollable_content_region.width or None))
        tree_view = self.query_one("#tree-view", Static)
        tree_view.border_title = "Catalog"
        tree_view.set_class(tree_layout and focus != PaneType.DATA, "focused")
        if self._tree_navigator is not None:
            tree_view.update(render_tree(self._tree_navigator))
        self._update_status()
        self._update_keybinds()

    def _status_text(self) -> str:
        connection_text = "<none>"
        if self._selected_connection is not None:
            connection_text = self._selected_connection.name
        database_text = "<none>"
        schema_text = "<none>"
        context = self._grid.context
        if context is not None:
            database_text = context.database
            schema_text = context.schema
        else:
            database_node = self._panes[PaneType.DATABASES].selected_node
            if database_node is not None:
                database_text = database_node.name
            schema_parent = self._panes[PaneType.TABLES].parent
            if schema_parent is not None:
                schema_text = schema_parent.name
        return f"Connection: {connection_text} | db: {database_text} | schema: {schema_text}"

    def _view_bar_text(self) -> str:
        if self._current_view == "connection":
            return "Connections"
        if self._current_view == "connecting":
            return "Connecting"
        if self._browse_layout == "tree":
            return "Catalog Tree"
        return f"{self._panes.focus.title} Pane"

    def _update_status(self) -> None:
        self.query_one("#selected-status", Static).update(self._status_text())
        self.query_one("#view-bar-text", Static).update(self._view_bar_text())

    def _update_message(self, message: str) -> None:
        self._current_message = message
        self.query_one("#message-line", Static).update(message)

    def _update_keybinds(self) -> None:
        keybinds = self.query_one("#keybinds-bar", KeyBindingBar)
        keybinds.update(self._footer_text())

    def _footer_text(self) -> str:
        bindings = self._footer_bindings()
        return "  ".join([self._format_binding(key, label) for key, label in bindings])

    def _format_binding(self, key: str, label: str) -> str:
        return f"[bold cyan]{key}[/] {label}"

    def _footer_bindings(self) -> list[tuple[str, str]]:
        if self._input_mode == "query":
            return [("enter", "Run"), ("esc", "Cancel")]
        if self._input_mode == "edit":
            return [("enter", "Save"), ("esc", "Cancel")]
        if self._current_view == "connection":
            return [("↑/↓", "Move"), ("enter", "Connect"), ("a", "Add"), ("esc", "Quit")]
        if self._current_view == "connecting":
            return [("^x", "Quit")]
        if self._panes.focus == PaneType.DATA:
            return [
                ("arrows", "Move"),
                ("pgup/pgdn", "Scroll"),
                ("home/end", "First/Last Col"),
                ("n/p", "Page"),
                ("enter", "Edit"),
                ("^n", "Insert"),
                ("^d", "Delete"),
                ("esc", "Back"),
                ("^e", "Query"),
                ("^x", "Quit"),
            ]
        if self._browse_layout == "tree":
            return [
                ("↑/↓", "Move"),
                ("←/→", "Collapse/Expand"),
                ("enter", "Open"),
                ("^d", "Data"),
                ("f5", "Refresh"),
                ("/", "Search"),
                ("^t", "Panes"),
                ("esc", "Back"),
                ("^e", "Query"),
                ("^x", "Quit"),
            ]
        return [
            ("↑/↓", "Move"),
            ("→/enter", "Open"),
            ("←", "Back"),
            ("tab", "Next Pane"),
            ("^t", "Tree"),
            ("^e", "Query"),
            ("esc", "Up/Quit"),
            ("^x", "Quit"),
        ]

    def _set_loading(self, is_loading: bool, message: str = "Loading...") -> None:
        loading_indicator = self.query_one("#loading-indicator", Static)
        loading_indicator.update(message if is_loading else "")

    @asynccontextmanager
    async def _loading(self, message: str) -> AsyncIterator[None]:
        self._set_loading(True, message)
        try:
            yield
        finally:
            self._set_loading(False)

    def _enter_input_mode(self, mode: str, session: EditSession | None = None) -> None:
        if self._input_mode:
            return
        self._input_mode = mode
        command_input = self.query_one("#command-input", Input)
        input_prefix = self.query_one("#input-prefix", Static)
        input_bar = self.query_one("#input-bar", Horizontal)
        message_line = self.query_one("#message-line", Static)
        if mode == "query":
            command_input.placeholder = "SQL query"
            command_input.value = load_last_query()
            input_prefix.update("SQL")
        elif session is not None and session.mode == EditMode.INSERT_ROW:
            command_input.placeholder = session.placeholder
            command_input.value = session.buffer
            input_prefix.update("INSERT")
        else:
            column = session.column if session is not None else ""
            command_input.placeholder = "value (empty or null for NULL)"
            command_input.value = session.buffer if session is not None else ""
            input_prefix.update(f"SET {column} =")
        command_input.cursor_position = len(command_input.value)
        input_bar.display = True
        message_line.display = False
        command_input.display = True
        command_input.focus()
        self._update_keybinds()

    def _close_input_mode(self, cancel: bool = False) -> None:
        if cancel and self._input_mode == "edit":
            self._grid.cancel()
        command_input = self.query_one("#command-input", Input)
        command_input.display = False
        command_input.value = ""
        self.query_one("#input-prefix", Static).update("")
        self.query_one("#input-bar", Horizontal).display = False
        self.query_one("#message-line", Static).display = True
        self._input_mode = ""
        self.set_focus(None)
        self._update_keybinds()

    def _open_add_connection_dialog(self) -> None:
        if self._pending_connection_dialog:
            return
        self._pending_connection_dialog = True
        self.push_screen(AddConnectionDialog(), self._handle_add_connection_result)

    def _handle_add_connection_result(self, result: ConnectionConfig | None) -> None:
        self._pending_connection_dialog = False
        if result is None:
            return
        try:
            updated = add_connection(self._config, result)
        except ValueError as error:
            self._show_error_dialog("Failed to add connection", error)
            return
        save_config(updated)
        self._config = updated
        self._connections = updated.connections
        self.call_later(self._refresh_connection_list)

    async def _refresh_connection_list(self) -> None:
        connection_list = self.query_one("#connection-list", ListView)
        await connection_list.clear()
        await connection_list.extend(
            [ConnectionListItem(connection) for connection in self._connections]
        )
        connection_list.index = 0
        if self._current_view == "connection":
            connection_list.focus()

    async def _close_loader(self) -> None:
        loader = self._loader
        self._loader = None
        self._navigator.loader = None
        if loader is not None:
            try:
                await loader.close()
            except Exception:
                logger.exception("Failed to close loader")

    async def _quit(self) -> None:
        await self._close_loader()
        self.exit()

    def _show_error_dialog(self, title: str, error: Exception) -> None:
        if self._input_mode:
            self._close_input_mode(cancel=True)
        if self._error_dialog_open:
            return
        self._error_dialog_open = True
        self.push_screen(ErrorDialog(title, str(error)))
