import pytest

from dbpanes.data_grid import DataContext, DataGrid, EditMode
from dbpanes.loader import QueryError
from dbpanes.messages import (
    DeleteRowRequest,
    EditStarted,
    LoadTableDataRequest,
    OpenQueryEditor,
    QuitApp,
)
from dbpanes.navigator import PaneNavigator
from dbpanes.pane_model import PaneSet, PaneType
from conftest import FakeLoader


async def _navigator(loader: FakeLoader) -> PaneNavigator:
    tree = await loader.load_tree("local")
    panes = PaneSet()
    panes.reset(tree.server_node.children, tree.server_node)
    return PaneNavigator(panes, DataGrid(viewport_rows=5, viewport_width=60), loader)


@pytest.mark.asyncio
async def test_drill_down_to_table_data_request() -> None:
    loader = FakeLoader({"app": {"public": {"users": ["id", "email"]}}})
    navigator = await _navigator(loader)
    panes = navigator.panes

    assert [node.name for node in panes[PaneType.DATABASES].nodes] == ["app"]
    assert await navigator.handle_key("right") is None
    assert panes.focus == PaneType.SCHEMAS
    assert await navigator.handle_key("enter") is None
    assert panes.focus == PaneType.TABLES
    assert [node.name for node in panes[PaneType.TABLES].nodes] == ["users"]

    action = await navigator.handle_key("right")
    assert action == LoadTableDataRequest("app", "public", "users", 100, 0)
    assert loader.fetches == ["app", "app.public"]


@pytest.mark.asyncio
async def test_children_are_fetched_once(fake_loader: FakeLoader) -> None:
    navigator = await _navigator(fake_loader)
    await navigator.handle_key("right")
    await navigator.handle_key("left")
    await navigator.handle_key("right")
    assert fake_loader.fetches == ["app"]


@pytest.mark.asyncio
async def test_drilling_reseeds_and_clears_right_panes(fake_loader: FakeLoader) -> None:
    navigator = await _navigator(fake_loader)
    panes = navigator.panes
    await navigator.handle_key("right")
    await navigator.handle_key("right")
    assert [node.name for node in panes[PaneType.TABLES].nodes] == ["users", "orders"]

    await navigator.handle_key("left")
    await navigator.handle_key("down")
    await navigator.handle_key("left")
    await navigator.handle_key("right")
    assert panes.focus == PaneType.SCHEMAS
    assert panes[PaneType.TABLES].nodes == []
    assert panes[PaneType.SCHEMAS].parent.name == "app"


@pytest.mark.asyncio
async def test_escape_moves_left_then_quits(fake_loader: FakeLoader) -> None:
    navigator = await _navigator(fake_loader)
    await navigator.handle_key("right")
    assert await navigator.handle_key("escape") is None
    assert navigator.panes.focus == PaneType.DATABASES
    assert isinstance(await navigator.handle_key("escape"), QuitApp)


@pytest.mark.asyncio
async def test_global_keys(fake_loader: FakeLoader) -> None:
    navigator = await _navigator(fake_loader)
    assert isinstance(await navigator.handle_key("ctrl+e"), OpenQueryEditor)
    assert isinstance(await navigator.handle_key("ctrl+x"), QuitApp)
    for expected in (PaneType.SCHEMAS, PaneType.TABLES, PaneType.DATA, PaneType.DATABASES):
        await navigator.handle_key("tab")
        assert navigator.panes.focus == expected


@pytest.mark.asyncio
async def test_load_error_keeps_focus(fake_loader: FakeLoader) -> None:
    async def failing_load(node) -> None:
        raise QueryError("boom")

    navigator = await _navigator(fake_loader)
    fake_loader.load_children = failing_load
    with pytest.raises(QueryError):
        await navigator.handle_key("right")
    assert navigator.panes.focus == PaneType.DATABASES


@pytest.mark.asyncio
async def test_data_keys_drive_the_grid(fake_loader: FakeLoader) -> None:
    navigator = await _navigator(fake_loader)
    grid = navigator.grid
    grid.set_results([{"__rowid": index + 1, "id": index, "name": f"n{index}"} for index in range(8)])
    grid.set_context(DataContext("app", "main", "users", offset=0, limit=8))
    navigator.panes.set_focus(PaneType.DATA)

    await navigator.handle_key("down")
    await navigator.handle_key("right")
    assert (grid.selected_row, grid.selected_col) == (1, 1)
    await navigator.handle_key("pagedown")
    assert grid.selected_row == 6
    await navigator.handle_key("home")
    assert grid.selected_col == 0
    await navigator.handle_key("end")
    assert grid.selected_col == 1

    action = await navigator.handle_key("enter")
    assert isinstance(action, EditStarted)
    assert action.session.mode == EditMode.UPDATE_CELL
    grid.cancel()

    action = await navigator.handle_key("ctrl+n")
    assert isinstance(action, EditStarted)
    assert action.session.mode == EditMode.INSERT_ROW
    grid.cancel()

    action = await navigator.handle_key("ctrl+d")
    assert isinstance(action, DeleteRowRequest)
    assert action.row_identity == "7"

    action = await navigator.handle_key("n")
    assert action == LoadTableDataRequest("app", "main", "users", limit=8, offset=8)
    assert await navigator.handle_key("p") is None

    await navigator.handle_key("escape")
    assert navigator.panes.focus == PaneType.TABLES
