from rich.text import Text

from dbpanes.data_grid import DataGrid, format_cell_value
from dbpanes.pane_model import PaneState
from dbpanes.tree_navigator import TreeNavigator


SELECTED_STYLE = "bold black on rgb(160,200,255)"
DIM_SELECTED_STYLE = "bold on rgb(40,60,80)"
HEADER_STYLE = "bold rgb(160,200,255)"
NULL_STYLE = "italic rgb(120,120,120)"


def _fit(text: str, width: int) -> str:
    if len(text) <= width:
        return text.ljust(width)
    if width <= 3:
        return text[:width]
    return text[: width - 3] + "..."


def render_pane(pane: PaneState, focused: bool, width: int | None = None) -> Text:
    if not pane.nodes:
        return Text("(empty)", style="dim")
    output = Text()
    selected_style = SELECTED_STYLE if focused else DIM_SELECTED_STYLE
    for index in range(pane.offset, min(pane.offset + pane.viewport_height, len(pane.nodes))):
        node = pane.nodes[index]
        label = f"{node.icon()} {node.pane_label()}"
        if width is not None:
            label = _fit(label, width)
        if output:
            output.append("\n")
        output.append(label, style=selected_style if index == pane.selected_index else "")
    return output


def render_grid(grid: DataGrid, focused: bool) -> Text:
    if not grid.columns:
        return Text("No rows.", style="dim")
    columns = grid.visible_columns()
    output = Text()
    for position, (column, width) in enumerate(columns):
        if position:
            output.append(" ")
        output.append(_fit(column, width), style=HEADER_STYLE)
    output.append("\n")
    output.append(" ".join("─" * width for _, width in columns), style="dim")
    selected_column = grid.selected_column_name()
    for row_index in grid.visible_row_range():
        row = grid.rows[row_index]
        output.append("\n")
        for position, (column, width) in enumerate(columns):
            if position:
                output.append(" ")
            value = row.get(column)
            style = NULL_STYLE if value is None else ""
            if row_index == grid.selected_row and column == selected_column:
                style = SELECTED_STYLE if focused else DIM_SELECTED_STYLE
            output.append(_fit(format_cell_value(value), width), style=style)
    return output


def grid_position_text(grid: DataGrid) -> str:
    if not grid.rows:
        return ""
    text = (
        f"row {grid.selected_row + 1}/{grid.row_count}"
        f" col {grid.selected_col + 1}/{grid.column_count}"
    )
    if grid.context is not None:
        page_number = grid.context.offset // max(grid.context.limit, 1) + 1
        text += f" page {page_number}"
    return text


def render_tree(navigator: TreeNavigator) -> Text:
    output = Text()
    for node in navigator.visible_window():
        if output:
            output.append("\n")
        style = SELECTED_STYLE if node.selected else ""
        output.append(node.display_string(), style=style)
    if navigator.search_mode:
        output.append("\n")
        output.append(f"/{navigator.search_query}", style="bold rgb(255,170,60)")
    return output
