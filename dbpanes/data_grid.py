from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import json

from loguru import logger

from dbpanes.loader import Row
from dbpanes.messages import (
    DEFAULT_PAGE_LIMIT,
    DeleteRowRequest,
    InsertRowRequest,
    UpdateCellRequest,
)


HIDDEN_COLUMNS = frozenset({"__ctid", "__rowid"})
MIN_COLUMN_WIDTH = 8
MAX_COLUMN_WIDTH = 30
MIN_VIEWPORT_WIDTH = 20
INSERT_PLACEHOLDER = "column=value, other=value2"

_TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
)


class EditMode(Enum):
    NONE = "none"
    UPDATE_CELL = "update_cell"
    INSERT_ROW = "insert_row"


@dataclass
class EditSession:
    mode: EditMode
    row_index: int = 0
    column: str = ""
    buffer: str = ""
    placeholder: str = ""


@dataclass(frozen=True)
class DataContext:
    database: str
    schema: str
    table: str
    offset: int = 0
    limit: int = DEFAULT_PAGE_LIMIT


def format_cell_value(value: object) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    return str(value)


def convert_input_value(text: str) -> object:
    trimmed = text.strip()
    if trimmed == "" or trimmed.lower() == "null":
        return None
    if trimmed.lower() == "true":
        return True
    if trimmed.lower() == "false":
        return False
    try:
        return int(trimmed)
    except ValueError:
        pass
    try:
        return float(trimmed)
    except ValueError:
        pass
    for timestamp_format in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(trimmed, timestamp_format)
        except ValueError:
            continue
    return trimmed


def parse_key_value_input(text: str) -> dict[str, object]:
    values: dict[str, object] = {}
    for pair in text.split(","):
        key, separator, raw_value = pair.partition("=")
        key = key.strip()
        if not separator or not key or key in values:
            continue
        values[key] = convert_input_value(raw_value)
    return values


def row_identity(row: Row) -> str:
    for column in ("__ctid", "__rowid"):
        value = row.get(column)
        if value is not None:
            return str(value)
    return ""


class DataGrid:
    def __init__(self, viewport_rows: int = 10, viewport_width: int = 80) -> None:
        self.rows: list[Row] = []
        self.columns: list[str] = []
        self.selected_row = 0
        self.selected_col = 0
        self.row_offset = 0
        self.col_offset = 0
        self.viewport_rows = max(viewport_rows, 1)
        self.viewport_width = max(viewport_width, MIN_VIEWPORT_WIDTH)
        self.context: DataContext | None = None
        self.edit_session: EditSession | None = None

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.columns)

    @property
    def is_editing(self) -> bool:
        return self.edit_session is not None and self.edit_session.mode != EditMode.NONE

    def set_results(self, rows: list[Row]) -> None:
        self.rows = list(rows)
        if self.rows:
            self.columns = sorted(
                column for column in self.rows[0] if column.lower() not in HIDDEN_COLUMNS
            )
        else:
            self.columns = []
        self.selected_row = 0
        self.selected_col = 0
        self.row_offset = 0
        self.col_offset = 0

    def set_context(self, context: DataContext | None) -> None:
        self.context = context

    def set_viewport(self, rows: int, width: int) -> None:
        self.viewport_rows = max(rows, 1)
        self.viewport_width = max(width, MIN_VIEWPORT_WIDTH)
        self._ensure_selection_visible()

    def move_selection(self, row_delta: int, col_delta: int) -> None:
        if not self.rows or not self.columns:
            return
        self.selected_row = min(max(self.selected_row + row_delta, 0), len(self.rows) - 1)
        self.selected_col = min(max(self.selected_col + col_delta, 0), len(self.columns) - 1)
        self._ensure_selection_visible()

    def set_selection(self, row: int, col: int) -> None:
        self.selected_row = min(max(row, 0), max(len(self.rows) - 1, 0))
        self.selected_col = min(max(col, 0), max(len(self.columns) - 1, 0))
        self._ensure_selection_visible()

    def first_column(self) -> None:
        self.move_selection(0, -self.selected_col)

    def last_column(self) -> None:
        self.move_selection(0, len(self.columns) - 1 - self.selected_col)

    def visible_row_range(self) -> range:
        return range(self.row_offset, min(self.row_offset + self.viewport_rows, len(self.rows)))

    def column_width(self, column: str) -> int:
        width = len(column)
        for index in self.visible_row_range():
            width = max(width, len(format_cell_value(self.rows[index].get(column))))
        return min(max(width, MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH)

    def visible_columns(self) -> list[tuple[str, int]]:
        """Columns from the column offset that fit the viewport width, with their widths."""
        visible: list[tuple[str, int]] = []
        remaining = self.viewport_width
        for column in self.columns[self.col_offset :]:
            width = self.column_width(column)
            separator = 1 if visible else 0
            if remaining - width - separator < 0:
                break
            remaining -= width + separator
            visible.append((column, width))
        if not visible and self.col_offset < len(self.columns):
            column = self.columns[self.col_offset]
            visible.append((column, self.column_width(column)))
        return visible

    def _ensure_selection_visible(self) -> None:
        if self.selected_row < self.row_offset:
            self.row_offset = self.selected_row
        elif self.selected_row >= self.row_offset + self.viewport_rows:
            self.row_offset = self.selected_row - self.viewport_rows + 1
        self.row_offset = max(self.row_offset, 0)

        if self.selected_col < self.col_offset:
            self.col_offset = self.selected_col
        while self.col_offset < self.selected_col:
            if self.selected_col < self.col_offset + len(self.visible_columns()):
                break
            self.col_offset += 1
        self.col_offset = max(self.col_offset, 0)

    def selected_column_name(self) -> str:
        if 0 <= self.selected_col < len(self.columns):
            return self.columns[self.selected_col]
        return ""

    def selected_cell(self) -> tuple[Row | None, str, object]:
        if not self.rows or not self.columns:
            return None, "", None
        row = self.rows[self.selected_row]
        column = self.columns[self.selected_col]
        return row, column, row.get(column)

    def row_identity(self, row_index: int) -> str:
        if 0 <= row_index < len(self.rows):
            return row_identity(self.rows[row_index])
        return ""

    def begin_update_cell(self) -> EditSession | None:
        if self.context is None:
            return None
        row, column, value = self.selected_cell()
        if row is None:
            return None
        self.edit_session = EditSession(
            mode=EditMode.UPDATE_CELL,
            row_index=self.selected_row,
            column=column,
            buffer="" if value is None else format_cell_value(value),
        )
        return self.edit_session

    def begin_insert_row(self) -> EditSession | None:
        if self.context is None:
            return None
        self.edit_session = EditSession(
            mode=EditMode.INSERT_ROW,
            row_index=self.selected_row,
            placeholder=INSERT_PLACEHOLDER,
        )
        return self.edit_session

    def cancel(self) -> None:
        self.edit_session = None

    def commit(self, text: str | None = None) -> UpdateCellRequest | InsertRowRequest | None:
        session = self.edit_session
        if session is None or self.context is None:
            self.edit_session = None
            return None
        if text is not None:
            session.buffer = text
        context = self.context

        if session.mode == EditMode.INSERT_ROW:
            values = parse_key_value_input(session.buffer)
            if not values:
                logger.debug("Insert input had no key=value pairs: {!r}", session.buffer)
                return None
            self.edit_session = None
            return InsertRowRequest(
                database=context.database,
                schema=context.schema,
                table=context.table,
                values=values,
                row_index=self.selected_row,
                col_index=self.selected_col,
                offset=context.offset,
                limit=context.limit,
            )

        self.edit_session = None
        if session.mode != EditMode.UPDATE_CELL:
            return None
        identity = self.row_identity(session.row_index)
        if not identity:
            raise ValueError("Row identity is unavailable; this row cannot be updated.")
        return UpdateCellRequest(
            database=context.database,
            schema=context.schema,
            table=context.table,
            column=session.column,
            row_identity=identity,
            value=convert_input_value(session.buffer),
            row_index=session.row_index,
            col_index=self.selected_col,
            offset=context.offset,
            limit=context.limit,
        )

    def request_delete(self) -> DeleteRowRequest | None:
        if self.context is None or not self.rows:
            return None
        identity = self.row_identity(self.selected_row)
        if not identity:
            raise ValueError("Row identity is unavailable; this row cannot be deleted.")
        return DeleteRowRequest(
            database=self.context.database,
            schema=self.context.schema,
            table=self.context.table,
            row_identity=identity,
            row_index=self.selected_row - 1,
            col_index=self.selected_col,
            offset=self.context.offset,
            limit=self.context.limit,
        )

    def page_request_offset(self, direction: int) -> int | None:
        """Offset of the next (1) or previous (-1) page, or None when there is none."""
        if self.context is None:
            return None
        if direction > 0:
            if len(self.rows) < self.context.limit:
                return None
            return self.context.offset + self.context.limit
        if self.context.offset == 0:
            return None
        return max(self.context.offset - self.context.limit, 0)
