from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from loguru import logger
from textual.message import Message

from dbpanes.loader import Row
from dbpanes.tree_model import CatalogTree

if TYPE_CHECKING:
    from dbpanes.data_grid import EditSession


DEFAULT_PAGE_LIMIT = 100


@dataclass(frozen=True)
class LoadTableDataRequest:
    database: str
    schema: str
    table: str
    limit: int = DEFAULT_PAGE_LIMIT
    offset: int = 0
    row_index: int = 0
    col_index: int = 0


@dataclass(frozen=True)
class ExecuteQueryRequest:
    query: str


@dataclass(frozen=True)
class UpdateCellRequest:
    database: str
    schema: str
    table: str
    column: str
    row_identity: str
    value: object
    row_index: int = 0
    col_index: int = 0
    offset: int = 0
    limit: int = DEFAULT_PAGE_LIMIT


@dataclass(frozen=True)
class InsertRowRequest:
    database: str
    schema: str
    table: str
    values: dict[str, object] = field(default_factory=dict)
    row_index: int = 0
    col_index: int = 0
    offset: int = 0
    limit: int = DEFAULT_PAGE_LIMIT


@dataclass(frozen=True)
class DeleteRowRequest:
    database: str
    schema: str
    table: str
    row_identity: str
    row_index: int = 0
    col_index: int = 0
    offset: int = 0
    limit: int = DEFAULT_PAGE_LIMIT


@dataclass(frozen=True)
class OpenQueryEditor:
    pass


@dataclass(frozen=True)
class QuitApp:
    pass


@dataclass(frozen=True)
class CloseTreeView:
    pass


@dataclass(frozen=True)
class EditStarted:
    session: "EditSession"


MutationRequest = Union[UpdateCellRequest, InsertRowRequest, DeleteRowRequest]

Action = Union[
    LoadTableDataRequest,
    ExecuteQueryRequest,
    UpdateCellRequest,
    InsertRowRequest,
    DeleteRowRequest,
    OpenQueryEditor,
    QuitApp,
    CloseTreeView,
    EditStarted,
]


def reload_request(request: MutationRequest) -> LoadTableDataRequest:
    """The table window to fetch again once a mutation has been applied."""
    row_index = request.row_index
    if isinstance(request, DeleteRowRequest):
        row_index = max(row_index, 0)
    return LoadTableDataRequest(
        database=request.database,
        schema=request.schema,
        table=request.table,
        limit=request.limit,
        offset=request.offset,
        row_index=row_index,
        col_index=request.col_index,
    )


class TreeLoaded(Message):
    def __init__(self, tree: CatalogTree, sequence: int) -> None:
        super().__init__()
        self.tree = tree
        self.sequence = sequence


class TableDataLoaded(Message):
    def __init__(self, request: LoadTableDataRequest, rows: list[Row], sequence: int) -> None:
        super().__init__()
        self.request = request
        self.rows = rows
        self.sequence = sequence


class QueryExecuted(Message):
    def __init__(self, query: str, rows: list[Row], sequence: int) -> None:
        super().__init__()
        self.query = query
        self.rows = rows
        self.sequence = sequence


class _MutationApplied(Message):
    def __init__(self, request: MutationRequest, sequence: int) -> None:
        super().__init__()
        self.request = request
        self.sequence = sequence


class CellUpdated(_MutationApplied):
    pass


class RowInserted(_MutationApplied):
    pass


class RowDeleted(_MutationApplied):
    pass


class LoadFailed(Message):
    def __init__(
        self,
        title: str,
        error: Exception,
        channel: str,
        sequence: int,
        disconnect: bool = False,
    ) -> None:
        super().__init__()
        self.title = title
        self.error = error
        self.channel = channel
        self.sequence = sequence
        self.disconnect = disconnect


class RequestTracker:
    """Hands out increasing sequence numbers per channel and recognizes stale results."""

    def __init__(self) -> None:
        self._latest: dict[str, int] = {}

    def issue(self, channel: str) -> int:
        sequence = self._latest.get(channel, 0) + 1
        self._latest[channel] = sequence
        return sequence

    def latest(self, channel: str) -> int:
        return self._latest.get(channel, 0)

    def is_current(self, channel: str, sequence: int) -> bool:
        return self._latest.get(channel, 0) == sequence

    def accept(self, channel: str, sequence: int) -> bool:
        if self.is_current(channel, sequence):
            return True
        logger.info(
            "Dropping stale {} result {} (latest is {})",
            channel,
            sequence,
            self.latest(channel),
        )
        return False
