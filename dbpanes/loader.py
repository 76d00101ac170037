from datetime import date, datetime
from typing import Protocol, runtime_checkable

from loguru import logger

from dbpanes.config import ConnectionConfig, ConnectionKind
from dbpanes.tree_model import CatalogTree, NodeKind, TreeNode


Row = dict[str, object]

_SEGMENTS_BY_KIND = {
    NodeKind.DATABASE: 1,
    NodeKind.SCHEMA: 2,
    NodeKind.TABLE: 3,
}


class DbPanesError(Exception):
    pass


class ConnectivityError(DbPanesError):
    pass


class QueryError(DbPanesError):
    pass


@runtime_checkable
class CatalogLoader(Protocol):
    async def load_tree(self, server_name: str) -> CatalogTree: ...

    async def load_children(self, node: TreeNode) -> None: ...

    async def get_table_data(
        self,
        database: str,
        schema: str,
        table: str,
        limit: int,
        offset: int,
    ) -> list[Row]: ...

    async def update_cell(
        self,
        database: str,
        schema: str,
        table: str,
        column: str,
        row_identity: str,
        value: object,
    ) -> None: ...

    async def insert_row(
        self,
        database: str,
        schema: str,
        table: str,
        values: dict[str, object],
    ) -> None: ...

    async def delete_row(
        self,
        database: str,
        schema: str,
        table: str,
        row_identity: str,
    ) -> None: ...

    async def execute_query(self, query: str) -> list[Row]: ...

    async def close(self) -> None: ...


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def split_path(path: str) -> list[str]:
    return path.split(".", 2)


def node_address(node: TreeNode) -> tuple[str, ...] | None:
    """Return the (database[, schema[, table]]) segments a child load needs, or None."""
    needed = _SEGMENTS_BY_KIND.get(node.kind)
    if needed is None:
        return None
    parts = split_path(node.path)
    if len(parts) < needed or any(not part for part in parts[:needed]):
        logger.debug("Skipping child load for {} with path {!r}", node.kind.label, node.path)
        return None
    return tuple(parts[:needed])


def require_row_identity(row_identity: str) -> str:
    if not row_identity:
        raise ValueError("Row identity is empty; this row cannot be modified.")
    return row_identity


def require_values(values: dict[str, object]) -> list[str]:
    if not values:
        raise ValueError("No values provided for insert.")
    return sorted(values)


def text_parameter(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


async def open_loader(connection: ConnectionConfig) -> CatalogLoader:
    if connection.kind == ConnectionKind.SQLITE:
        from dbpanes.sqlite_loader import SQLiteLoader

        sqlite_loader = SQLiteLoader(connection)
        await sqlite_loader.connect()
        return sqlite_loader

    from dbpanes.postgres_loader import PostgresLoader

    postgres_loader = PostgresLoader(connection)
    await postgres_loader.connect()
    return postgres_loader
