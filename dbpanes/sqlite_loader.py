import asyncio
from datetime import date, datetime
from pathlib import Path
import sqlite3
import threading
from typing import Callable, TypeVar

from loguru import logger

from dbpanes.config import ConnectionConfig, sqlite_database_label
from dbpanes.loader import (
    ConnectivityError,
    QueryError,
    Row,
    node_address,
    quote_identifier,
    require_row_identity,
    require_values,
)
from dbpanes.tree_model import CatalogTree, NodeKind, NodeMetadata, TreeNode


ROW_IDENTITY_COLUMN = "__rowid"
CONTEXT_TYPE = "sqlite"

_T = TypeVar("_T")


def _bind_value(value: object) -> object:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _parse_row_identity(row_identity: str) -> int | str:
    row_identity = require_row_identity(row_identity)
    try:
        return int(row_identity)
    except ValueError:
        return row_identity


def _rows_from_cursor(cursor: sqlite3.Cursor) -> list[Row]:
    if cursor.description is None:
        return []
    names = [column[0] for column in cursor.description]
    return [dict(zip(names, row)) for row in cursor.fetchall()]


class SQLiteLoader:
    def __init__(self, connection: ConnectionConfig) -> None:
        self._connection = connection
        self._path = Path(connection.path).expanduser()
        self._lock = threading.Lock()
        self._connections: dict[str, sqlite3.Connection] = {}

    @property
    def primary_database(self) -> str:
        if self._connection.database:
            return self._connection.database.replace(".", "_")
        if self._connection.path:
            return sqlite_database_label(self._connection.path)
        return self._connection.name.replace(".", "_")

    def _file_for(self, database_name: str) -> Path:
        if database_name == self.primary_database:
            return self._path
        return self._path.with_name(database_name).with_suffix(self._path.suffix)

    def _open(self, database_name: str) -> sqlite3.Connection:
        file_path = self._file_for(database_name)
        if database_name != self.primary_database and not file_path.exists():
            raise ConnectivityError(f"no sqlite database file for {database_name}: {file_path}")
        logger.info("Opening SQLite database {} at {}", database_name, file_path)
        try:
            return sqlite3.connect(file_path, check_same_thread=False)
        except sqlite3.Error as error:
            raise ConnectivityError(f"failed to open {file_path}: {error}") from error

    def _connection_for(self, database_name: str) -> sqlite3.Connection:
        if not database_name:
            database_name = self.primary_database
        connection = self._connections.get(database_name)
        if connection is None:
            connection = self._open(database_name)
            self._connections[database_name] = connection
        return connection

    async def _run(self, function: Callable[..., _T], *args: object) -> _T:
        def locked() -> _T:
            with self._lock:
                return function(*args)

        return await asyncio.to_thread(locked)

    def _query(self, database_name: str, query: str, parameters: tuple = ()) -> list[Row]:
        connection = self._connection_for(database_name)
        try:
            cursor = connection.execute(query, parameters)
            return _rows_from_cursor(cursor)
        except sqlite3.Error as error:
            raise QueryError(f"query failed: {error}") from error

    def _write(self, database_name: str, statement: str, parameters: tuple = ()) -> int:
        connection = self._connection_for(database_name)
        try:
            cursor = connection.execute(statement, parameters)
            connection.commit()
        except sqlite3.Error as error:
            connection.rollback()
            raise QueryError(f"statement failed: {error}") from error
        return cursor.rowcount

    async def connect(self) -> None:
        if not self._connection.path:
            raise ConnectivityError(f"connection {self._connection.name} has no sqlite path")
        if not self._path.exists():
            raise ConnectivityError(f"sqlite database file not found: {self._path}")
        try:
            await self._run(self._query, self.primary_database, "SELECT COUNT(*) FROM sqlite_master")
        except QueryError as error:
            await self.close()
            raise ConnectivityError(f"failed to ping database: {error}") from error

    async def close(self) -> None:
        def close_all() -> None:
            for connection in self._connections.values():
                connection.close()
            self._connections.clear()

        await self._run(close_all)

    async def load_tree(self, server_name: str) -> CatalogTree:
        tree = CatalogTree.with_server("SQLite Connections", server_name)
        database_name = self.primary_database
        size = ""
        if self._path.exists():
            size = f"{self._path.stat().st_size // 1024} kB"
        database = TreeNode(
            node_id=f"sqlite_db_{database_name}",
            name=database_name,
            kind=NodeKind.DATABASE,
            path=database_name,
            level=1,
            metadata=NodeMetadata(size=size, context_type=CONTEXT_TYPE),
        )
        server = tree.server_node
        server.attach_children([database])
        server.metadata.count = 1
        logger.info("Loaded sqlite tree for {}", server_name)
        return tree

    async def load_children(self, node: TreeNode) -> None:
        if node.has_children:
            return
        address = node_address(node)
        if address is None:
            return
        if node.kind == NodeKind.DATABASE:
            children = await self._run(self._load_schemas, *address)
        elif node.kind == NodeKind.SCHEMA:
            children = await self._run(self._load_tables, *address)
        else:
            children = await self._run(self._load_columns, *address)
        node.attach_children(children)
        logger.debug("Loaded {} children for {}", len(children), node.path)

    def _load_schemas(self, database_name: str) -> list[TreeNode]:
        rows = self._query(database_name, "PRAGMA database_list")
        schemas = []
        for row in rows:
            schema_name = row["name"]
            if schema_name == "temp":
                continue
            count_rows = self._query(
                database_name,
                f"SELECT COUNT(*) AS table_count FROM {quote_identifier(schema_name)}.sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%'",
            )
            schemas.append(
                TreeNode(
                    node_id=f"sqlite_schema_{database_name}_{schema_name}",
                    name=schema_name,
                    kind=NodeKind.SCHEMA,
                    path=f"{database_name}.{schema_name}",
                    level=2,
                    metadata=NodeMetadata(
                        count=count_rows[0]["table_count"],
                        context_type=CONTEXT_TYPE,
                    ),
                )
            )
        return schemas

    def _load_tables(self, database_name: str, schema_name: str) -> list[TreeNode]:
        rows = self._query(
            database_name,
            f"SELECT name FROM {quote_identifier(schema_name)}.sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name",
        )
        return [
            TreeNode(
                node_id=f"sqlite_table_{database_name}_{schema_name}_{row['name']}",
                name=row["name"],
                kind=NodeKind.TABLE,
                path=f"{database_name}.{schema_name}.{row['name']}",
                level=3,
                metadata=NodeMetadata(context_type=CONTEXT_TYPE),
            )
            for row in rows
        ]

    def _load_columns(
        self,
        database_name: str,
        schema_name: str,
        table_name: str,
    ) -> list[TreeNode]:
        rows = self._query(
            database_name,
            f"PRAGMA {quote_identifier(schema_name)}.table_info({quote_identifier(table_name)})",
        )
        return [
            TreeNode(
                node_id=f"sqlite_col_{database_name}_{schema_name}_{table_name}_{row['name']}",
                name=row["name"],
                kind=NodeKind.COLUMN,
                path=f"{database_name}.{schema_name}.{table_name}.{row['name']}",
                level=4,
                metadata=NodeMetadata(
                    data_type=row["type"] or "TEXT",
                    is_nullable=not row["notnull"],
                    default_value=str(row["dflt_value"] or ""),
                    primary_key=row["pk"] > 0,
                    context_type=CONTEXT_TYPE,
                ),
            )
            for row in rows
        ]

    async def get_table_data(
        self,
        database: str,
        schema: str,
        table: str,
        limit: int,
        offset: int,
    ) -> list[Row]:
        query = (
            f'SELECT rowid AS "{ROW_IDENTITY_COLUMN}", * '
            f"FROM {quote_identifier(schema)}.{quote_identifier(table)} "
            "ORDER BY rowid LIMIT ? OFFSET ?"
        )
        return await self._run(self._query, database, query, (limit, offset))

    async def update_cell(
        self,
        database: str,
        schema: str,
        table: str,
        column: str,
        row_identity: str,
        value: object,
    ) -> None:
        rowid = _parse_row_identity(row_identity)
        statement = (
            f"UPDATE {quote_identifier(schema)}.{quote_identifier(table)} "
            f"SET {quote_identifier(column)} = ? WHERE rowid = ?"
        )
        changed = await self._run(self._write, database, statement, (_bind_value(value), rowid))
        logger.info("Updated {}.{}.{} at rowid {}: {} row(s)", schema, table, column, rowid, changed)

    async def insert_row(
        self,
        database: str,
        schema: str,
        table: str,
        values: dict[str, object],
    ) -> None:
        columns = require_values(values)
        statement = (
            f"INSERT INTO {quote_identifier(schema)}.{quote_identifier(table)} "
            f"({', '.join(quote_identifier(column) for column in columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        parameters = tuple(_bind_value(values[column]) for column in columns)
        await self._run(self._write, database, statement, parameters)
        logger.info("Inserted into {}.{} ({})", schema, table, ", ".join(columns))

    async def delete_row(
        self,
        database: str,
        schema: str,
        table: str,
        row_identity: str,
    ) -> None:
        rowid = _parse_row_identity(row_identity)
        statement = (
            f"DELETE FROM {quote_identifier(schema)}.{quote_identifier(table)} WHERE rowid = ?"
        )
        changed = await self._run(self._write, database, statement, (rowid,))
        logger.info("Deleted from {}.{} at rowid {}: {} row(s)", schema, table, rowid, changed)

    def _execute_raw(self, query: str) -> list[Row]:
        connection = self._connection_for(self.primary_database)
        try:
            cursor = connection.execute(query)
            rows = _rows_from_cursor(cursor)
            if connection.in_transaction:
                connection.commit()
        except sqlite3.Error as error:
            if connection.in_transaction:
                connection.rollback()
            raise QueryError(f"query failed: {error}") from error
        return rows

    async def execute_query(self, query: str) -> list[Row]:
        query = query.strip()
        if not query:
            return []
        logger.debug("Executing query on {}: {}", self.primary_database, query)
        return await self._run(self._execute_raw, query)
