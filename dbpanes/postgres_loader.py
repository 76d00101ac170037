import asyncio

import asyncpg
from asyncpg import Pool
from loguru import logger

from dbpanes.config import DEFAULT_POSTGRES_PORT, ConnectionConfig, with_database
from dbpanes.loader import (
    ConnectivityError,
    QueryError,
    Row,
    node_address,
    quote_identifier,
    require_row_identity,
    require_values,
    text_parameter,
)
from dbpanes.tree_model import CatalogTree, NodeKind, NodeMetadata, TreeNode


ROW_IDENTITY_COLUMN = "__ctid"

_CONNECTION_LOST_ERRORS = (OSError, asyncio.TimeoutError)
_CONNECT_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, *_CONNECTION_LOST_ERRORS)

_DATABASES_QUERY = """
    SELECT
        datname AS database_name,
        pg_size_pretty(pg_database_size(oid)) AS database_size,
        pg_stat_get_db_tuples_returned(oid) AS estimated_rows
    FROM pg_database
    WHERE datistemplate = false
    ORDER BY datname
"""

_SCHEMAS_QUERY = """
    SELECT
        s.schema_name,
        COALESCE(t.table_count, 0) AS table_count
    FROM information_schema.schemata s
    LEFT JOIN (
        SELECT table_schema, COUNT(*) AS table_count
        FROM information_schema.tables
        WHERE table_type = 'BASE TABLE'
        GROUP BY table_schema
    ) t ON s.schema_name = t.table_schema
    WHERE s.schema_name NOT IN ('pg_catalog', 'information_schema')
      AND s.schema_name NOT LIKE 'pg_toast%'
      AND s.schema_name NOT LIKE 'pg_temp%'
    ORDER BY s.schema_name
"""

_TABLES_QUERY = """
    SELECT
        c.relname AS table_name,
        pg_size_pretty(pg_total_relation_size(c.oid)) AS table_size,
        CASE
            WHEN c.reltuples < 0 THEN 0
            ELSE c.reltuples::bigint
        END AS estimated_rows
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = $1
      AND c.relkind IN ('r', 'p')
    ORDER BY c.relname
"""

_COLUMNS_QUERY = """
    SELECT
        c.column_name,
        c.data_type,
        c.is_nullable = 'YES' AS is_nullable,
        COALESCE(c.column_default, '') AS column_default,
        EXISTS (
            SELECT 1
            FROM information_schema.key_column_usage kcu
            JOIN information_schema.table_constraints tc
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
             AND tc.table_name = kcu.table_name
            WHERE kcu.table_schema = c.table_schema
              AND kcu.table_name = c.table_name
              AND kcu.column_name = c.column_name
              AND tc.constraint_type = 'PRIMARY KEY'
        ) AS is_primary_key
    FROM information_schema.columns c
    WHERE c.table_schema = $1 AND c.table_name = $2
    ORDER BY c.ordinal_position
"""

_COLUMN_TYPES_QUERY = """
    SELECT attname, format_type(atttypid, atttypmod) AS column_type
    FROM pg_attribute
    WHERE attrelid = $1::regclass
      AND attnum > 0
      AND NOT attisdropped
"""


class PostgresLoader:
    def __init__(self, connection: ConnectionConfig, pool_size: int = 4) -> None:
        self._connection = connection
        self._pool_size = pool_size
        self._pools: dict[str, Pool] = {}

    @property
    def primary_database(self) -> str:
        return self._connection.database or "postgres"

    async def connect(self) -> None:
        pool = await self._pool_for(self.primary_database)
        try:
            await pool.fetchval("SELECT 1")
        except _CONNECT_ERRORS as error:
            await self.close()
            raise ConnectivityError(f"failed to ping database: {error}") from error

    async def close(self) -> None:
        pools = list(self._pools.values())
        self._pools.clear()
        for pool in pools:
            await pool.close()

    async def _open_pool(self, database_name: str) -> Pool:
        connection = with_database(self._connection, database_name)
        logger.info("Opening PostgreSQL pool for {}", connection.describe())
        try:
            return await asyncpg.create_pool(
                host=connection.host,
                port=connection.port or DEFAULT_POSTGRES_PORT,
                user=connection.user,
                password=connection.password or None,
                database=connection.database,
                ssl=connection.sslmode or None,
                min_size=1,
                max_size=self._pool_size,
                server_settings={
                    "application_name": "dbpanes",
                    "statement_timeout": "10s",
                },
            )
        except _CONNECT_ERRORS as error:
            raise ConnectivityError(
                f"failed to open connection for database {database_name}: {error}"
            ) from error

    async def _pool_for(self, database_name: str) -> Pool:
        if not database_name:
            database_name = self.primary_database
        pool = self._pools.get(database_name)
        if pool is None:
            pool = await self._open_pool(database_name)
            self._pools[database_name] = pool
        return pool

    async def _fetch(self, database_name: str, query: str, *args: object) -> list[Row]:
        pool = await self._pool_for(database_name)
        try:
            records = await pool.fetch(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as error:
            raise QueryError(f"query failed: {error}") from error
        except _CONNECTION_LOST_ERRORS as error:
            raise ConnectivityError(f"lost connection to {database_name}: {error}") from error
        return [dict(record) for record in records]

    async def _execute(self, database_name: str, query: str, *args: object) -> str:
        pool = await self._pool_for(database_name)
        try:
            return await pool.execute(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as error:
            raise QueryError(f"statement failed: {error}") from error
        except _CONNECTION_LOST_ERRORS as error:
            raise ConnectivityError(f"lost connection to {database_name}: {error}") from error

    async def load_tree(self, server_name: str) -> CatalogTree:
        tree = CatalogTree.with_server("PostgreSQL Servers", server_name)
        server = tree.server_node
        databases = await self._load_databases()
        server.attach_children(databases)
        server.metadata.count = len(databases)
        logger.info("Loaded {} databases for {}", len(databases), server_name)
        return tree

    async def _load_databases(self) -> list[TreeNode]:
        rows = await self._fetch(self.primary_database, _DATABASES_QUERY)
        return [
            TreeNode(
                node_id=f"db_{row['database_name']}",
                name=row["database_name"],
                kind=NodeKind.DATABASE,
                path=row["database_name"],
                level=1,
                metadata=NodeMetadata(
                    size=row["database_size"] or "",
                    row_count=row["estimated_rows"] or 0,
                ),
            )
            for row in rows
        ]

    async def load_children(self, node: TreeNode) -> None:
        if node.has_children:
            return
        address = node_address(node)
        if address is None:
            return
        if node.kind == NodeKind.DATABASE:
            children = await self._load_schemas(*address)
        elif node.kind == NodeKind.SCHEMA:
            children = await self._load_tables(*address)
        else:
            children = await self._load_columns(*address)
        node.attach_children(children)
        logger.debug("Loaded {} children for {}", len(children), node.path)

    async def _load_schemas(self, database_name: str) -> list[TreeNode]:
        rows = await self._fetch(database_name, _SCHEMAS_QUERY)
        return [
            TreeNode(
                node_id=f"schema_{database_name}_{row['schema_name']}",
                name=row["schema_name"],
                kind=NodeKind.SCHEMA,
                path=f"{database_name}.{row['schema_name']}",
                level=2,
                metadata=NodeMetadata(count=row["table_count"]),
            )
            for row in rows
        ]

    async def _load_tables(self, database_name: str, schema_name: str) -> list[TreeNode]:
        rows = await self._fetch(database_name, _TABLES_QUERY, schema_name)
        return [
            TreeNode(
                node_id=f"table_{database_name}_{schema_name}_{row['table_name']}",
                name=row["table_name"],
                kind=NodeKind.TABLE,
                path=f"{database_name}.{schema_name}.{row['table_name']}",
                level=3,
                metadata=NodeMetadata(
                    size=row["table_size"] or "",
                    row_count=row["estimated_rows"],
                ),
            )
            for row in rows
        ]

    async def _load_columns(
        self,
        database_name: str,
        schema_name: str,
        table_name: str,
    ) -> list[TreeNode]:
        rows = await self._fetch(database_name, _COLUMNS_QUERY, schema_name, table_name)
        return [
            TreeNode(
                node_id=(
                    f"col_{database_name}_{schema_name}_{table_name}_{row['column_name']}"
                ),
                name=row["column_name"],
                kind=NodeKind.COLUMN,
                path=f"{database_name}.{schema_name}.{table_name}.{row['column_name']}",
                level=4,
                metadata=NodeMetadata(
                    data_type=row["data_type"],
                    is_nullable=row["is_nullable"],
                    default_value=row["column_default"],
                    primary_key=row["is_primary_key"],
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
            f'SELECT ctid::text AS "{ROW_IDENTITY_COLUMN}", * '
            f"FROM {quote_identifier(schema)}.{quote_identifier(table)} "
            "ORDER BY ctid LIMIT $1 OFFSET $2"
        )
        return await self._fetch(database, query, limit, offset)

    async def _column_types(self, database: str, schema: str, table: str) -> dict[str, str]:
        relation = f"{quote_identifier(schema)}.{quote_identifier(table)}"
        rows = await self._fetch(database, _COLUMN_TYPES_QUERY, relation)
        return {row["attname"]: row["column_type"] for row in rows}

    async def update_cell(
        self,
        database: str,
        schema: str,
        table: str,
        column: str,
        row_identity: str,
        value: object,
    ) -> None:
        row_identity = require_row_identity(row_identity)
        column_types = await self._column_types(database, schema, table)
        if column not in column_types:
            raise QueryError(f"unknown column {column} on {schema}.{table}")
        statement = (
            f"UPDATE {quote_identifier(schema)}.{quote_identifier(table)} "
            f"SET {quote_identifier(column)} = $1::text::{column_types[column]} "
            "WHERE ctid = $2::tid"
        )
        status = await self._execute(database, statement, text_parameter(value), row_identity)
        logger.info("Updated {}.{}.{} at {}: {}", schema, table, column, row_identity, status)

    async def insert_row(
        self,
        database: str,
        schema: str,
        table: str,
        values: dict[str, object],
    ) -> None:
        columns = require_values(values)
        column_types = await self._column_types(database, schema, table)
        unknown = [column for column in columns if column not in column_types]
        if unknown:
            raise QueryError(f"unknown columns on {schema}.{table}: {', '.join(unknown)}")
        placeholders = [
            f"${index}::text::{column_types[column]}"
            for index, column in enumerate(columns, start=1)
        ]
        statement = (
            f"INSERT INTO {quote_identifier(schema)}.{quote_identifier(table)} "
            f"({', '.join(quote_identifier(column) for column in columns)}) "
            f"VALUES ({', '.join(placeholders)})"
        )
        arguments = [text_parameter(values[column]) for column in columns]
        status = await self._execute(database, statement, *arguments)
        logger.info("Inserted into {}.{}: {}", schema, table, status)

    async def delete_row(
        self,
        database: str,
        schema: str,
        table: str,
        row_identity: str,
    ) -> None:
        row_identity = require_row_identity(row_identity)
        statement = (
            f"DELETE FROM {quote_identifier(schema)}.{quote_identifier(table)} "
            "WHERE ctid = $1::tid"
        )
        status = await self._execute(database, statement, row_identity)
        logger.info("Deleted from {}.{} at {}: {}", schema, table, row_identity, status)

    async def execute_query(self, query: str) -> list[Row]:
        query = query.strip()
        if not query:
            return []
        logger.debug("Executing query on {}: {}", self.primary_database, query)
        return await self._fetch(self.primary_database, query)
