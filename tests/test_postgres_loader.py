import asyncpg
import pytest

from dbpanes.config import ConnectionConfig
from dbpanes.loader import ConnectivityError, QueryError, open_loader
from dbpanes.postgres_loader import PostgresLoader
from dbpanes.tree_model import NodeKind, TreeNode


async def _widgets_node(loader: PostgresLoader, database_name: str):
    tree = await loader.load_tree("pg")
    database = next(node for node in tree.server_node.children if node.name == database_name)
    await loader.load_children(database)
    schema = next(node for node in database.children if node.name == "public")
    await loader.load_children(schema)
    return next(node for node in schema.children if node.name == "widgets")


@pytest.mark.asyncio
async def test_unreachable_server_is_a_connectivity_error() -> None:
    connection = ConnectionConfig(
        name="nowhere",
        host="127.0.0.1",
        port=1,
        user="nobody",
        database="nothing",
    )
    with pytest.raises(ConnectivityError):
        await open_loader(connection)


@pytest.mark.asyncio
async def test_catalog_levels(
    postgres_db: str, postgres_connection: ConnectionConfig, database_name: str
) -> None:
    loader = await open_loader(postgres_connection)
    try:
        assert isinstance(loader, PostgresLoader)
        widgets = await _widgets_node(loader, database_name)
        assert widgets.kind == NodeKind.TABLE
        assert widgets.path == f"{database_name}.public.widgets"

        await loader.load_children(widgets)
        columns = {node.name: node for node in widgets.children}
        assert list(columns) == ["id", "name", "quantity", "updated_at"]
        assert columns["id"].metadata.primary_key
        assert not columns["name"].metadata.is_nullable
        assert columns["quantity"].metadata.data_type == "integer"
    finally:
        await loader.close()


@pytest.mark.asyncio
async def test_table_data_and_mutations(
    postgres_db: str, postgres_connection: ConnectionConfig, database_name: str
) -> None:
    loader = await open_loader(postgres_connection)
    try:
        rows = await loader.get_table_data(database_name, "public", "widgets", 10, 0)
        assert [row["name"] for row in rows] == ["alpha", "beta", "gamma", "delta"]
        assert all(isinstance(row["__ctid"], str) for row in rows)

        await loader.update_cell(
            database_name, "public", "widgets", "quantity", rows[0]["__ctid"], 42
        )
        await loader.insert_row(
            database_name,
            "public",
            "widgets",
            {"name": "epsilon", "quantity": 5, "updated_at": "2024-01-02 03:04:05"},
        )
        await loader.delete_row(database_name, "public", "widgets", rows[1]["__ctid"])
        with pytest.raises(QueryError):
            await loader.update_cell(database_name, "public", "widgets", "missing", "(0,1)", 1)
        with pytest.raises(ValueError):
            await loader.delete_row(database_name, "public", "widgets", "")
    finally:
        await loader.close()

    connection = await asyncpg.connect(postgres_db)
    try:
        records = await connection.fetch("SELECT name, quantity FROM public.widgets ORDER BY name")
    finally:
        await connection.close()
    assert [(record["name"], record["quantity"]) for record in records] == [
        ("alpha", 42),
        ("delta", 12),
        ("epsilon", 5),
        ("gamma", 0),
    ]


@pytest.mark.asyncio
async def test_execute_query(postgres_db: str, postgres_connection: ConnectionConfig) -> None:
    loader = await open_loader(postgres_connection)
    try:
        assert await loader.execute_query("  ") == []
        assert await loader.execute_query(" SELECT 1 AS one ") == [{"one": 1}]
        with pytest.raises(QueryError):
            await loader.execute_query("SELECT * FROM missing_table")
    finally:
        await loader.close()


class _DroppedPool:
    """Pool whose server went away after the pool was opened."""

    def __init__(self) -> None:
        self.closed = False

    async def fetch(self, query: str, *args: object) -> list:
        raise ConnectionRefusedError("connection refused")

    async def fetchval(self, query: str, *args: object) -> object:
        raise ConnectionRefusedError("connection refused")

    async def execute(self, query: str, *args: object) -> str:
        raise TimeoutError()

    async def close(self) -> None:
        self.closed = True


def _offline_connection() -> ConnectionConfig:
    return ConnectionConfig(name="pg", host="db.internal", user="app", database="app")


@pytest.mark.asyncio
async def test_lost_connection_is_a_connectivity_error() -> None:
    loader = PostgresLoader(_offline_connection())
    pool = _DroppedPool()
    loader._pools["app"] = pool
    database = TreeNode("pg_db_app", "app", NodeKind.DATABASE, path="app", level=1)
    with pytest.raises(ConnectivityError):
        await loader.load_children(database)
    with pytest.raises(ConnectivityError):
        await loader.delete_row("app", "public", "widgets", "(0,1)")
    assert database.children == []
    await loader.close()
    assert pool.closed


@pytest.mark.asyncio
async def test_failed_ping_closes_opened_pool(monkeypatch) -> None:
    loader = PostgresLoader(_offline_connection())
    pool = _DroppedPool()

    async def open_pool(database_name: str) -> _DroppedPool:
        return pool

    monkeypatch.setattr(loader, "_open_pool", open_pool)
    with pytest.raises(ConnectivityError):
        await loader.connect()
    assert pool.closed
    assert loader._pools == {}
