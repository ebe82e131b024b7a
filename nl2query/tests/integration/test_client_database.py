from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from nl2query.core.errors import ClientDatabaseError
from nl2query.domain.schema import Relation
from nl2query.providers.client_db.sqlalchemy_client import SqlAlchemyClientDatabase, to_async_url


_DDL = [
    "CREATE TABLE users (id INTEGER PRIMARY KEY, email VARCHAR(255) NOT NULL UNIQUE)",
    (
        "CREATE TABLE orders ("
        "id INTEGER PRIMARY KEY, "
        "user_id INTEGER NOT NULL REFERENCES users(id), "
        "total NUMERIC(10, 2) DEFAULT 0, "
        "CHECK (total >= 0))"
    ),
    "CREATE INDEX ix_orders_user_id ON orders (user_id)",
    "INSERT INTO users (id, email) VALUES (1, 'a@example.com'), (2, 'b@example.com')",
    "INSERT INTO orders (id, user_id, total) VALUES (10, 1, 12.5), (11, 1, 3), (12, 2, 7)",
]


@pytest.fixture
async def sqlite_url(tmp_path: Path) -> str:
    url = f"sqlite:///{tmp_path / 'client.db'}"
    engine = create_async_engine(to_async_url(url))
    async with engine.begin() as conn:
        for statement in _DDL:
            await conn.exec_driver_sql(statement)
    await engine.dispose()
    return url


@pytest.fixture
async def client(sqlite_url: str):
    db = SqlAlchemyClientDatabase(connect_timeout_s=5, max_rows=100)
    await db.connect(sqlite_url)
    yield db
    await db.close()


def test_to_async_url_adds_async_drivers() -> None:
    assert to_async_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"
    assert to_async_url("postgresql://h/db") == "postgresql+asyncpg://h/db"
    assert to_async_url("sqlite:///tmp/x.db") == "sqlite+aiosqlite:///tmp/x.db"
    assert to_async_url("postgresql+psycopg://h/db") == "postgresql+psycopg://h/db"
    with pytest.raises(ClientDatabaseError):
        to_async_url("not a url")


async def test_metadata_reflects_tables_columns_and_relations(client: SqlAlchemyClientDatabase) -> None:
    metadata = await client.get_database_metadata()

    assert [table.name for table in metadata.tables] == ["orders", "users"]
    orders = metadata.tables[0]
    assert [column.name for column in orders.columns] == ["id", "user_id", "total"]
    id_column, user_column, total_column = orders.columns
    assert id_column.is_primary_key
    assert user_column.is_foreign_key and not user_column.nullable
    assert total_column.type.startswith("NUMERIC")
    assert total_column.default is not None
    assert [index.name for index in orders.indexes] == ["ix_orders_user_id"]
    assert {constraint.type for constraint in orders.constraints} >= {"PRIMARY KEY", "FOREIGN KEY"}
    assert metadata.relations == [
        Relation(source_table="orders", source_column="user_id", target_table="users", target_column="id")
    ]


async def test_execute_returns_rows_as_mappings(client: SqlAlchemyClientDatabase) -> None:
    rows = await client.execute(
        "SELECT u.email, COUNT(o.id) AS orders FROM users u JOIN orders o ON o.user_id = u.id "
        "GROUP BY u.email ORDER BY u.email"
    )

    assert rows == [{"email": "a@example.com", "orders": 2}, {"email": "b@example.com", "orders": 1}]


async def test_execute_decodes_binary_values(client: SqlAlchemyClientDatabase) -> None:
    rows = await client.execute("SELECT CAST('raw' AS BLOB) AS payload")

    assert rows == [{"payload": "raw"}]


async def test_execute_caps_returned_rows(sqlite_url: str) -> None:
    db = SqlAlchemyClientDatabase(max_rows=2)
    await db.connect(sqlite_url)
    try:
        rows = await db.execute("SELECT id FROM orders ORDER BY id")
    finally:
        await db.close()

    assert rows == [{"id": 10}, {"id": 11}]


async def test_execute_failure_carries_driver_message(client: SqlAlchemyClientDatabase) -> None:
    with pytest.raises(ClientDatabaseError) as excinfo:
        await client.execute("SELECT missing_column FROM users")

    assert "missing_column" in str(excinfo.value)


async def test_dry_run_checks_query_without_returning_rows(client: SqlAlchemyClientDatabase) -> None:
    await client.execute_dry_run("SELECT id FROM users")

    with pytest.raises(ClientDatabaseError):
        await client.execute_dry_run("SELECT id FROM no_such_table")


async def test_unreachable_database_raises(tmp_path: Path) -> None:
    db = SqlAlchemyClientDatabase(connect_timeout_s=5)

    with pytest.raises(ClientDatabaseError):
        await db.connect(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'client.db'}")
    with pytest.raises(ClientDatabaseError):
        await db.connect("nosuchdialect://host/db")
    with pytest.raises(ClientDatabaseError):
        await db.execute("SELECT 1")
