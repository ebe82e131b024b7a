from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from nl2query.core.config import get_settings
from nl2query.core.errors import ClientDatabaseError
from nl2query.domain.schema import Column, Constraint, Index, Relation, SchemaMetadata, Table


logger = logging.getLogger(__name__)

# Map driver-less URLs to async drivers shipped with the project.
_ASYNC_SCHEMES = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def to_async_url(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if not sep:
        raise ClientDatabaseError("Database URL must include a scheme")
    if "+" in scheme:
        return url
    return f"{_ASYNC_SCHEMES.get(scheme.lower(), scheme)}://{rest}"


def _error_text(exc: BaseException) -> str:
    # Prefer the driver message; it is what the LLM needs to repair a query.
    orig = getattr(exc, "orig", None)
    return str(orig or exc).strip() or exc.__class__.__name__


def _normalize_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return value


def _optional(call, *args) -> Any:
    # Some dialects do not implement every reflection hook.
    try:
        return call(*args)
    except NotImplementedError:
        return None


def _reflect_schema(sync_conn: Connection) -> tuple[list[Table], list[Relation]]:
    inspector = inspect(sync_conn)
    tables: list[Table] = []
    relations: list[Relation] = []

    for table_name in sorted(inspector.get_table_names()):
        pk = inspector.get_pk_constraint(table_name) or {}
        pk_columns = list(pk.get("constrained_columns") or [])
        foreign_keys = inspector.get_foreign_keys(table_name) or []
        fk_columns = {
            column for fk in foreign_keys for column in (fk.get("constrained_columns") or [])
        }

        columns = [
            Column(
                name=col["name"],
                type=str(col["type"]),
                nullable=bool(col.get("nullable", True)),
                default=None if col.get("default") is None else str(col["default"]),
                is_primary_key=col["name"] in pk_columns,
                is_foreign_key=col["name"] in fk_columns,
                comments=col.get("comment") or "",
            )
            for col in inspector.get_columns(table_name)
        ]

        indexes = [
            Index(
                name=idx.get("name") or "",
                columns=[name for name in (idx.get("column_names") or []) if name],
                unique=bool(idx.get("unique")),
            )
            for idx in inspector.get_indexes(table_name)
        ]

        constraints: list[Constraint] = []
        if pk_columns:
            constraints.append(
                Constraint(name=pk.get("name") or f"{table_name}_pkey", type="PRIMARY KEY", columns=pk_columns)
            )
        for fk in foreign_keys:
            referred_columns = list(fk.get("referred_columns") or [])
            constraints.append(
                Constraint(
                    name=fk.get("name") or "",
                    type="FOREIGN KEY",
                    columns=list(fk.get("constrained_columns") or []),
                    reference=f"{fk['referred_table']}({', '.join(referred_columns)})",
                )
            )
            for source_column, target_column in zip(fk.get("constrained_columns") or [], referred_columns):
                relations.append(
                    Relation(
                        source_table=table_name,
                        source_column=source_column,
                        target_table=fk["referred_table"],
                        target_column=target_column,
                        relation_type="many_to_one",
                    )
                )
        for unique in _optional(inspector.get_unique_constraints, table_name) or []:
            constraints.append(
                Constraint(
                    name=unique.get("name") or "",
                    type="UNIQUE",
                    columns=list(unique.get("column_names") or []),
                )
            )
        for check in _optional(inspector.get_check_constraints, table_name) or []:
            constraints.append(
                Constraint(name=check.get("name") or "", type="CHECK", reference=check.get("sqltext") or "")
            )

        comment = _optional(inspector.get_table_comment, table_name) or {}
        tables.append(
            Table(
                name=table_name,
                columns=columns,
                indexes=indexes,
                constraints=constraints,
                comments=comment.get("text") or "",
            )
        )

    return tables, relations


class SqlAlchemyClientDatabase:
    """Tenant database access through SQLAlchemy's async engines.

    Queries run on a connection that is never committed, so anything that
    slips past validation is rolled back when the connection closes.
    """

    def __init__(self, *, connect_timeout_s: int | None = None, max_rows: int | None = None) -> None:
        settings = get_settings()
        self._connect_timeout_s = connect_timeout_s or settings.client_db_connect_timeout_s
        self._max_rows = max_rows or settings.client_db_max_rows
        self._engine: AsyncEngine | None = None

    async def connect(self, url: str) -> None:
        await self.close()
        try:
            engine = create_async_engine(to_async_url(url), pool_pre_ping=True)
        except (ArgumentError, SQLAlchemyError, ImportError, ValueError) as exc:
            raise ClientDatabaseError(f"Invalid client database URL: {_error_text(exc)}") from exc
        try:
            await asyncio.wait_for(self._ping(engine), timeout=self._connect_timeout_s)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            await engine.dispose()
            logger.warning("client_db_connect_failed error=%s", exc.__class__.__name__)
            raise ClientDatabaseError(f"Client database unreachable: {_error_text(exc)}") from exc
        self._engine = engine

    @staticmethod
    async def _ping(engine: AsyncEngine) -> None:
        async with engine.connect() as conn:
            await conn.exec_driver_sql("SELECT 1")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    def _require_engine(self) -> AsyncEngine:
        if self._engine is None:
            raise ClientDatabaseError("Client database is not connected")
        return self._engine

    async def execute(self, query: str) -> list[dict[str, Any]]:
        engine = self._require_engine()
        try:
            async with engine.connect() as conn:
                # Driver-level execution keeps ":name" text out of bind parsing.
                result = await conn.exec_driver_sql(query)
                if not result.returns_rows:
                    return []
                rows = result.mappings().fetchmany(self._max_rows)
        except SQLAlchemyError as exc:
            raise ClientDatabaseError(_error_text(exc)) from exc
        return [{key: _normalize_value(value) for key, value in row.items()} for row in rows]

    async def execute_dry_run(self, query: str) -> None:
        engine = self._require_engine()
        try:
            async with engine.connect() as conn:
                await conn.exec_driver_sql(f"EXPLAIN {query}")
        except SQLAlchemyError as exc:
            raise ClientDatabaseError(_error_text(exc)) from exc

    async def get_database_metadata(self) -> SchemaMetadata:
        engine = self._require_engine()
        try:
            async with engine.connect() as conn:
                tables, relations = await conn.run_sync(_reflect_schema)
        except SQLAlchemyError as exc:
            raise ClientDatabaseError(f"Schema extraction failed: {_error_text(exc)}") from exc
        return SchemaMetadata(tables=tables, relations=relations)
