from __future__ import annotations

from typing import Any, Callable, Protocol

from nl2query.domain.schema import SchemaMetadata


class ClientDatabase(Protocol):
    async def connect(self, url: str) -> None:
        ...

    async def close(self) -> None:
        ...

    async def execute(self, query: str) -> list[dict[str, Any]]:
        ...

    async def execute_dry_run(self, query: str) -> None:
        ...

    async def get_database_metadata(self) -> SchemaMetadata:
        ...


# Handles hold a live connection, so each request builds its own.
ClientDatabaseFactory = Callable[[], ClientDatabase]
