from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class WorkspaceStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    ERROR = "ERROR"


@dataclass
class Column:
    name: str
    type: str
    nullable: bool = True
    default: str | None = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    comments: str = ""


@dataclass
class Index:
    name: str
    columns: list[str] = field(default_factory=list)
    unique: bool = False


@dataclass
class Constraint:
    name: str
    type: str
    columns: list[str] = field(default_factory=list)
    reference: str = ""


@dataclass
class Table:
    name: str
    # Ordinal order from the source database; part of the checksum.
    columns: list[Column] = field(default_factory=list)
    indexes: list[Index] = field(default_factory=list)
    constraints: list[Constraint] = field(default_factory=list)
    comments: str = ""


@dataclass
class Relation:
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    relation_type: str = "many_to_one"


@dataclass
class SchemaMetadata:
    tenant_id: str = ""
    tables: list[Table] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)
    checksum: str = ""

    def column_count(self) -> int:
        return sum(len(table.columns) for table in self.tables)


@dataclass
class Vector:
    id: str
    tenant_id: str
    embedding: list[float]
    content: str
    metadata: dict[str, str] = field(default_factory=dict)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QueryResult:
    tenant_id: str
    result_query: str | None = None
    # Populated only when a safe, read-only query executed successfully.
    result_data: list[dict[str, Any]] | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
