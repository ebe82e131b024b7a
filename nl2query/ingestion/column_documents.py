from __future__ import annotations

import json

from nl2query.domain.schema import Column, SchemaMetadata, Table


# Field order is part of the document format; embeddings depend on it.
COLUMN_FIELDS = (
    "tenant_id",
    "table",
    "column",
    "type",
    "nullable",
    "primary_key",
    "foreign_key",
    "comment",
)

_NEEDS_QUOTING = set(',:"\n\r\t[]{}')


def _encode_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = "" if value is None else str(value)
    if text != text.strip() or any(char in _NEEDS_QUOTING for char in text):
        return json.dumps(text)
    return text


def column_document(tenant_id: str, table: Table, column: Column) -> str:
    """Render one column as a single-row tabular record.

    Example::

        [1]{tenant_id,table,column,type,nullable,primary_key,foreign_key,comment}:
          tenant_ab12,users,id,INTEGER,false,true,false,
    """
    values = (
        tenant_id,
        table.name,
        column.name,
        column.type,
        column.nullable,
        column.is_primary_key,
        column.is_foreign_key,
        column.comments,
    )
    header = f"[1]{{{','.join(COLUMN_FIELDS)}}}:"
    row = ",".join(_encode_value(value) for value in values)
    return f"{header}\n  {row}"


def column_documents(metadata: SchemaMetadata) -> list[tuple[Table, Column, str]]:
    # One embedding unit per column, in table then ordinal order.
    documents: list[tuple[Table, Column, str]] = []
    for table in metadata.tables:
        for column in table.columns:
            documents.append((table, column, column_document(metadata.tenant_id, table, column)))
    return documents
