from __future__ import annotations

import hashlib
import json
from dataclasses import asdict
from typing import Any

from nl2query.domain.schema import SchemaMetadata, Table


TENANT_ID_PREFIX = "tenant_"
# 64 bits of the digest, hex-encoded.
_TENANT_ID_HEX_CHARS = 16


def _sha256_hex(value: bytes) -> str:
    return hashlib.sha256(value).hexdigest()


def generate_tenant_id(db_url: str) -> str:
    # Same URL always maps to the same tenant; never mutate afterwards.
    digest = _sha256_hex(db_url.encode("utf-8"))
    return f"{TENANT_ID_PREFIX}{digest[:_TENANT_ID_HEX_CHARS]}"


def _canonical_table(table: Table) -> dict[str, Any]:
    # Columns keep ordinal order; everything else is sorted by name.
    return {
        "name": table.name,
        "comments": table.comments,
        "columns": [asdict(column) for column in table.columns],
        "indexes": [
            asdict(index) for index in sorted(table.indexes, key=lambda item: item.name)
        ],
        "constraints": [
            asdict(constraint)
            for constraint in sorted(table.constraints, key=lambda item: (item.name, item.type))
        ],
    }


def canonical_schema_bytes(metadata: SchemaMetadata) -> bytes:
    """Serialize the schema shape independent of extraction order.

    Tenant id and any previously assigned checksum are excluded so the digest
    depends on the tables and relations alone.
    """
    tables = sorted(metadata.tables, key=lambda table: table.name)
    relations = sorted(
        metadata.relations,
        key=lambda rel: (
            rel.source_table,
            rel.source_column,
            rel.target_table,
            rel.target_column,
            rel.relation_type,
        ),
    )
    payload = {
        "tables": [_canonical_table(table) for table in tables],
        "relations": [asdict(relation) for relation in relations],
    }
    return json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")


def generate_checksum(metadata: SchemaMetadata) -> str:
    return _sha256_hex(canonical_schema_bytes(metadata))
