from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector

from nl2query.core.config import EMBED_DIM


class Base(DeclarativeBase):
    pass


class Workspace(Base):
    __tablename__ = "workspaces"

    # Tenant ids are derived from the client DB URL, so they double as the primary key.
    tenant_id: Mapped[str] = mapped_column(String, primary_key=True)
    # Store only ciphertext; the plaintext URL carries client credentials.
    encrypted_db_url: Mapped[str] = mapped_column(Text)
    # Checksum of the last schema handed to ingestion.
    checksum: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class SchemaVector(Base):
    __tablename__ = "schema_vectors"

    # Deterministic "{tenant}:{table}.{column}" ids keep re-ingestion stable.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    content: Mapped[str] = mapped_column(Text)
    # Keep schema aligned with the embedding dimension used at runtime.
    embedding: Mapped[list[float]] = mapped_column(Vector(EMBED_DIM))
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
