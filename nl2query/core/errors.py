from __future__ import annotations

from typing import Iterable


# Advisories returned alongside a successful result; never raised.
WARN_USE_EXISTING_SCHEMA = (
    "Will using existing stored schema because connection to client database could not be established."
)
WARN_WONT_EXECUTE_CLIENT_DATABASE = (
    "Query won't be executed because connection to client database could not be established."
)
WARN_DDL_DML_DETECTED = "DDL or DML statement detected. Query won't be executed."
WARN_QUERY_GENERATED_UNSAFE = "Query could not be generated safely after retries."


class NL2QueryError(Exception):
    """Base error for nl2query.

    Carries an HTTP-like status code and an ordered list of extra details that
    are appended to the rendered message.
    """

    default_status_code = 500
    default_message = "Internal error"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        additional_error_info: Iterable[str] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.status_code = status_code or self.default_status_code
        self.additional_error_info: list[str] = list(additional_error_info or [])
        super().__init__(self.message)

    def add_additional_error_info(self, info: str) -> "NL2QueryError":
        self.additional_error_info.append(info)
        return self

    def add_batch_additional_error_info(self, infos: Iterable[str]) -> "NL2QueryError":
        self.additional_error_info.extend(infos)
        return self

    def __str__(self) -> str:
        if self.additional_error_info:
            return f"{self.message}: {'; '.join(self.additional_error_info)}"
        return self.message


class StatusInProgressError(NL2QueryError):
    """Workspace ingestion is running; reject work that depends on its vectors."""

    default_status_code = 409
    default_message = "Workspace ingestion is in progress"


class WorkspaceNotFoundError(NL2QueryError):
    default_status_code = 404
    default_message = "Workspace not found"


class WorkspaceStoreError(NL2QueryError):
    """Internal store failure."""

    default_message = "Workspace store failure"


class StatusRegistryError(NL2QueryError):
    default_message = "Status registry failure"


class DecryptionError(NL2QueryError):
    default_message = "Stored database URL could not be decrypted"


class ClientDatabaseError(NL2QueryError):
    """Client database connection or execution failure."""

    default_status_code = 502
    default_message = "Client database failure"


class EmbeddingError(NL2QueryError):
    default_message = "Embedding failure"


class VectorStoreError(NL2QueryError):
    default_message = "Vector store failure"


class QueryValidationError(NL2QueryError):
    default_status_code = 422
    default_message = "Query failed validation"


class TaskQueueError(NL2QueryError):
    default_status_code = 503
    default_message = "Ingestion queue unavailable"


class ProviderConfigError(NL2QueryError):
    """Missing or invalid provider configuration."""

    default_message = "Provider configuration error"


class VertexAuthError(NL2QueryError):
    """Vertex authentication/authorization failure."""

    default_status_code = 502
    default_message = "Vertex authentication failed"


class VertexTimeoutError(NL2QueryError):
    """Vertex request timed out."""

    default_status_code = 504
    default_message = "Vertex request timed out"
