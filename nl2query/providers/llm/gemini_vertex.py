from __future__ import annotations

import asyncio
import logging

from nl2query.agent.prompts import build_query_messages, extract_sql
from nl2query.core.config import get_settings
from nl2query.core.errors import ProviderConfigError, VertexAuthError, VertexTimeoutError

logger = logging.getLogger(__name__)


class GeminiVertexProvider:
    def __init__(self, request_id: str | None = None) -> None:
        self._settings = get_settings()
        self._request_id = request_id

    def _format_messages(self, messages: list[dict]) -> str:
        # Preserve roles and keep system guidance at the top of the prompt.
        system_lines: list[str] = []
        other_lines: list[str] = []
        for msg in messages:
            role = msg.get("role", "user")
            line = f"{role.upper()}: {msg.get('content', '')}"
            if role == "system":
                system_lines.append(line)
            else:
                other_lines.append(line)
        return "\n".join(system_lines + other_lines)

    def _validate_config(self) -> tuple[str, str, str]:
        # Fail fast to avoid confusing downstream SDK errors.
        project = self._settings.google_cloud_project
        location = self._settings.google_cloud_location
        model = self._settings.gemini_model
        missing = []
        if not project:
            missing.append("GOOGLE_CLOUD_PROJECT")
        if not location:
            missing.append("GOOGLE_CLOUD_LOCATION")
        if not model:
            missing.append("GEMINI_MODEL")
        if missing:
            raise ProviderConfigError(f"Vertex config missing: set {', '.join(missing)} in .env.")
        return project, location, model

    async def generate_query(self, prompt: str, contexts: list[str], *additional_prompts: str) -> str:
        project, location, model_name = self._validate_config()
        timeout_s = max(1, int(self._settings.vertex_timeout_s))

        try:
            from vertexai import init
            from vertexai.generative_models import GenerativeModel
            from google.auth.exceptions import DefaultCredentialsError, RefreshError
            from google.api_core.exceptions import PermissionDenied, Unauthenticated
        except ImportError as exc:  # pragma: no cover - import errors are environment-specific
            raise ProviderConfigError("Vertex AI SDK not available. Install google-cloud-aiplatform.") from exc

        messages = build_query_messages(prompt, contexts, list(additional_prompts))
        try:
            logger.info(
                "vertex_generate_start request_id=%s model=%s feedback=%s",
                self._request_id,
                model_name,
                len(additional_prompts) // 2,
            )
            init(project=project, location=location)
            model = GenerativeModel(model_name)
            response = await asyncio.wait_for(
                model.generate_content_async(self._format_messages(messages)),
                timeout=timeout_s,
            )
        except (DefaultCredentialsError, RefreshError, PermissionDenied, Unauthenticated) as exc:
            logger.warning("vertex_generate_auth_error request_id=%s", self._request_id)
            raise VertexAuthError("Vertex auth error: run `gcloud auth application-default login`.") from exc
        except asyncio.TimeoutError as exc:
            logger.warning("vertex_generate_timeout request_id=%s", self._request_id)
            raise VertexTimeoutError("Vertex request timed out.") from exc
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("vertex_generate_error request_id=%s", self._request_id)
            raise ProviderConfigError("Vertex AI request failed. Check credentials and model access.") from exc

        text = getattr(response, "text", None) or ""
        return extract_sql(text)
