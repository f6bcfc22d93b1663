"""
Direct completion backends.

Thin HTTP clients for a key-authenticated cloud service (OpenRouter) and for
self-hosted servers speaking either the prompt-completion shape (Ollama) or
the chat-message shape (LM Studio).

policy_distiller/src/policy_distiller/llm/providers.py
"""

import logging
from typing import Any, Dict

from policy_distiller.config import DEFAULT_LOCAL_CONTEXT_WINDOW
from policy_distiller.errors import ERROR_MESSAGES, CompletionError, ConfigurationError, ErrorKind

from .base import CompletionProvider, CompletionRequest

logger = logging.getLogger(__name__)

__all__ = ["OpenRouterProvider", "OllamaProvider", "LMStudioProvider"]

OPENROUTER_REFERER = "https://privacydistiller.com"
OPENROUTER_TITLE = "Privacy Policy Distiller"


class _ChatCompletionsProvider(CompletionProvider):
    """Shared request/response handling for OpenAI-style /chat/completions servers."""

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _map_error_status(self, response) -> CompletionError:
        return self._http_error(response)

    async def _complete(self, request: CompletionRequest, timeout: float) -> str:
        if not self.validate_config():
            raise ConfigurationError(f"Invalid {self.identifying_name()} configuration")

        payload: Dict[str, Any] = {
            "model": self.config.model_id,
            "messages": [{"role": "user", "content": request.prompt_text}],
            **self._resolve_sampling(request),
        }
        logger.debug(f"Model: {payload['model']}, Max tokens: {payload['max_tokens']}")

        response = await self._request(
            "POST", self._url("/chat/completions"), timeout, self._headers(), payload
        )
        if not response.is_success:
            raise self._map_error_status(response)

        return self._extract_chat_content(self._read_json(response))


class OpenRouterProvider(_ChatCompletionsProvider):
    """Key-authenticated OpenRouter cloud backend."""

    def identifying_name(self) -> str:
        return "OpenRouter"

    def validate_config(self) -> bool:
        return bool(self.config.credential and self.config.model_id and self.config.base_endpoint)

    async def _complete(self, request: CompletionRequest, timeout: float) -> str:
        if not self.config.credential:
            raise ConfigurationError("Please enter a valid API key")
        return await super()._complete(request, timeout)

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["Authorization"] = f"Bearer {self.config.credential}"
        headers["HTTP-Referer"] = OPENROUTER_REFERER
        headers["X-Title"] = OPENROUTER_TITLE
        return headers

    def _map_error_status(self, response) -> CompletionError:
        if response.status_code == 429:
            return CompletionError(
                ErrorKind.RATE_LIMITED,
                ERROR_MESSAGES[ErrorKind.RATE_LIMITED],
                status=429,
                reset_at=response.headers.get("x-ratelimit-reset"),
            )
        return super()._map_error_status(response)


class LMStudioProvider(_ChatCompletionsProvider):
    """LM Studio local server (chat-message wire shape, no auth)."""

    def identifying_name(self) -> str:
        return "LM Studio"

    def validate_config(self) -> bool:
        return bool(self.config.model_id and self.config.base_endpoint)


class OllamaProvider(CompletionProvider):
    """Ollama local server (single-prompt /api/generate wire shape)."""

    def identifying_name(self) -> str:
        return "Ollama"

    def validate_config(self) -> bool:
        return bool(self.config.model_id and self.config.base_endpoint)

    async def _complete(self, request: CompletionRequest, timeout: float) -> str:
        if not self.validate_config():
            raise ConfigurationError("Invalid Ollama configuration")

        sampling = self._resolve_sampling(request)
        payload = {
            "model": self.config.model_id,
            "prompt": request.prompt_text,
            "stream": False,
            "options": {
                "temperature": sampling["temperature"],
                "num_predict": sampling["max_tokens"],
                "num_ctx": self.config.context_window or DEFAULT_LOCAL_CONTEXT_WINDOW,
            },
        }

        response = await self._request(
            "POST",
            self._url("/api/generate"),
            timeout,
            {"Content-Type": "application/json"},
            payload,
        )
        if not response.is_success:
            raise self._http_error(response)

        content = self._read_json(response).get("response")
        if not isinstance(content, str) or not content:
            raise CompletionError(ErrorKind.INVALID_RESPONSE)
        return content
