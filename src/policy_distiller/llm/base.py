"""
Completion provider contract.

Every backend implements the same small capability set so the analysis
orchestrator can fan out requests without knowing which service answers them.
Failures never escape ``produce_completion``; they come back as a failed
CompletionOutcome tagged with an ErrorKind.

policy_distiller/src/policy_distiller/llm/base.py
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import httpx

from policy_distiller.config import ProviderConfig
from policy_distiller.errors import ERROR_MESSAGES, CompletionError, ErrorKind

logger = logging.getLogger(__name__)

__all__ = [
    "CompletionRequest",
    "CompletionOutcome",
    "CompletionProvider",
]


@dataclass
class CompletionRequest:
    """A single prompt plus optional per-request sampling overrides."""

    prompt_text: str
    temperature_override: Optional[float] = None
    max_tokens_override: Optional[int] = None


@dataclass
class CompletionOutcome:
    """Result of one completion call: text on success, a CompletionError otherwise."""

    text: str = ""
    error: Optional[CompletionError] = None
    provider_name: str = ""
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @classmethod
    def ok(cls, text: str, provider_name: str = "", duration_seconds: float = 0.0) -> "CompletionOutcome":
        return cls(text=text, provider_name=provider_name, duration_seconds=duration_seconds)

    @classmethod
    def failure(
        cls, error: CompletionError, provider_name: str = "", duration_seconds: float = 0.0
    ) -> "CompletionOutcome":
        return cls(error=error, provider_name=provider_name, duration_seconds=duration_seconds)


class CompletionProvider(ABC):
    """Abstract base class for completion backends."""

    def __init__(self, config: ProviderConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize with a provider configuration.

        Args:
            config: Typed ProviderConfig for this backend
            transport: Optional httpx transport, used by tests to fake the backend

        """
        self.config = config
        self._transport = transport

    @abstractmethod
    def identifying_name(self) -> str:
        """Provider name for logging/display."""

    @abstractmethod
    def validate_config(self) -> bool:
        """Check that every field this backend requires is present."""

    @abstractmethod
    async def _complete(self, request: CompletionRequest, timeout: float) -> str:
        """Send one request and return the completion text or raise CompletionError."""

    def clear_transient_state(self) -> None:
        """Drop sensitive per-run state. Stateless providers have none."""

    async def produce_completion(
        self,
        request: Union[str, CompletionRequest],
        timeout: Optional[float] = None,
    ) -> CompletionOutcome:
        """Run one completion with a hard deadline.

        When the deadline passes the in-flight request is cancelled and any
        partially received body is discarded.
        """
        if isinstance(request, str):
            request = CompletionRequest(prompt_text=request)

        effective_timeout = timeout if timeout is not None else self.config.timeout_seconds
        name = self.identifying_name()
        start_time = time.time()

        try:
            text = await asyncio.wait_for(
                self._complete(request, effective_timeout), timeout=effective_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"{name} completion timed out after {effective_timeout}s")
            return CompletionOutcome.failure(
                CompletionError(ErrorKind.TIMEOUT), name, time.time() - start_time
            )
        except CompletionError as e:
            logger.warning(f"{name} completion failed ({e.kind.value}): {e.message}")
            return CompletionOutcome.failure(e, name, time.time() - start_time)

        duration = time.time() - start_time
        logger.debug(f"{name} completion succeeded in {duration:.2f}s ({len(text)} chars)")
        return CompletionOutcome.ok(text, name, duration)

    def _resolve_sampling(self, request: CompletionRequest) -> Dict[str, Any]:
        """Merge per-request overrides over the configured defaults."""
        temperature = request.temperature_override
        if temperature is None:
            temperature = self.config.temperature
        max_tokens = request.max_tokens_override
        if max_tokens is None:
            max_tokens = self.config.max_output_tokens
        return {"temperature": temperature, "max_tokens": max_tokens}

    def _url(self, path: str) -> str:
        return f"{self.config.base_endpoint.rstrip('/')}{path}"

    async def _request(
        self,
        method: str,
        url: str,
        timeout: float,
        headers: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Issue one HTTP request, translating transport failures into CompletionError."""
        logger.info(f"LLM Request: {self.identifying_name()} {method} {url}")
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await client.request(method, url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            self._handle_transport_error()
            raise CompletionError(ErrorKind.TIMEOUT) from e
        except httpx.TransportError as e:
            self._handle_transport_error()
            raise CompletionError(
                ErrorKind.NETWORK_ERROR, f"{ERROR_MESSAGES[ErrorKind.NETWORK_ERROR]} ({e})"
            ) from e

        logger.debug(f"HTTP response status: {response.status_code}")
        return response

    def _handle_transport_error(self) -> None:
        """Hook for providers holding connection-bound state."""

    @staticmethod
    def _read_json(response: httpx.Response) -> Dict[str, Any]:
        """Decode a JSON object body or raise INVALID_RESPONSE."""
        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CompletionError(ErrorKind.INVALID_RESPONSE) from e
        if not isinstance(data, dict):
            raise CompletionError(ErrorKind.INVALID_RESPONSE)
        return data

    @staticmethod
    def _extract_chat_content(data: Dict[str, Any]) -> str:
        """Pull choices[0].message.content out of a chat-completions body."""
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            logger.error(f"Invalid LLM response format. Response keys: {list(data.keys())}")
            raise CompletionError(ErrorKind.INVALID_RESPONSE)

        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content:
            logger.error("LLM response content is empty")
            raise CompletionError(ErrorKind.INVALID_RESPONSE)
        return content

    @staticmethod
    def _http_error(response: httpx.Response) -> CompletionError:
        return CompletionError(
            ErrorKind.HTTP_ERROR,
            f"HTTP {response.status_code}: {response.reason_phrase}",
            status=response.status_code,
        )
