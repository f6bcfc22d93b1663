"""
Hosted free-tier gateway provider.

Talks to the rate-limited hosted backend that fronts a shared OpenRouter key:
- Validates a single-use Turnstile verification token
- Exchanges it for a short-lived session token reused across parallel calls
- Reports tier/budget status (free, paid-central with ZDR, paid-user BYOK)
- Accepts an optional user API key as a bring-your-own-key fallback

All token state lives in one GatewayState owned by the provider instance.

policy_distiller/src/policy_distiller/llm/gateway.py
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from policy_distiller.config import FREE_TIER_MODEL, ProviderConfig
from policy_distiller.errors import (
    ERROR_MESSAGES,
    SWITCH_PROVIDER_HINT,
    CompletionError,
    ConfigurationError,
    ErrorKind,
)

from .base import CompletionProvider, CompletionRequest

logger = logging.getLogger(__name__)

__all__ = [
    "HostedGatewayProvider",
    "GatewayState",
    "SessionToken",
    "TierStatus",
    "SERVICE_TIERS",
]

SERVICE_TIERS = ("paid-central", "free", "paid-user")


@dataclass
class SessionToken:
    """Short-lived session credential returned by /api/session."""

    value: str
    expires_at: Optional[float] = None  # time.monotonic() deadline; None = no expiry reported

    @classmethod
    def from_expires_in(cls, value: str, expires_in: Any) -> "SessionToken":
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool) and expires_in > 0:
            return cls(value=value, expires_at=time.monotonic() + float(expires_in))
        return cls(value=value)

    def is_valid(self) -> bool:
        return bool(self.value) and (self.expires_at is None or time.monotonic() < self.expires_at)


class TierStatus(BaseModel):
    """Free tier availability as reported by GET /api/status."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    free_available: bool = Field(
        False, validation_alias=AliasChoices("free_available", "freeAvailable")
    )
    daily_remaining: int = Field(
        0, validation_alias=AliasChoices("daily_remaining", "dailyRemaining")
    )
    daily_limit: int = Field(0, validation_alias=AliasChoices("daily_limit", "dailyLimit"))
    balance_remaining: Optional[float] = Field(
        None, validation_alias=AliasChoices("balance_remaining", "balanceRemaining")
    )
    reset_at: str = Field("", validation_alias=AliasChoices("reset_at", "resetAt"))
    current_tier: Optional[str] = Field(
        None, validation_alias=AliasChoices("tier", "currentTier", "current_tier")
    )
    zdr_enabled: bool = Field(False, validation_alias=AliasChoices("zdrEnabled", "zdr_enabled"))
    paid_budget_exhausted: bool = Field(
        False, validation_alias=AliasChoices("paidBudgetExhausted", "paid_budget_exhausted")
    )
    tier_model: str = Field("", validation_alias=AliasChoices("model", "tier_model"))


@dataclass
class GatewayState:
    """Mutable token/status state, mutated only by its owning provider."""

    verification_token: Optional[str] = None
    session_token: Optional[SessionToken] = None
    pending_session: Optional["asyncio.Future[str]"] = None
    user_api_key: Optional[str] = None
    cached_status: Optional[TierStatus] = None
    generation: int = 0


class HostedGatewayProvider(CompletionProvider):
    """Provider for the hosted free tier, gated by Turnstile and session tokens."""

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        negotiate_session: bool = True,
    ):
        """Initialize the gateway provider.

        Args:
            config: ProviderConfig whose base_endpoint is the gateway URL; a
                credential, when present, is sent as the BYOK fallback key
            transport: Optional httpx transport for tests
            negotiate_session: Exchange the verification token for a session
                token before completing; when False the raw token is sent once

        """
        super().__init__(config, transport)
        self.negotiate_session = negotiate_session
        self._state = GatewayState(user_api_key=config.credential or None)

    def identifying_name(self) -> str:
        return "Hosted Free"

    def validate_config(self) -> bool:
        # Turnstile and session tokens are checked at request time
        return bool(self.config.base_endpoint)

    @staticmethod
    def free_tier_model() -> str:
        return FREE_TIER_MODEL

    @staticmethod
    def format_model_display_name(model: str) -> str:
        """Turn 'anthropic/claude-3.5-sonnet' into 'Claude 3.5 Sonnet'."""
        name = model.split("/")[1] if "/" in model else model
        name = name.replace("-", " ")
        return re.sub(r"\b\w", lambda m: m.group(0).upper(), name)

    @classmethod
    def free_tier_model_display_name(cls) -> str:
        return cls.format_model_display_name(FREE_TIER_MODEL)

    # Token management

    def set_verification_token(self, token: Optional[str]) -> None:
        """Store a fresh Turnstile token; any previous session is no longer valid."""
        self._state.verification_token = token or None
        self._invalidate_session()

    def set_user_api_key(self, api_key: Optional[str]) -> None:
        self._state.user_api_key = api_key or None

    def has_session(self) -> bool:
        session = self._state.session_token
        return session is not None and session.is_valid()

    def negotiation_pending(self) -> bool:
        return self._state.pending_session is not None

    def clear_session_token(self) -> None:
        """Clear the session token and any in-flight negotiation marker."""
        self._invalidate_session()

    def clear_transient_state(self) -> None:
        """Forget session and verification tokens at the end of a run."""
        self._invalidate_session()
        self._state.verification_token = None

    def _invalidate_session(self) -> None:
        self._state.session_token = None
        self._state.pending_session = None
        self._state.generation += 1

    def _handle_transport_error(self) -> None:
        self._state.session_token = None

    async def obtain_session_token(self) -> str:
        """Return a session token, negotiating at most once for concurrent callers.

        Raises:
            ConfigurationError: no verification token is available
            CompletionError: the gateway rejected or failed the negotiation

        """
        session = self._state.session_token
        if session is not None:
            if session.is_valid():
                return session.value
            self._state.session_token = None

        pending = self._state.pending_session
        if pending is None:
            token = self._state.verification_token
            if not token:
                raise ConfigurationError("Turnstile token required to obtain session token")
            # Single use: consumed by this attempt whatever its outcome
            self._state.verification_token = None
            pending = asyncio.ensure_future(self._negotiate_session(token, self._state.generation))
            self._state.pending_session = pending
        else:
            logger.debug("Session negotiation in flight, waiting on it")

        # shield: a waiter timing out must not cancel the shared negotiation
        return await asyncio.shield(pending)

    async def _negotiate_session(self, verification_token: str, generation: int) -> str:
        try:
            logger.info("Negotiating gateway session token")
            response = await self._request(
                "POST",
                self._url("/api/session"),
                self.config.timeout_seconds,
                {"Content-Type": "application/json", "X-Turnstile-Token": verification_token},
                {"turnstileToken": verification_token},
            )

            if response.status_code == 401:
                raise CompletionError(ErrorKind.VERIFICATION_FAILED, status=401)
            if not response.is_success:
                raise CompletionError(
                    ErrorKind.HTTP_ERROR,
                    f"Failed to obtain session token: {response.status_code}",
                    status=response.status_code,
                )

            data = self._read_json(response)
            value = data.get("sessionToken")
            if not data.get("success") or not isinstance(value, str) or not value:
                raise CompletionError(
                    ErrorKind.INVALID_RESPONSE,
                    str(data.get("error") or "Failed to obtain session token"),
                )

            session = SessionToken.from_expires_in(value, data.get("expiresIn"))
            if self._state.generation == generation:
                self._state.session_token = session
            else:
                logger.debug("Discarding session token from a superseded negotiation")
            return session.value
        finally:
            if self._state.pending_session is asyncio.current_task():
                self._state.pending_session = None

    # Completion

    async def _complete(self, request: CompletionRequest, timeout: float) -> str:
        if not self.validate_config():
            raise ConfigurationError("Hosted free tier endpoint is not configured")

        headers = {"Content-Type": "application/json"}

        session_value = None
        if self.has_session():
            session_value = self._state.session_token.value
        elif self.negotiate_session and (
            self._state.verification_token or self.negotiation_pending()
        ):
            session_value = await self.obtain_session_token()

        if session_value:
            headers["X-Session-Token"] = session_value
        elif self._state.verification_token:
            headers["X-Turnstile-Token"] = self._state.verification_token
            self._state.verification_token = None

        if self._state.user_api_key:
            headers["X-User-Api-Key"] = self._state.user_api_key

        payload = {
            "model": self.config.model_id or FREE_TIER_MODEL,
            "messages": [{"role": "user", "content": request.prompt_text}],
            **self._resolve_sampling(request),
        }

        response = await self._request("POST", self._url("/api/analyze"), timeout, headers, payload)
        if not response.is_success:
            raise self._map_error_status(response)

        return self._extract_chat_content(self._read_json(response))

    def _map_error_status(self, response: httpx.Response) -> CompletionError:
        status = response.status_code
        if status == 401:
            return CompletionError(ErrorKind.VERIFICATION_FAILED, status=status)
        if status == 429:
            reset_at = self._safe_json(response).get("reset_at") or "tomorrow"
            return CompletionError(
                ErrorKind.RATE_LIMITED,
                f"Rate limit exceeded. Free tier resets {reset_at}. {SWITCH_PROVIDER_HINT}",
                status=status,
                reset_at=str(reset_at),
            )
        if status == 402:
            return CompletionError(ErrorKind.BUDGET_EXHAUSTED, status=status)
        if status == 503:
            return CompletionError(ErrorKind.SERVICE_UNAVAILABLE, status=status)
        return self._http_error(response)

    @classmethod
    def _safe_json(cls, response: httpx.Response) -> Dict[str, Any]:
        try:
            return cls._read_json(response)
        except CompletionError:
            return {}

    # Tier status

    async def get_status(self) -> TierStatus:
        """Fetch the current free tier status without caching it."""
        response = await self._request(
            "GET",
            self._url("/api/status"),
            self.config.timeout_seconds,
            {"Content-Type": "application/json"},
        )
        if not response.is_success:
            raise CompletionError(
                ErrorKind.HTTP_ERROR,
                f"Failed to get free tier status: {response.status_code}",
                status=response.status_code,
            )

        try:
            return TierStatus.model_validate(self._read_json(response))
        except ValidationError as e:
            raise CompletionError(
                ErrorKind.INVALID_RESPONSE,
                f"{ERROR_MESSAGES[ErrorKind.INVALID_RESPONSE]} ({e.error_count()} invalid status fields)",
            ) from e

    async def check_and_cache_status(self) -> TierStatus:
        """Fetch the status and keep it for is_zdr_enabled()/get_current_tier()."""
        status = await self.get_status()
        self._state.cached_status = status
        logger.info(f"Free tier status: tier={status.current_tier}, zdr={status.zdr_enabled}")
        return status

    def get_cached_status(self) -> Optional[TierStatus]:
        return self._state.cached_status

    def clear_cached_status(self) -> None:
        self._state.cached_status = None

    def is_zdr_enabled(self) -> bool:
        status = self._state.cached_status
        return bool(status and status.zdr_enabled)

    def get_current_tier(self) -> Optional[str]:
        status = self._state.cached_status
        return status.current_tier if status else None
