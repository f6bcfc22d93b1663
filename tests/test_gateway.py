"""Tests for the hosted free tier gateway provider."""

import asyncio
import json
import time

import httpx
import pytest

from conftest import chat_body
from policy_distiller.config import default_config
from policy_distiller.errors import CompletionError, ConfigurationError, ErrorKind
from policy_distiller.llm import HostedGatewayProvider, SessionToken, TierStatus

STATUS_BODY = {
    "free_available": True,
    "balance_remaining": 12.5,
    "daily_limit": 50,
    "daily_remaining": 42,
    "reset_at": "2025-01-07T00:00:00Z",
    "tier": "paid-central",
    "zdrEnabled": True,
    "paidBudgetExhausted": False,
    "model": "openai/gpt-oss-120b",
}


class FakeGateway:
    """Routes /api/session, /api/analyze and /api/status like the hosted backend."""

    def __init__(self, analyze_status=200, analyze_body=None, session_delay=0.0):
        self.analyze_status = analyze_status
        self.analyze_body = analyze_body if analyze_body is not None else chat_body("analysis")
        self.session_delay = session_delay
        self.session_body = {"success": True, "sessionToken": "sess-1", "expiresIn": 3600}
        self.session_status = 200
        self.status_status = 200
        self.status_body = dict(STATUS_BODY)
        self.requests = []

    def calls(self, path):
        return [request for request in self.requests if request.url.path == path]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/session":
            if self.session_delay:
                await asyncio.sleep(self.session_delay)
            return httpx.Response(self.session_status, json=self.session_body)
        if request.url.path == "/api/status":
            return httpx.Response(self.status_status, json=self.status_body)
        if request.url.path == "/api/analyze":
            return httpx.Response(self.analyze_status, json=self.analyze_body)
        return httpx.Response(404)

    def transport(self):
        return httpx.MockTransport(self)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def provider(gateway_config, gateway):
    return HostedGatewayProvider(gateway_config, transport=gateway.transport())


class TestSessionToken:
    def test_without_expiry_is_valid(self):
        assert SessionToken("abc").is_valid()

    def test_expired_token_is_invalid(self):
        assert not SessionToken("abc", expires_at=time.monotonic() - 1).is_valid()

    def test_from_expires_in(self):
        token = SessionToken.from_expires_in("abc", 60)
        assert token.is_valid()
        assert token.expires_at > time.monotonic()
        assert SessionToken.from_expires_in("abc", None).expires_at is None


class TestSessionNegotiation:
    """Test single-flight, single-use session negotiation."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_negotiation(self, gateway_config):
        gateway = FakeGateway(session_delay=0.05)
        provider = HostedGatewayProvider(gateway_config, transport=gateway.transport())
        provider.set_verification_token("turnstile-1")

        tokens = await asyncio.gather(*(provider.obtain_session_token() for _ in range(4)))

        assert tokens == ["sess-1"] * 4
        assert len(gateway.calls("/api/session")) == 1
        session_request = gateway.calls("/api/session")[0]
        assert session_request.headers["X-Turnstile-Token"] == "turnstile-1"
        assert json.loads(session_request.content) == {"turnstileToken": "turnstile-1"}
        assert provider.has_session()
        assert not provider.negotiation_pending()

    @pytest.mark.asyncio
    async def test_cached_session_needs_no_request(self, provider, gateway):
        provider.set_verification_token("turnstile-1")
        await provider.obtain_session_token()

        assert await provider.obtain_session_token() == "sess-1"
        assert len(gateway.calls("/api/session")) == 1

    @pytest.mark.asyncio
    async def test_missing_verification_token_sends_nothing(self, provider, gateway):
        with pytest.raises(ConfigurationError, match="Turnstile token required"):
            await provider.obtain_session_token()
        assert gateway.requests == []

    @pytest.mark.asyncio
    async def test_empty_verification_token_sends_nothing(self, provider, gateway):
        provider.set_verification_token("")
        with pytest.raises(ConfigurationError):
            await provider.obtain_session_token()
        assert gateway.requests == []

    @pytest.mark.asyncio
    async def test_verification_token_is_single_use(self, provider, gateway):
        gateway.session_status = 401
        provider.set_verification_token("turnstile-1")

        with pytest.raises(CompletionError) as excinfo:
            await provider.obtain_session_token()
        assert excinfo.value.kind is ErrorKind.VERIFICATION_FAILED

        # Consumed by the failed attempt; no second negotiation with it
        with pytest.raises(ConfigurationError):
            await provider.obtain_session_token()
        assert len(gateway.calls("/api/session")) == 1
        assert not provider.negotiation_pending()

    @pytest.mark.asyncio
    async def test_unsuccessful_body_reports_gateway_error(self, provider, gateway):
        gateway.session_body = {"success": False, "error": "Turnstile expired"}
        provider.set_verification_token("turnstile-1")

        with pytest.raises(CompletionError, match="Turnstile expired"):
            await provider.obtain_session_token()
        assert not provider.has_session()

    @pytest.mark.asyncio
    async def test_non_401_failure_status(self, provider, gateway):
        gateway.session_status = 500
        provider.set_verification_token("turnstile-1")

        with pytest.raises(CompletionError, match="Failed to obtain session token: 500"):
            await provider.obtain_session_token()

    @pytest.mark.asyncio
    async def test_new_verification_token_clears_session(self, provider):
        provider.set_verification_token("turnstile-1")
        await provider.obtain_session_token()
        assert provider.has_session()

        provider.set_verification_token("turnstile-2")

        assert not provider.has_session()
        assert not provider.negotiation_pending()

    @pytest.mark.asyncio
    async def test_superseded_negotiation_is_not_cached(self, gateway_config):
        gateway = FakeGateway(session_delay=0.05)
        provider = HostedGatewayProvider(gateway_config, transport=gateway.transport())
        provider.set_verification_token("turnstile-1")

        first = asyncio.ensure_future(provider.obtain_session_token())
        await asyncio.sleep(0)
        assert provider.negotiation_pending()

        provider.set_verification_token("turnstile-2")
        assert not provider.negotiation_pending()

        assert await first == "sess-1"
        assert not provider.has_session()

    @pytest.mark.asyncio
    async def test_clear_session_token(self, provider):
        provider.set_verification_token("turnstile-1")
        await provider.obtain_session_token()

        provider.clear_session_token()

        assert not provider.has_session()


class TestGatewayCompletion:
    """Test /api/analyze authorization and status mapping."""

    @pytest.mark.asyncio
    async def test_completion_uses_negotiated_session(self, provider, gateway):
        provider.set_verification_token("turnstile-1")

        outcome = await provider.produce_completion("prompt")

        assert outcome.success
        assert outcome.text == "analysis"
        analyze = gateway.calls("/api/analyze")[0]
        assert analyze.headers["X-Session-Token"] == "sess-1"
        assert "X-Turnstile-Token" not in analyze.headers
        payload = json.loads(analyze.content)
        assert payload["model"] == "openai/gpt-oss-120b:free"
        assert payload["messages"] == [{"role": "user", "content": "prompt"}]
        assert payload["max_tokens"] == 32000

    @pytest.mark.asyncio
    async def test_parallel_completions_negotiate_once(self, gateway_config):
        gateway = FakeGateway(session_delay=0.05)
        provider = HostedGatewayProvider(gateway_config, transport=gateway.transport())
        provider.set_verification_token("turnstile-1")

        outcomes = await asyncio.gather(*(provider.produce_completion(f"p{i}") for i in range(4)))

        assert all(outcome.success for outcome in outcomes)
        assert len(gateway.calls("/api/session")) == 1
        assert len(gateway.calls("/api/analyze")) == 4

    @pytest.mark.asyncio
    async def test_raw_token_when_negotiation_disabled(self, gateway_config, gateway):
        provider = HostedGatewayProvider(
            gateway_config, transport=gateway.transport(), negotiate_session=False
        )
        provider.set_verification_token("turnstile-1")

        await provider.produce_completion("first")
        await provider.produce_completion("second")

        first, second = gateway.calls("/api/analyze")
        assert first.headers["X-Turnstile-Token"] == "turnstile-1"
        assert "X-Turnstile-Token" not in second.headers
        assert gateway.calls("/api/session") == []

    @pytest.mark.asyncio
    async def test_byok_header(self, gateway):
        config = default_config("hosted-free", base_endpoint="https://gateway.test", credential="sk-or-mine")
        provider = HostedGatewayProvider(config, transport=gateway.transport())

        await provider.produce_completion("prompt")

        assert gateway.calls("/api/analyze")[0].headers["X-User-Api-Key"] == "sk-or-mine"

    @pytest.mark.asyncio
    async def test_set_user_api_key(self, provider, gateway):
        provider.set_user_api_key("sk-or-later")

        await provider.produce_completion("prompt")

        assert gateway.calls("/api/analyze")[0].headers["X-User-Api-Key"] == "sk-or-later"

    @pytest.mark.asyncio
    async def test_rate_limit_carries_reset_time(self, gateway_config):
        gateway = FakeGateway(analyze_status=429, analyze_body={"reset_at": "2025-01-07T00:00:00Z"})
        provider = HostedGatewayProvider(gateway_config, transport=gateway.transport())

        outcome = await provider.produce_completion("prompt")

        assert outcome.kind is ErrorKind.RATE_LIMITED
        assert outcome.error.reset_at == "2025-01-07T00:00:00Z"
        assert "2025-01-07T00:00:00Z" in outcome.message
        assert "OpenRouter" in outcome.message

    @pytest.mark.asyncio
    async def test_rate_limit_without_reset_time(self, gateway_config):
        gateway = FakeGateway(analyze_status=429, analyze_body={})
        provider = HostedGatewayProvider(gateway_config, transport=gateway.transport())

        outcome = await provider.produce_completion("prompt")

        assert "resets tomorrow" in outcome.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, kind",
        [
            (401, ErrorKind.VERIFICATION_FAILED),
            (402, ErrorKind.BUDGET_EXHAUSTED),
            (503, ErrorKind.SERVICE_UNAVAILABLE),
            (418, ErrorKind.HTTP_ERROR),
        ],
    )
    async def test_status_mapping(self, gateway_config, status, kind):
        gateway = FakeGateway(analyze_status=status, analyze_body={"error": "x"})
        provider = HostedGatewayProvider(gateway_config, transport=gateway.transport())

        outcome = await provider.produce_completion("prompt")

        assert outcome.kind is kind
        assert outcome.error.status == status

    @pytest.mark.asyncio
    async def test_missing_content_is_invalid_response(self, gateway_config):
        gateway = FakeGateway(analyze_body={"choices": []})
        provider = HostedGatewayProvider(gateway_config, transport=gateway.transport())

        outcome = await provider.produce_completion("prompt")

        assert outcome.kind is ErrorKind.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_transport_error_clears_session(self, provider, gateway):
        provider.set_verification_token("turnstile-1")
        await provider.obtain_session_token()

        async def broken(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadError("connection reset", request=request)

        provider._transport = httpx.MockTransport(broken)
        outcome = await provider.produce_completion("prompt")

        assert outcome.kind is ErrorKind.NETWORK_ERROR
        assert not provider.has_session()

    @pytest.mark.asyncio
    async def test_clear_transient_state_keeps_byok_key(self, gateway):
        config = default_config("hosted-free", base_endpoint="https://gateway.test", credential="sk-or-mine")
        provider = HostedGatewayProvider(config, transport=gateway.transport())
        provider.set_verification_token("turnstile-1")
        await provider.obtain_session_token()
        provider.set_verification_token("turnstile-2")

        provider.clear_transient_state()

        assert not provider.has_session()
        with pytest.raises(ConfigurationError):
            await provider.obtain_session_token()
        await provider.produce_completion("prompt")
        assert gateway.calls("/api/analyze")[0].headers["X-User-Api-Key"] == "sk-or-mine"


class TestTierStatus:
    """Test status fetch and cache."""

    @pytest.mark.asyncio
    async def test_get_status_does_not_cache(self, provider):
        status = await provider.get_status()

        assert status.free_available is True
        assert status.daily_remaining == 42
        assert status.current_tier == "paid-central"
        assert status.zdr_enabled is True
        assert status.tier_model == "openai/gpt-oss-120b"
        assert provider.get_cached_status() is None

    @pytest.mark.asyncio
    async def test_cache_round_trip(self, provider, gateway):
        assert provider.is_zdr_enabled() is False
        assert provider.get_current_tier() is None

        await provider.check_and_cache_status()
        assert provider.is_zdr_enabled() is True
        assert provider.get_current_tier() == "paid-central"

        gateway.status_body = dict(STATUS_BODY, tier="paid-user", zdrEnabled=False)
        await provider.check_and_cache_status()
        assert provider.get_current_tier() == "paid-user"
        assert provider.is_zdr_enabled() is False

        provider.clear_cached_status()
        assert provider.get_cached_status() is None
        assert provider.get_current_tier() is None

    @pytest.mark.asyncio
    async def test_status_failure(self, provider, gateway):
        gateway.status_status = 500

        with pytest.raises(CompletionError, match="Failed to get free tier status: 500"):
            await provider.get_status()

    @pytest.mark.asyncio
    async def test_invalid_status_body(self, provider, gateway):
        gateway.status_body = {"daily_remaining": "many"}

        with pytest.raises(CompletionError) as excinfo:
            await provider.get_status()
        assert excinfo.value.kind is ErrorKind.INVALID_RESPONSE

    def test_status_accepts_camel_case(self):
        status = TierStatus.model_validate({"freeAvailable": True, "dailyRemaining": 3, "tier": "free"})
        assert status.free_available is True
        assert status.daily_remaining == 3
        assert status.current_tier == "free"


class TestModelDisplayName:
    @pytest.mark.parametrize(
        "model, expected",
        [
            ("openai/gpt-oss-120b", "Gpt Oss 120b"),
            ("openai/gpt-oss-120b:free", "Gpt Oss 120b:Free"),
            ("gpt-4-turbo", "Gpt 4 Turbo"),
            ("anthropic/claude-3.5-sonnet", "Claude 3.5 Sonnet"),
        ],
    )
    def test_format_model_display_name(self, model, expected):
        assert HostedGatewayProvider.format_model_display_name(model) == expected

    def test_free_tier_model(self):
        assert HostedGatewayProvider.free_tier_model() == "openai/gpt-oss-120b:free"
        assert HostedGatewayProvider.free_tier_model_display_name() == "Gpt Oss 120b:Free"
