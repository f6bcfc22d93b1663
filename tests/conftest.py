"""Pytest configuration and fixtures for policy-distiller tests."""

import json
import tempfile
from pathlib import Path
from typing import Callable, Dict, Iterator

import httpx
import pytest

from policy_distiller.config import ENV_PREFIX, ProviderConfig, default_config

ENV_NAMES = [
    "PROVIDER",
    "API_KEY",
    "MODEL",
    "BASE_URL",
    "TEMPERATURE",
    "MAX_TOKENS",
    "CONTEXT_WINDOW",
    "TIMEOUT",
    "GATEWAY_URL",
]

SAMPLE_POLICY = """Privacy Policy!!!

We collect your name, email address and location data when you use the app.
We share data with advertising partners and analytics providers.
You may request deletion of your account by emailing privacy@example.com...
"""

SUMMARY_JSON = {
    "summary": {
        "brief": "The app collects contact and location data and shares it with advertisers.",
        "detailed": "- Collects name, email and location\n- Shares with advertisers\n- Deletion by email",
    }
}

RISKS_JSON = {
    "risks": [
        {
            "category": "data sharing",
            "severity": "high",
            "description": "Data is shared with advertising partners.",
            "title": "Advertising sharing",
            "location": "Sharing",
            "recommendation": "Opt out of personalized ads.",
        },
        {
            "category": "retention",
            "severity": "moderate",
            "description": "No retention period is stated.",
        },
    ]
}

KEY_TERMS_JSON = {
    "key_terms": [
        {"term": "Analytics provider", "definition": "A company that measures app usage."},
    ]
}

SCORECARD_JSON = {
    "thirdPartySharing": {"score": 3, "weight": 20, "summary": "Broad advertising sharing."},
    "userRights": {"score": 6, "weight": 18, "summary": "Deletion on request."},
    "dataCollection": {"score": 5, "weight": 18, "summary": "Location collected."},
    "dataRetention": {"score": 4, "weight": 14, "summary": "Unclear retention."},
    "purposeClarity": {"score": 6, "weight": 12, "summary": "Mostly clear."},
    "securityMeasures": {"score": 5, "weight": 10, "summary": "Generic statements."},
    "policyTransparency": {"score": 7, "weight": 8, "summary": "Short and readable."},
    "topConcerns": ["Advertising partners receive personal data"],
    "positiveAspects": ["Deletion is available"],
}

ASPECT_RESPONSES: Dict[str, dict] = {
    "summary": SUMMARY_JSON,
    "risks": RISKS_JSON,
    "key_terms": KEY_TERMS_JSON,
    "scorecard": SCORECARD_JSON,
}


def aspect_of_prompt(prompt: str) -> str:
    """Identify which aspect a default prompt asks for."""
    if '"summary": {' in prompt:
        return "summary"
    if '"risks": [' in prompt:
        return "risks"
    if '"key_terms": [' in prompt:
        return "key_terms"
    if '"topConcerns"' in prompt:
        return "scorecard"
    raise AssertionError(f"Unrecognized prompt: {prompt[:80]}")


def chat_body(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer environment variables out of config resolution."""
    for name in ENV_NAMES:
        monkeypatch.delenv(f"{ENV_PREFIX}{name}", raising=False)
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_policy() -> str:
    return SAMPLE_POLICY


@pytest.fixture
def openrouter_config() -> ProviderConfig:
    return default_config("openrouter", credential="sk-or-test", timeout_seconds=5.0)


@pytest.fixture
def gateway_config() -> ProviderConfig:
    return default_config("hosted-free", base_endpoint="https://gateway.test", timeout_seconds=5.0)


@pytest.fixture
def analysis_transport() -> Callable[..., httpx.MockTransport]:
    """Build a chat-completions transport answering each aspect prompt.

    ``failing`` maps aspect names to an HTTP status (or a raw text body) to
    return instead of the canned JSON for that aspect.
    """

    def build(failing: Dict[str, object] = None) -> httpx.MockTransport:
        failing = failing or {}

        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            aspect = aspect_of_prompt(payload["messages"][0]["content"])
            override = failing.get(aspect)
            if isinstance(override, int):
                return httpx.Response(override, json={"error": "boom"})
            if isinstance(override, str):
                return httpx.Response(200, json=chat_body(override))
            return httpx.Response(200, json=chat_body(json.dumps(ASPECT_RESPONSES[aspect])))

        return httpx.MockTransport(handler)

    return build


@pytest.fixture
def pyproject_toml(temp_dir: Path) -> Path:
    """Create a sample pyproject.toml file."""
    config_path = temp_dir / "pyproject.toml"
    config_path.write_text(
        """[tool.policy_distiller.provider]
kind = "ollama"
model = "mistral"
base_url = "http://gpu-box:11434"
temperature = 0.2
timeout = 120
"""
    )
    return config_path
