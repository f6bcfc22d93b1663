"""
Policy Distiller Configuration Management

Handles provider configuration loading with support for multiple config
sources and environment overrides.

Configuration priority order:
1. Explicit overrides (CLI flags, caller kwargs)
2. Environment variables (POLICY_DISTILLER_*)
3. pyproject.toml [tool.policy_distiller.provider]
4. Per-provider default values

policy_distiller/src/policy_distiller/config.py
"""

import logging
import os
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

# Handle TOML library imports - support Python 3.10 (tomli) and 3.11+ (tomllib)
try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # Python 3.10 fallback

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Configuration constants
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT_SECONDS = 600.0
DEFAULT_LOCAL_CONTEXT_WINDOW = 8192
FREE_TIER_WORKER_URL = "https://free.privacydistiller.com"
FREE_TIER_MODEL = "openai/gpt-oss-120b:free"
ENV_PREFIX = "POLICY_DISTILLER_"


class ProviderKind(str, Enum):
    """Supported completion backends."""

    OPENROUTER = "openrouter"
    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"
    HOSTED_FREE = "hosted-free"


@dataclass(frozen=True)
class ProviderDefaults:
    """Static per-backend defaults."""

    display_name: str
    base_endpoint: str
    model_id: str
    max_output_tokens: int
    context_window: Optional[int]
    requires_credential: bool
    requires_endpoint: bool


PROVIDER_DEFAULTS: Dict[ProviderKind, ProviderDefaults] = {
    ProviderKind.OPENROUTER: ProviderDefaults(
        display_name="OpenRouter",
        base_endpoint="https://openrouter.ai/api/v1",
        model_id="google/gemini-3-flash-preview",
        max_output_tokens=32000,
        context_window=None,
        requires_credential=True,
        requires_endpoint=True,
    ),
    ProviderKind.OLLAMA: ProviderDefaults(
        display_name="Ollama",
        base_endpoint="http://localhost:11434",
        model_id="llama3.1",
        max_output_tokens=4096,
        context_window=DEFAULT_LOCAL_CONTEXT_WINDOW,
        requires_credential=False,
        requires_endpoint=True,
    ),
    ProviderKind.LMSTUDIO: ProviderDefaults(
        display_name="LM Studio",
        base_endpoint="http://localhost:1234/v1",
        model_id="local-model",
        max_output_tokens=4096,
        context_window=DEFAULT_LOCAL_CONTEXT_WINDOW,
        requires_credential=False,
        requires_endpoint=True,
    ),
    ProviderKind.HOSTED_FREE: ProviderDefaults(
        display_name="Hosted Free",
        base_endpoint=FREE_TIER_WORKER_URL,
        model_id=FREE_TIER_MODEL,
        max_output_tokens=32000,
        context_window=None,
        requires_credential=False,
        requires_endpoint=True,
    ),
}


@dataclass(frozen=True)
class ProviderConfig:
    """Typed provider configuration.

    Fields may be empty; ``problems()`` reports what a backend needs that is
    missing. Nothing is validated at construction so that incomplete configs
    can be inspected and reported on.
    """

    kind: str
    model_id: str = ""
    base_endpoint: str = ""
    credential: Optional[str] = None
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: int = 4096
    context_window: Optional[int] = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def provider_kind(self) -> Optional[ProviderKind]:
        """The kind as an enum member, or None when unrecognized."""
        try:
            return ProviderKind(self.kind)
        except ValueError:
            return None

    def problems(self) -> List[str]:
        """List every backend-required field that is empty."""
        kind = self.provider_kind
        if kind is None:
            return [f"Unknown provider: {self.kind}"]

        defaults = PROVIDER_DEFAULTS[kind]
        issues = []
        if kind is not ProviderKind.HOSTED_FREE and not self.model_id:
            issues.append(f"model is required for {defaults.display_name}")
        if defaults.requires_endpoint and not self.base_endpoint:
            issues.append(f"base endpoint is required for {defaults.display_name}")
        if defaults.requires_credential and not self.credential:
            issues.append(f"API key is required for {defaults.display_name}")
        if self.timeout_seconds <= 0:
            issues.append("timeout must be positive")
        return issues

    def redacted(self) -> "ProviderConfig":
        """Copy with the credential masked, safe to log or keep in results."""
        if not self.credential:
            return self
        return replace(self, credential="***")


def default_config(kind: str, **overrides: Any) -> ProviderConfig:
    """Build a config for ``kind`` from its defaults plus explicit overrides."""
    explicit = {key: value for key, value in overrides.items() if value is not None}
    try:
        provider_kind = ProviderKind(kind)
    except ValueError:
        return ProviderConfig(kind=str(kind), **explicit)

    defaults = PROVIDER_DEFAULTS[provider_kind]
    values: Dict[str, Any] = {
        "model_id": defaults.model_id,
        "base_endpoint": defaults.base_endpoint,
        "max_output_tokens": defaults.max_output_tokens,
        "context_window": defaults.context_window,
    }
    values.update(explicit)
    return ProviderConfig(kind=provider_kind.value, **values)


def load_env_files(project_root: Optional[Path] = None):
    """Load environment variables from multiple possible locations."""
    if project_root is None:
        project_root = Path.cwd()

    env_paths = [
        Path.cwd() / ".env",  # Current directory
        project_root / ".env",  # Project root
        Path.home() / ".policy-distiller.env",  # User home directory
    ]
    for env_path in env_paths:
        if env_path.exists():
            load_dotenv(env_path)


def load_toml_config(config_path: Path) -> Dict[str, Any]:
    """Load configuration from TOML file."""
    if not config_path.exists():
        return {}

    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to load {config_path}: {e}")
        return {}


def find_project_root(start: Optional[Path] = None) -> Path:
    """Walk up from ``start`` to the nearest directory holding pyproject.toml."""
    current = (start or Path.cwd()).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return current


def get_distiller_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """Load the [tool.policy_distiller] table from the project's pyproject.toml."""
    root = project_root or find_project_root()
    load_env_files(root)
    data = load_toml_config(root / "pyproject.toml")
    return data.get("tool", {}).get("policy_distiller", {})


def get_provider_config(project_root: Optional[Path] = None, **overrides: Any) -> ProviderConfig:
    """
    Get typed provider configuration.

    Returns:
    ProviderConfig with environment and explicit overrides applied
    """
    provider_dict = get_distiller_config(project_root).get("provider", {})

    kind = (
        overrides.pop("kind", None)
        or os.getenv(f"{ENV_PREFIX}PROVIDER")
        or provider_dict.get("kind")
        or ProviderKind.OPENROUTER.value
    )

    kwargs = {
        "model_id": os.getenv(f"{ENV_PREFIX}MODEL") or provider_dict.get("model"),
        "base_endpoint": (
            os.getenv(f"{ENV_PREFIX}BASE_URL")
            or (os.getenv(f"{ENV_PREFIX}GATEWAY_URL") if kind == ProviderKind.HOSTED_FREE.value else None)
            or provider_dict.get("base_url")
        ),
        "credential": (
            os.getenv(f"{ENV_PREFIX}API_KEY")
            or os.getenv("OPENROUTER_API_KEY")
            or provider_dict.get("api_key")
        ),
        "temperature": _first_set(
            _get_env_float(f"{ENV_PREFIX}TEMPERATURE"), provider_dict.get("temperature")
        ),
        "max_output_tokens": _first_set(
            _get_env_int(f"{ENV_PREFIX}MAX_TOKENS"), provider_dict.get("max_tokens")
        ),
        "context_window": _first_set(
            _get_env_int(f"{ENV_PREFIX}CONTEXT_WINDOW"), provider_dict.get("context_window")
        ),
        "timeout_seconds": _first_set(
            _get_env_float(f"{ENV_PREFIX}TIMEOUT"), provider_dict.get("timeout")
        ),
    }
    kwargs.update({key: value for key, value in overrides.items() if value is not None})

    config = default_config(kind, **kwargs)
    logger.debug(f"Resolved provider config: {config.redacted()}")
    return config


def _first_set(*values: Any) -> Any:
    """Return the first value that is not None."""
    for value in values:
        if value is not None:
            return value
    return None


def _get_env_float(key: str) -> Optional[float]:
    """Get float value from environment variable."""
    value = os.getenv(key)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _get_env_int(key: str) -> Optional[int]:
    """Get integer value from environment variable."""
    value = os.getenv(key)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            return None
    return None


__all__ = [
    "ProviderKind",
    "ProviderDefaults",
    "ProviderConfig",
    "PROVIDER_DEFAULTS",
    "FREE_TIER_MODEL",
    "FREE_TIER_WORKER_URL",
    "default_config",
    "get_provider_config",
    "get_distiller_config",
    "load_env_files",
    "find_project_root",
]
