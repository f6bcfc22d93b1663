"""
Provider factory: maps a ProviderConfig to its CompletionProvider.

policy_distiller/src/policy_distiller/llm/factory.py
"""

import logging
from typing import Dict, List, Optional, Type

import httpx

from policy_distiller.config import ProviderConfig, ProviderKind
from policy_distiller.errors import ConfigurationError

from .base import CompletionProvider
from .gateway import HostedGatewayProvider
from .providers import LMStudioProvider, OllamaProvider, OpenRouterProvider

logger = logging.getLogger(__name__)

__all__ = ["create_provider", "available_provider_kinds", "PROVIDER_CLASSES"]

PROVIDER_CLASSES: Dict[ProviderKind, Type[CompletionProvider]] = {
    ProviderKind.OPENROUTER: OpenRouterProvider,
    ProviderKind.OLLAMA: OllamaProvider,
    ProviderKind.LMSTUDIO: LMStudioProvider,
    ProviderKind.HOSTED_FREE: HostedGatewayProvider,
}


def create_provider(
    config: ProviderConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> CompletionProvider:
    """Construct the provider for ``config.kind``.

    Raises:
        ConfigurationError: the kind is not a known provider

    """
    kind = config.provider_kind
    if kind is None:
        raise ConfigurationError(f"Unknown provider: {config.kind}")

    provider = PROVIDER_CLASSES[kind](config, transport=transport)
    logger.debug(f"Created {provider.identifying_name()} provider for model {config.model_id!r}")
    return provider


def available_provider_kinds() -> List[str]:
    return [kind.value for kind in PROVIDER_CLASSES]
