"""
Completion providers for policy-distiller.

Backends:
- OpenRouter (bring your own key)
- Ollama and LM Studio (self-hosted)
- Hosted free tier gateway (Turnstile + session token)
"""

from .base import CompletionOutcome, CompletionProvider, CompletionRequest
from .factory import available_provider_kinds, create_provider
from .gateway import HostedGatewayProvider, SessionToken, TierStatus
from .providers import LMStudioProvider, OllamaProvider, OpenRouterProvider

__all__ = [
    "CompletionOutcome",
    "CompletionProvider",
    "CompletionRequest",
    "HostedGatewayProvider",
    "LMStudioProvider",
    "OllamaProvider",
    "OpenRouterProvider",
    "SessionToken",
    "TierStatus",
    "available_provider_kinds",
    "create_provider",
]
