"""Policy Distiller: AI analysis of privacy policies

Sends a policy document to a completion backend and distills it into a
summary, a risk list, a glossary and a weighted privacy scorecard.
"""

from policy_distiller.analysis import AnalysisOrchestrator, AnalysisResult, PartialFailure
from policy_distiller.config import ProviderConfig, ProviderKind, default_config, get_provider_config
from policy_distiller.errors import (
    AnalysisFailedError,
    CompletionError,
    ConfigurationError,
    DistillerError,
    ErrorKind,
    MalformedResponseError,
)
from policy_distiller.llm import CompletionOutcome, CompletionProvider, create_provider

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "ProviderConfig",
    "ProviderKind",
    "default_config",
    "get_provider_config",
    # Providers
    "CompletionOutcome",
    "CompletionProvider",
    "create_provider",
    # Analysis
    "AnalysisOrchestrator",
    "AnalysisResult",
    "PartialFailure",
    # Errors
    "AnalysisFailedError",
    "CompletionError",
    "ConfigurationError",
    "DistillerError",
    "ErrorKind",
    "MalformedResponseError",
]
