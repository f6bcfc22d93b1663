"""
Error taxonomy for policy-distiller.

Provider calls never raise these past the provider boundary; they are folded
into a failed CompletionOutcome. Configuration and orchestration boundaries
raise them directly.

policy_distiller/src/policy_distiller/errors.py
"""

from enum import Enum
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from policy_distiller.analysis.models import PartialFailure

__all__ = [
    "ErrorKind",
    "DistillerError",
    "CompletionError",
    "ConfigurationError",
    "MalformedResponseError",
    "AnalysisFailedError",
    "ERROR_MESSAGES",
    "SWITCH_PROVIDER_HINT",
]


class ErrorKind(Enum):
    """Categories of completion failure."""

    CONFIGURATION = "configuration"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    BUDGET_EXHAUSTED = "budget_exhausted"
    SERVICE_UNAVAILABLE = "service_unavailable"
    VERIFICATION_FAILED = "verification_failed"
    INVALID_RESPONSE = "invalid_response"
    MALFORMED_RESPONSE = "malformed_response"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"


SWITCH_PROVIDER_HINT = (
    "To continue analyzing, switch to OpenRouter (bring your own API key) "
    "or use a local model like Ollama or LM Studio."
)

ERROR_MESSAGES = {
    ErrorKind.CONFIGURATION: "Provider configuration is incomplete.",
    ErrorKind.TIMEOUT: "Analysis timed out. Please try again.",
    ErrorKind.RATE_LIMITED: "Rate limit exceeded. Please wait a moment and try again.",
    ErrorKind.BUDGET_EXHAUSTED: f"Free tier budget exhausted for today. {SWITCH_PROVIDER_HINT}",
    ErrorKind.SERVICE_UNAVAILABLE: (
        "Free tier service temporarily unavailable. "
        "Please try again later or use your own API key."
    ),
    ErrorKind.VERIFICATION_FAILED: "Turnstile verification failed. Please try again.",
    ErrorKind.INVALID_RESPONSE: "Received invalid response from AI. Please try again.",
    ErrorKind.MALFORMED_RESPONSE: "Could not extract the expected structure from the AI response.",
    ErrorKind.HTTP_ERROR: "Failed to analyze document. Please try again.",
    ErrorKind.NETWORK_ERROR: "Network error. Please check your connection and try again.",
}


class DistillerError(Exception):
    """Base class for all policy-distiller errors."""


class CompletionError(DistillerError):
    """A failed completion or gateway call, tagged with its ErrorKind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        status: Optional[int] = None,
        reset_at: Optional[str] = None,
    ):
        self.kind = kind
        self.message = message or ERROR_MESSAGES[kind]
        self.status = status
        self.reset_at = reset_at
        super().__init__(self.message)


class ConfigurationError(CompletionError):
    """Missing or invalid credential, model, endpoint or provider kind."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(ErrorKind.CONFIGURATION, message)


class MalformedResponseError(CompletionError):
    """The parser could not extract the expected structure."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(ErrorKind.MALFORMED_RESPONSE, message)


class AnalysisFailedError(DistillerError):
    """Every aspect of an analysis run failed."""

    def __init__(self, failures: List["PartialFailure"]):
        self.failures = list(failures)
        details = "; ".join(f"{f.aspect_name}: {f.error_message}" for f in self.failures)
        super().__init__(f"Analysis failed: {details}" if details else "Analysis failed")
