"""
Analysis orchestrator.

Runs one completion per analysis aspect concurrently against a single provider
instance, waits for every aspect to settle, and merges whatever succeeded into
an AnalysisResult. A failed aspect degrades the result instead of aborting it;
only a run where every aspect fails is an error.

policy_distiller/src/policy_distiller/analysis/orchestrator.py
"""

import asyncio
import logging
import math
import re
import time
from typing import Any, Callable, Dict, List, Optional, Union

from policy_distiller.config import DEFAULT_LOCAL_CONTEXT_WINDOW, ProviderConfig, ProviderKind
from policy_distiller.errors import AnalysisFailedError, ConfigurationError, MalformedResponseError
from policy_distiller.llm.base import CompletionProvider, CompletionRequest
from policy_distiller.llm.factory import create_provider

from .models import AnalysisAspect, AnalysisResult, PartialFailure, PolicySummary
from .parser import parse_key_terms, parse_risks, parse_scorecard, parse_summary
from .prompts import PromptTemplates

logger = logging.getLogger(__name__)

__all__ = [
    "AnalysisOrchestrator",
    "check_context_window",
    "preprocess_text",
    "truncate_text",
    "MAX_DOCUMENT_CHARS",
]

MAX_DOCUMENT_CHARS = 2_000_000
CHARS_PER_TOKEN = 4
# Room for the prompt scaffolding and the model's answer
RESERVED_TOKENS = 8000
LOCAL_PROVIDER_KINDS = (ProviderKind.OLLAMA, ProviderKind.LMSTUDIO)

ProgressCallback = Callable[[int, str], None]

ASPECT_PARSERS: Dict[AnalysisAspect, Callable[[str], Any]] = {
    AnalysisAspect.SUMMARY: parse_summary,
    AnalysisAspect.RISKS: parse_risks,
    AnalysisAspect.KEY_TERMS: parse_key_terms,
    AnalysisAspect.SCORECARD: parse_scorecard,
}


def preprocess_text(text: str) -> str:
    """Collapse whitespace and squeeze runs of terminal punctuation."""
    if not text:
        return ""
    processed = re.sub(r"\s+", " ", text)
    processed = re.sub(r"([.!?])\1+", r"\1", processed)
    return processed.strip()


def truncate_text(text: str, max_chars: int = MAX_DOCUMENT_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    logger.warning(f"Document truncated from {len(text)} to {max_chars} characters")
    return text[:max_chars]


def check_context_window(document: str, config: ProviderConfig) -> None:
    """Fail before any request when ``document`` cannot fit the model's context window.

    Uses ~4 characters per token and reserves room for prompts and output. The
    configured window wins; local backends fall back to a conservative default.
    Unknown windows are not checked.

    Raises:
        ConfigurationError: the document is estimated to overflow the window

    """
    is_local = config.provider_kind in LOCAL_PROVIDER_KINDS
    context_length = config.context_window if (config.context_window or 0) > 0 else None
    if context_length is None and is_local:
        context_length = DEFAULT_LOCAL_CONTEXT_WINDOW
    if context_length is None:
        return

    estimated_tokens = math.ceil(len(document) / CHARS_PER_TOKEN)
    if estimated_tokens <= context_length - RESERVED_TOKENS:
        return

    if is_local:
        suggestion = (
            "Consider using OpenRouter with a large-context model (e.g., Claude, GPT-4, or Gemini), "
            "or use a shorter document."
        )
    else:
        suggestion = "Please try a model with a larger context window, or use a shorter document."
    model_name = config.model_id or config.kind
    raise ConfigurationError(
        f"Document is too large for the selected model. The document is approximately "
        f"{math.floor(estimated_tokens / 1000 + 0.5):,}K tokens, but \"{model_name}\" has a "
        f"{math.floor(context_length / 1000 + 0.5)}K token context window. {suggestion}"
    )


class AnalysisOrchestrator:
    """Fans a document out to every analysis aspect and merges the outcomes."""

    def __init__(
        self,
        config: ProviderConfig,
        provider: Optional[CompletionProvider] = None,
        prompts: Optional[Any] = None,
    ):
        """Initialize orchestrator.

        Args:
            config: Provider configuration, validated at the start of each run
            provider: Pre-built provider; created from ``config`` when omitted
            prompts: Prompt builder with one method per aspect

        """
        self.config = config
        self.prompts = prompts or PromptTemplates()
        self._provider = provider

    @classmethod
    def with_provider(
        cls, provider: CompletionProvider, config: ProviderConfig, prompts: Optional[Any] = None
    ) -> "AnalysisOrchestrator":
        return cls(config, provider=provider, prompts=prompts)

    @property
    def provider(self) -> Optional[CompletionProvider]:
        return self._provider

    async def run(self, text: str, progress: Optional[ProgressCallback] = None) -> AnalysisResult:
        """Analyze ``text`` across all aspects.

        Raises:
            ConfigurationError: the provider config is incomplete; nothing was sent
            AnalysisFailedError: every aspect failed

        """
        try:
            return await self._run(text, progress)
        finally:
            if self._provider is not None:
                self._provider.clear_transient_state()

    async def _run(self, text: str, progress: Optional[ProgressCallback]) -> AnalysisResult:
        problems = self.config.problems()
        if problems:
            raise ConfigurationError(f"Invalid provider configuration: {'; '.join(problems)}")

        if self._provider is None:
            self._provider = create_provider(self.config)
        provider = self._provider
        if not provider.validate_config():
            raise ConfigurationError(f"Invalid {provider.identifying_name()} configuration")

        self._report(progress, 10, "Preparing document...")
        document = truncate_text(preprocess_text(text))
        if not document:
            raise ValueError("Document text is empty")
        check_context_window(document, self.config)

        aspects = list(AnalysisAspect)
        logger.info(
            f"Analyzing {len(document)} chars with {provider.identifying_name()} "
            f"({len(aspects)} aspects in parallel)"
        )
        self._report(progress, 40, "Analyzing policy in parallel...")

        start_time = time.time()
        settled = await asyncio.gather(
            *(self._run_aspect(provider, aspect, document) for aspect in aspects),
            return_exceptions=True,
        )
        logger.debug(f"All aspects settled in {time.time() - start_time:.2f}s")

        self._report(progress, 90, "Processing results...")
        result = self._merge(provider, aspects, settled)
        self._report(progress, 100, "Analysis complete")
        return result

    async def _run_aspect(
        self, provider: CompletionProvider, aspect: AnalysisAspect, document: str
    ) -> Union[Any, PartialFailure]:
        prompt = getattr(self.prompts, aspect.value)(document)
        outcome = await provider.produce_completion(CompletionRequest(prompt_text=prompt))
        if not outcome.success:
            return PartialFailure(aspect.value, outcome.message)

        try:
            return ASPECT_PARSERS[aspect](outcome.text)
        except MalformedResponseError as e:
            logger.warning(f"Aspect '{aspect.value}' returned unusable output: {e.message}")
            return PartialFailure(aspect.value, e.message)

    def _merge(
        self, provider: CompletionProvider, aspects: List[AnalysisAspect], settled: List[Any]
    ) -> AnalysisResult:
        values: Dict[AnalysisAspect, Any] = {}
        failures: List[PartialFailure] = []

        for aspect, outcome in zip(aspects, settled):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Aspect '{aspect.value}' raised unexpectedly: {outcome}", exc_info=outcome)
                outcome = PartialFailure(aspect.value, str(outcome) or type(outcome).__name__)

            if isinstance(outcome, PartialFailure):
                failures.append(outcome)
            else:
                values[aspect] = outcome

        if len(failures) == len(aspects):
            raise AnalysisFailedError(failures)

        if failures:
            logger.warning(
                f"Analysis completed with {len(failures)} failed aspect(s): "
                f"{', '.join(f.aspect_name for f in failures)}"
            )

        return AnalysisResult(
            provider_name=provider.identifying_name(),
            provider_config=self.config,
            summary=values.get(AnalysisAspect.SUMMARY, PolicySummary()),
            risks=values.get(AnalysisAspect.RISKS, ()),
            key_terms=values.get(AnalysisAspect.KEY_TERMS, ()),
            scorecard=values.get(AnalysisAspect.SCORECARD),
            partial_failures=tuple(failures),
        )

    @staticmethod
    def _report(progress: Optional[ProgressCallback], percent: int, step: str) -> None:
        if progress is not None:
            progress(percent, step)
