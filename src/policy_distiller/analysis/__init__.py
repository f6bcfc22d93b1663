"""
Policy analysis: prompt building, concurrent aspect orchestration and
tolerant parsing of model output into typed results.
"""

from .models import (
    AnalysisAspect,
    AnalysisResult,
    KeyTerm,
    PartialFailure,
    PolicySummary,
    PrivacyRisk,
    PrivacyScorecard,
    RiskLevel,
    ScorecardCategory,
)
from .orchestrator import AnalysisOrchestrator, check_context_window, preprocess_text, truncate_text
from .prompts import PromptTemplates

__all__ = [
    "AnalysisAspect",
    "AnalysisOrchestrator",
    "AnalysisResult",
    "KeyTerm",
    "PartialFailure",
    "PolicySummary",
    "PrivacyRisk",
    "PrivacyScorecard",
    "PromptTemplates",
    "RiskLevel",
    "ScorecardCategory",
    "check_context_window",
    "preprocess_text",
    "truncate_text",
]
