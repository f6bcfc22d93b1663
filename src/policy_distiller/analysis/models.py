"""
Result shapes for a policy analysis run.

Everything here is immutable once built: collections are tuples and the
dataclasses are frozen, so a finished AnalysisResult can be shared freely.

policy_distiller/src/policy_distiller/analysis/models.py
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from policy_distiller.config import ProviderConfig

__all__ = [
    "AnalysisAspect",
    "RiskLevel",
    "PolicySummary",
    "PrivacyRisk",
    "KeyTerm",
    "ScorecardCategory",
    "PrivacyScorecard",
    "PartialFailure",
    "AnalysisResult",
    "SCORECARD_WEIGHTS",
]


class AnalysisAspect(Enum):
    """Independent parts of an analysis, one completion request each."""

    SUMMARY = "summary"
    RISKS = "risks"
    KEY_TERMS = "key_terms"
    SCORECARD = "scorecard"


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Scorecard category weights, summing to 100
SCORECARD_WEIGHTS: Dict[str, int] = {
    "thirdPartySharing": 20,
    "userRights": 18,
    "dataCollection": 18,
    "dataRetention": 14,
    "purposeClarity": 12,
    "securityMeasures": 10,
    "policyTransparency": 8,
}


@dataclass(frozen=True)
class PolicySummary:
    brief: str = ""
    detailed: str = ""
    key_points: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.brief or self.detailed or self.key_points)


@dataclass(frozen=True)
class PrivacyRisk:
    category: str
    severity: RiskLevel
    description: str
    title: str = ""
    location: str = ""
    recommendation: str = ""


@dataclass(frozen=True)
class KeyTerm:
    term: str
    definition: str
    location: str = ""


@dataclass(frozen=True)
class ScorecardCategory:
    score: float
    weight: int
    summary: str = ""


@dataclass(frozen=True)
class PrivacyScorecard:
    """Seven weighted 1-10 category scores plus the derived 0-100 overall score."""

    categories: Dict[str, ScorecardCategory]
    overall_score: int
    overall_grade: str
    top_concerns: Tuple[str, ...] = ()
    positive_aspects: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PartialFailure:
    """One aspect that could not be produced, and why."""

    aspect_name: str
    error_message: str


@dataclass(frozen=True)
class AnalysisResult:
    """Best-effort outcome of one analysis run.

    Failed aspects keep a safe default (empty summary, empty tuple, or no
    scorecard) and are listed in ``partial_failures``.
    """

    provider_name: str
    provider_config: ProviderConfig
    summary: PolicySummary = field(default_factory=PolicySummary)
    risks: Tuple[PrivacyRisk, ...] = ()
    key_terms: Tuple[KeyTerm, ...] = ()
    scorecard: Optional[PrivacyScorecard] = None
    partial_failures: Tuple[PartialFailure, ...] = ()
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        # Never keep a live credential in a result
        object.__setattr__(self, "provider_config", self.provider_config.redacted())

    @property
    def has_partial_failures(self) -> bool:
        return len(self.partial_failures) > 0

    def failed_aspects(self) -> Tuple[str, ...]:
        return tuple(failure.aspect_name for failure in self.partial_failures)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["risks"] = [
            {**risk, "severity": self.risks[index].severity.value}
            for index, risk in enumerate(data["risks"])
        ]
        data["has_partial_failures"] = self.has_partial_failures
        return data
