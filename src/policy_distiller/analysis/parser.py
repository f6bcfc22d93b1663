"""
Tolerant parsing of model output.

Completion text is untrusted: it may wrap the JSON in prose or markdown
fences, omit fields, or use the wrong types. Each aspect is validated against
a pydantic schema and is either fully usable or rejected with a
MalformedResponseError naming the offending field.

policy_distiller/src/policy_distiller/analysis/parser.py
"""

import json
import logging
import math
import re
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from policy_distiller.errors import MalformedResponseError

from .models import (
    SCORECARD_WEIGHTS,
    KeyTerm,
    PolicySummary,
    PrivacyRisk,
    PrivacyScorecard,
    RiskLevel,
    ScorecardCategory,
)

logger = logging.getLogger(__name__)

__all__ = [
    "MAX_LIST_ITEMS",
    "MAX_FIELD_LENGTH",
    "strip_markdown_fences",
    "extract_json_object",
    "extract_json_array",
    "parse_summary",
    "parse_risks",
    "parse_key_terms",
    "parse_scorecard",
    "extract_key_points",
    "normalize_severity",
    "score_to_grade",
]

MAX_LIST_ITEMS = 100
MAX_FIELD_LENGTH = 10000
MAX_KEY_POINTS = 5
UNASSESSED_SCORE = 5
UNASSESSED_SUMMARY = "Unable to assess"

GRADE_THRESHOLDS = [
    (97, "A+"),
    (93, "A"),
    (90, "A-"),
    (87, "B+"),
    (83, "B"),
    (80, "B-"),
    (77, "C+"),
    (73, "C"),
    (70, "C-"),
    (67, "D+"),
    (63, "D"),
    (60, "D-"),
]

SEVERITY_ALIASES = {
    "low": RiskLevel.LOW,
    "medium": RiskLevel.MEDIUM,
    "moderate": RiskLevel.MEDIUM,
    "high": RiskLevel.HIGH,
    "critical": RiskLevel.CRITICAL,
    "severe": RiskLevel.CRITICAL,
}

_FENCE_PATTERN = re.compile(r"```[a-zA-Z]*\s*")
_BULLET_PATTERN = re.compile(r"^[-•*]\s+(.+)$", re.MULTILINE)
_NUMBERED_PATTERN = re.compile(r"^\d+\.\s+(.+)$", re.MULTILINE)
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def _clip(value: str) -> str:
    return value.strip()[:MAX_FIELD_LENGTH]


def _cap_list(value: Any) -> Any:
    if isinstance(value, list):
        return value[:MAX_LIST_ITEMS]
    return value


# Schemas


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)

    @field_validator("*", mode="after")
    @classmethod
    def _clip_strings(cls, value):
        if isinstance(value, str):
            return _clip(value)
        if isinstance(value, list):
            return [_clip(item) if isinstance(item, str) else item for item in value]
        return value


class SummarySchema(_Schema):
    brief: str = Field(min_length=1)
    detailed: str = ""
    key_points: List[str] = Field(default_factory=list, alias="keyPoints")

    @field_validator("key_points", mode="before")
    @classmethod
    def cap_items(cls, value):
        return _cap_list(value)


class RiskSchema(_Schema):
    category: str = Field(min_length=1)
    severity: str = Field(min_length=1)
    description: str = Field(min_length=1)
    title: str = ""
    location: str = ""
    recommendation: str = ""


class RiskListSchema(_Schema):
    risks: List[RiskSchema]

    @field_validator("risks", mode="before")
    @classmethod
    def cap_items(cls, value):
        return _cap_list(value)


class KeyTermSchema(_Schema):
    term: str = Field(min_length=1)
    definition: str = Field(min_length=1)
    location: str = ""


class KeyTermListSchema(_Schema):
    key_terms: List[KeyTermSchema]

    @field_validator("key_terms", mode="before")
    @classmethod
    def cap_items(cls, value):
        return _cap_list(value)


class ScorecardCategorySchema(_Schema):
    score: Optional[float] = None
    summary: str = ""


class ScorecardSchema(_Schema):
    third_party_sharing: Optional[ScorecardCategorySchema] = Field(None, alias="thirdPartySharing")
    user_rights: Optional[ScorecardCategorySchema] = Field(None, alias="userRights")
    data_collection: Optional[ScorecardCategorySchema] = Field(None, alias="dataCollection")
    data_retention: Optional[ScorecardCategorySchema] = Field(None, alias="dataRetention")
    purpose_clarity: Optional[ScorecardCategorySchema] = Field(None, alias="purposeClarity")
    security_measures: Optional[ScorecardCategorySchema] = Field(None, alias="securityMeasures")
    policy_transparency: Optional[ScorecardCategorySchema] = Field(
        None, alias="policyTransparency"
    )
    top_concerns: List[str] = Field(default_factory=list, alias="topConcerns")
    positive_aspects: List[str] = Field(default_factory=list, alias="positiveAspects")

    @field_validator("top_concerns", "positive_aspects", mode="before")
    @classmethod
    def cap_items(cls, value):
        return _cap_list(value)


_SCORECARD_FIELDS = {
    "thirdPartySharing": "third_party_sharing",
    "userRights": "user_rights",
    "dataCollection": "data_collection",
    "dataRetention": "data_retention",
    "purposeClarity": "purpose_clarity",
    "securityMeasures": "security_measures",
    "policyTransparency": "policy_transparency",
}


# JSON extraction


def strip_markdown_fences(text: str) -> str:
    """Remove ``` / ```json fence markers, keeping their contents."""
    return _FENCE_PATTERN.sub("", text or "").strip()


def _scan_balanced(text: str, opener: str, closer: str, accept: Callable[[Any], bool]) -> Any:
    """Try each ``opener`` position until a balanced, parseable candidate is found."""
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escape_next = False
        for index in range(start, len(text)):
            char = text[index]
            if escape_next:
                escape_next = False
                continue
            if char == "\\":
                escape_next = True
                continue
            if char == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if char == opener:
                depth += 1
            elif char == closer:
                depth -= 1
                if depth == 0:
                    try:
                        candidate = json.loads(text[start : index + 1])
                    except json.JSONDecodeError:
                        break
                    if accept(candidate):
                        return candidate
                    break
        start = text.find(opener, start + 1)
    return None


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first well-formed JSON object in ``text``, or None."""
    cleaned = strip_markdown_fences(text)
    try:
        whole = json.loads(cleaned)
    except json.JSONDecodeError:
        whole = None
    if isinstance(whole, dict):
        return whole
    return _scan_balanced(cleaned, "{", "}", lambda value: isinstance(value, dict))


def extract_json_array(text: str) -> Optional[List[Any]]:
    """Return the first well-formed JSON array in ``text``, or None."""
    cleaned = strip_markdown_fences(text)
    try:
        whole = json.loads(cleaned)
    except json.JSONDecodeError:
        whole = None
    if isinstance(whole, list):
        return whole
    return _scan_balanced(cleaned, "[", "]", lambda value: isinstance(value, list))


def _describe(error: ValidationError, prefix: str) -> str:
    first = error.errors()[0]
    loc = list(first["loc"])
    if loc and loc[0] == prefix:
        loc = loc[1:]
    location = prefix
    for part in loc:
        location += f"[{part}]" if isinstance(part, int) else f".{part}"
    return f"Invalid field '{location}': {first['msg']}"


def _validate(schema, data: Any, prefix: str):
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        message = _describe(e, prefix)
        logger.debug(f"Rejected {prefix} response: {message}")
        raise MalformedResponseError(message) from e


def _require_object(text: str, aspect: str) -> Dict[str, Any]:
    data = extract_json_object(text)
    if data is None:
        raise MalformedResponseError(f"No JSON object found in {aspect} response")
    return data


def _unwrap_list(text: str, key: str, aliases: tuple, aspect: str) -> Dict[str, Any]:
    """Find ``{key: [...]}``, or a bare array of objects when one comes first."""
    cleaned = strip_markdown_fences(text)
    first_array = cleaned.find("[")
    first_object = cleaned.find("{")

    if first_array != -1 and (first_object == -1 or first_array < first_object):
        array = extract_json_array(cleaned)
        if array is not None and all(isinstance(item, dict) for item in array):
            return {key: array}

    data = extract_json_object(cleaned)
    if data is None:
        raise MalformedResponseError(f"No JSON found in {aspect} response")
    for name in (key,) + aliases:
        if name in data:
            return {key: data[name]}
    raise MalformedResponseError(f"Invalid field '{key}': Field required")


# Aspect parsers


def parse_summary(text: str) -> PolicySummary:
    data = _require_object(text, "summary")
    payload = data.get("summary", data)
    if not isinstance(payload, dict):
        raise MalformedResponseError("Invalid field 'summary': Input should be an object")

    schema = _validate(SummarySchema, payload, "summary")
    key_points = schema.key_points or extract_key_points(schema.detailed or schema.brief)
    return PolicySummary(
        brief=schema.brief,
        detailed=schema.detailed,
        key_points=tuple(point for point in key_points if point)[:MAX_LIST_ITEMS],
    )


def parse_risks(text: str) -> tuple:
    data = _unwrap_list(text, "risks", ("privacyRisks", "privacy_risks"), "risks")
    schema = _validate(RiskListSchema, data, "risks")
    return tuple(
        PrivacyRisk(
            category=risk.category,
            severity=normalize_severity(risk.severity),
            description=risk.description,
            title=risk.title,
            location=risk.location,
            recommendation=risk.recommendation,
        )
        for risk in schema.risks
    )


def parse_key_terms(text: str) -> tuple:
    data = _unwrap_list(text, "key_terms", ("keyTerms", "terms", "glossary"), "key terms")
    schema = _validate(KeyTermListSchema, data, "key_terms")
    return tuple(
        KeyTerm(term=term.term, definition=term.definition, location=term.location)
        for term in schema.key_terms
    )


def parse_scorecard(text: str) -> PrivacyScorecard:
    data = _require_object(text, "scorecard")
    payload = data.get("scorecard", data)
    if not isinstance(payload, dict):
        raise MalformedResponseError("Invalid field 'scorecard': Input should be an object")

    schema = _validate(ScorecardSchema, payload, "scorecard")
    if all(getattr(schema, field) is None for field in _SCORECARD_FIELDS.values()):
        raise MalformedResponseError("Invalid field 'scorecard': no category scores")

    categories: Dict[str, ScorecardCategory] = {}
    for name, weight in SCORECARD_WEIGHTS.items():
        raw = getattr(schema, _SCORECARD_FIELDS[name])
        if raw is None:
            categories[name] = ScorecardCategory(UNASSESSED_SCORE, weight, UNASSESSED_SUMMARY)
            continue
        score = raw.score if raw.score is not None and math.isfinite(raw.score) else UNASSESSED_SCORE
        categories[name] = ScorecardCategory(max(1.0, min(10.0, score)), weight, raw.summary)

    total = sum(category.score / 10 * category.weight for category in categories.values())
    overall = math.floor(total + 0.5)
    return PrivacyScorecard(
        categories=categories,
        overall_score=overall,
        overall_grade=score_to_grade(overall),
        top_concerns=tuple(schema.top_concerns),
        positive_aspects=tuple(schema.positive_aspects),
    )


# Helpers


def extract_key_points(summary_text: str) -> List[str]:
    """Pull up to five key points: bullets, else numbered lines, else long sentences."""
    if not summary_text:
        return []

    bullets = [point.strip() for point in _BULLET_PATTERN.findall(summary_text)]
    if bullets:
        return bullets[:MAX_KEY_POINTS]

    numbered = [point.strip() for point in _NUMBERED_PATTERN.findall(summary_text)]
    if numbered:
        return numbered[:MAX_KEY_POINTS]

    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(summary_text)]
    return [s for s in sentences if len(s) > 20][:MAX_KEY_POINTS]


def normalize_severity(severity: Any) -> RiskLevel:
    return SEVERITY_ALIASES.get(str(severity).strip().lower(), RiskLevel.MEDIUM)


def score_to_grade(score: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"
