import sys
import json
import re
import asyncio
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Any, Mapping, Optional, Tuple
from langchain_core.prompts import PromptTemplate
from soil_survey_config import (
    SOIL_CATEGORIES, NEUTRAL_CATEGORY, REQUIRED_SURVEY_FIELDS, OPTIONAL_SURVEY_FIELDS,
    HEURISTIC_RULES, CONFIDENCE_THRESHOLD, CATEGORY_KEYS, CONFIDENCE_KEYS,
    KEYWORD_DESIGNATORS, CLASSIFICATION_PROMPT_TEXT,
    SOURCE_HEURISTIC, SOURCE_ORACLE, SOURCE_FALLBACK,
    is_valid_category, find_missing_fields
)

# ============================================================================
# SOIL CLASSIFICATION PIPELINE
# ============================================================================
#
# DATA FLOW:
#    Survey answers → normalize → score (rules) → baseline
#                   → oracle (best effort) → extract (tiers) → reconcile
#                   → safety net → ClassificationResult
#
# 1. The rule-based baseline is ALWAYS computed first and never fails.
# 2. The oracle is called at most once, without retry. Any exception or an
#    empty reply means "no oracle signal".
# 3. Oracle text is parsed strictest first:
#       structured JSON → sole token → keyword scan → no match
# 4. Oracle category overrides the baseline only when it carries no
#    confidence or confidence >= CONFIDENCE_THRESHOLD.
# 5. Output category is ALWAYS one of sandy / clay / loamy / silt.
#
# ============================================================================

_json_decoder = json.JSONDecoder()

classification_prompt = PromptTemplate.from_template(CLASSIFICATION_PROMPT_TEXT)


class SurveyValidationError(ValueError):
    """Raised when required survey fields are missing before classification."""

    def __init__(self, missing_fields):
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Missing required soil information fields: {', '.join(self.missing_fields)}"
        )


@dataclass(frozen=True)
class OracleResult:
    raw_text: str
    category: Optional[str] = None
    confidence: Optional[float] = None
    tier: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "confidence": self.confidence,
            "tier": self.tier,
        }


@dataclass(frozen=True)
class ClassificationResult:
    """Final soil category with provenance ("heuristic", "oracle" or "fallback")."""

    category: str
    source: str
    baseline: Optional[str] = None
    scores: Mapping[str, int] = field(default_factory=dict)
    oracle: Optional[OracleResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "soilType": self.category,
            "source": self.source,
            "baseline": self.baseline,
            "scores": dict(self.scores),
            "oracle": self.oracle.to_dict() if self.oracle else None,
        }


def validate_survey_answers(answers: Mapping[str, Any]) -> None:
    """
    Reject survey answers with missing required fields.
    Runs before any classification work.

    Raises:
        SurveyValidationError: If soilTexture, drainage, organicMatter or slope is missing/blank
    """
    missing = find_missing_fields(answers)
    if missing:
        raise SurveyValidationError(missing)


def normalize_survey_answers(answers: Mapping[str, Any]) -> Dict[str, str]:
    """
    Lowercase and strip every survey field into scoring-ready text.
    Missing fields (including issues) become empty strings.
    """
    answers = answers or {}
    normalized = {}
    for request_key, key in {**REQUIRED_SURVEY_FIELDS, **OPTIONAL_SURVEY_FIELDS}.items():
        value = answers.get(request_key)
        normalized[key] = "" if value is None else str(value).strip().lower()
    return normalized


def score_survey(normalized: Mapping[str, str]) -> Mapping[str, int]:
    """
    Apply HEURISTIC_RULES to normalized answers.
    Deterministic: same text always gives the same score vector.

    Returns:
        Read-only mapping with a score for each of the four categories
    """
    scores = {category: 0 for category in SOIL_CATEGORIES}

    for field_name, phrases, credits in HEURISTIC_RULES:
        text = normalized.get(field_name, "")
        if any(phrase in text for phrase in phrases):
            for category, weight in credits.items():
                scores[category] += weight

    return MappingProxyType(scores)


def select_baseline(scores: Mapping[str, int]) -> str:
    """
    Pick the category with the strictly highest score.
    Ties for the top score (including all zeros) resolve to NEUTRAL_CATEGORY.
    """
    best_score = max(scores.get(category, 0) for category in SOIL_CATEGORIES)
    leaders = [category for category in SOIL_CATEGORIES if scores.get(category, 0) == best_score]
    if len(leaders) != 1:
        return NEUTRAL_CATEGORY
    return leaders[0]


def infer_soil_type_heuristic(answers: Mapping[str, Any]) -> str:
    """Rule-based category for raw survey answers, no oracle involved."""
    return select_baseline(score_survey(normalize_survey_answers(answers)))


def build_classification_prompt(normalized: Mapping[str, str]) -> str:
    """Render the oracle prompt from normalized survey answers."""
    return classification_prompt.format(
        texture=normalized.get("texture", ""),
        drainage=normalized.get("drainage", ""),
        organic_matter=normalized.get("organic_matter", ""),
        slope=normalized.get("slope", ""),
        issues=normalized.get("issues") or "none",
    )


async def request_oracle_text(oracle, prompt: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Single oracle call. Never raises for oracle trouble.

    Returns:
        (raw_text, None) on success, (None, error message) on failure or empty reply
    """
    try:
        raw_text = await oracle.generate(prompt)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        print(f"⚠️ Oracle call failed, using heuristic only: {error_msg}", file=sys.stderr)
        return None, error_msg

    raw_text = "" if raw_text is None else str(raw_text).strip()
    if not raw_text:
        print("⚠️ Oracle returned an empty response, using heuristic only", file=sys.stderr)
        return None, "empty response"
    return raw_text, None


def _iter_json_objects(text: str):
    start = text.find("{")
    while start != -1:
        try:
            parsed, end = _json_decoder.raw_decode(text, start)
        except RecursionError:
            # nesting too deep for the decoder, later braces sit inside it
            return
        except ValueError:
            start = text.find("{", start + 1)
            continue

        if isinstance(parsed, dict):
            yield parsed
        start = text.find("{", end)


def _extract_structured(text: str) -> Optional[Tuple[str, Optional[float]]]:
    for parsed in _iter_json_objects(text):
        fields = {str(key).strip().lower(): value for key, value in parsed.items()}

        category = None
        for key in CATEGORY_KEYS:
            value = fields.get(key)
            if isinstance(value, str) and is_valid_category(value.strip().lower()):
                category = value.strip().lower()
                break
        if category is None:
            continue

        confidence = None
        for key in CONFIDENCE_KEYS:
            value = fields.get(key)
            # bool is an int subclass
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                confidence = value
                break

        return category, confidence

    return None


def _extract_sole_token(text: str) -> Optional[str]:
    token = re.sub(r"[^a-z]", "", text.lower())
    return token if is_valid_category(token) else None


def _extract_keyword(text: str) -> Optional[str]:
    lowered = text.lower()
    for designator, category in KEYWORD_DESIGNATORS:
        if designator in lowered:
            return category
    return None


def extract_oracle_result(raw_text: Any) -> OracleResult:
    """
    Recover a soil category (and optional confidence) from oracle text.

    Tiers, first success wins:
        1. structured - first {...} object whose soilType/category field is a category
        2. sole_token - text is exactly one category name once non-letters are removed
        3. keyword    - first of loam / sand / clay / silt found in the text
    Exhausting all tiers is a normal outcome (category None), not an error.
    """
    text = "" if raw_text is None else str(raw_text)

    structured = _extract_structured(text)
    if structured is not None:
        category, confidence = structured
        return OracleResult(raw_text=text, category=category, confidence=confidence, tier="structured")

    category = _extract_sole_token(text)
    if category is not None:
        return OracleResult(raw_text=text, category=category, tier="sole_token")

    category = _extract_keyword(text)
    if category is not None:
        return OracleResult(raw_text=text, category=category, tier="keyword")

    return OracleResult(raw_text=text)


def reconcile(baseline: str, oracle_result: Optional[OracleResult]) -> Tuple[str, str]:
    """
    Combine heuristic baseline and extracted oracle result.

    - no oracle category          → baseline ("heuristic")
    - category, no confidence     → oracle ("oracle")
    - category with confidence    → oracle if confidence >= CONFIDENCE_THRESHOLD, else baseline
    Confidence is not range-checked: 2.0 accepts.
    """
    if oracle_result is None or oracle_result.category is None:
        return baseline, SOURCE_HEURISTIC

    if oracle_result.confidence is None:
        return oracle_result.category, SOURCE_ORACLE

    if oracle_result.confidence >= CONFIDENCE_THRESHOLD:
        return oracle_result.category, SOURCE_ORACLE

    print(
        f"⚠️ Oracle category '{oracle_result.category}' rejected: confidence "
        f"{oracle_result.confidence} < {CONFIDENCE_THRESHOLD}, keeping baseline '{baseline}'",
        file=sys.stderr
    )
    return baseline, SOURCE_HEURISTIC


def enforce_valid_category(category: Any, source: str) -> Tuple[str, str]:
    """
    Last line of defense: output category must be a member of SOIL_CATEGORIES.
    A non-member is replaced by NEUTRAL_CATEGORY and tagged "fallback".
    """
    if is_valid_category(category):
        return category, source

    print(
        f"⚠️ INVARIANT VIOLATION: non-category value {category!r} from {source}, "
        f"forcing '{NEUTRAL_CATEGORY}'",
        file=sys.stderr
    )
    return NEUTRAL_CATEGORY, SOURCE_FALLBACK


async def classify_soil(answers: Mapping[str, Any], oracle=None) -> ClassificationResult:
    """
    Complete workflow: Validate → Normalize → Score → Oracle → Extract → Reconcile → Validate

    Args:
        answers: Survey answers (soilTexture, drainage, organicMatter, slope, optional issues)
        oracle: Object with ``async generate(prompt) -> str``; None runs heuristic only

    Returns:
        ClassificationResult whose category is always a valid soil category

    Raises:
        SurveyValidationError: If a required survey field is missing
    """
    validate_survey_answers(answers)

    normalized = normalize_survey_answers(answers)
    scores = score_survey(normalized)
    baseline = select_baseline(scores)
    print(f"✓ BASELINE: {baseline} (scores: {dict(scores)})", file=sys.stderr)

    oracle_result = None
    if oracle is not None:
        raw_text, _error = await request_oracle_text(oracle, build_classification_prompt(normalized))
        if raw_text is not None:
            oracle_result = extract_oracle_result(raw_text)
            if oracle_result.category is None:
                print(f"⚠️ Could not recover a category from oracle response: {raw_text[:200]}", file=sys.stderr)
            else:
                print(
                    f"✓ ORACLE: {oracle_result.category} (tier: {oracle_result.tier}, "
                    f"confidence: {oracle_result.confidence})",
                    file=sys.stderr
                )

    category, source = reconcile(baseline, oracle_result)
    category, source = enforce_valid_category(category, source)

    print(f"✓ SOIL TYPE: {category} (source: {source})", file=sys.stderr)
    return ClassificationResult(
        category=category,
        source=source,
        baseline=baseline,
        scores=scores,
        oracle=oracle_result,
    )


def classify_soil_sync(answers: Mapping[str, Any], oracle=None) -> ClassificationResult:
    """Blocking wrapper around classify_soil for scripts without an event loop."""
    return asyncio.run(classify_soil(answers, oracle=oracle))
