"""
JSON extraction and market ideas schema validation.

Backend replies are parsed into a JSON object (tolerating prose around it)
and validated field by field. Both steps return a ParseOutcome instead of
raising, so the caller branches on success or failure explicitly.
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from chatmarkets.errors import InvalidJsonError, MarketGenerationError, SchemaValidationError
from chatmarkets.models import (
    MARKET_CATEGORIES,
    MARKET_TYPES,
    Evidence,
    MarketIdea,
    MarketScores,
    OutcomeOption,
    format_timestamp,
)
from chatmarkets.utils import market_identity, normalize_probabilities

# Configure module logger
logger = logging.getLogger(__name__)

MARKET_IDEAS_KEY = "market_ideas"
MAX_MARKET_IDEAS = 20
MAX_OUTCOMES = 10
MAX_TITLE_CHARS = 120
MAX_EVIDENCE_ITEMS = 3
MAX_QUOTE_CHARS = 180
SCORE_KEYS = ("creativity", "clarity", "evidence", "fun")


@dataclass
class ParseOutcome:
    """
    Result of a parsing or validation step.

    Exactly one of value or error is meaningful: ok is True when error is None.
    """
    value: Any = None
    error: Optional[MarketGenerationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any) -> "ParseOutcome":
        return cls(value=value)

    @classmethod
    def failure(cls, error: MarketGenerationError) -> "ParseOutcome":
        return cls(error=error)


def parse_json_object(text: str) -> ParseOutcome:
    """
    Parse backend text as JSON, falling back to the outermost brace pair.

    Args:
        text: Raw backend reply

    Returns:
        ParseOutcome holding the parsed value, or an InvalidJsonError
    """
    trimmed = (text or "").strip()

    try:
        return ParseOutcome.success(json.loads(trimmed))
    except json.JSONDecodeError:
        pass

    first_brace = trimmed.find("{")
    last_brace = trimmed.rfind("}")
    if first_brace != -1 and last_brace > first_brace:
        try:
            return ParseOutcome.success(json.loads(trimmed[first_brace:last_brace + 1]))
        except json.JSONDecodeError as e:
            logger.debug(f"JSON decode error inside braces: {e}")

    logger.debug(f"Failed to parse text: {trimmed[:500]}")
    return ParseOutcome.failure(InvalidJsonError("Model output is not valid JSON."))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _parse_iso(value: str) -> Optional[datetime]:
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def _validate_idea(idea: Any, path: str, issues: list[tuple[str, str]]) -> None:
    """Append (path, message) issues for one market idea."""
    if not isinstance(idea, dict):
        issues.append((path, "Expected object"))
        return

    for key in ("title", "resolution_criteria"):
        if not _is_text(idea.get(key)):
            issues.append((f"{path}.{key}", "Expected non-empty string"))

    if not isinstance(idea.get("description"), str):
        issues.append((f"{path}.description", "Expected string"))

    category = idea.get("category")
    if not isinstance(category, str) or category.strip().lower() not in {
        c.lower() for c in MARKET_CATEGORIES
    }:
        issues.append((f"{path}.category", f"Expected one of {', '.join(MARKET_CATEGORIES)}"))

    market_type = idea.get("market_type")
    if not isinstance(market_type, str) or market_type.strip().upper() not in MARKET_TYPES:
        issues.append((f"{path}.market_type", f"Expected one of {', '.join(MARKET_TYPES)}"))

    close_time = idea.get("close_time_guess")
    if not isinstance(close_time, str) or _parse_iso(close_time) is None:
        issues.append((f"{path}.close_time_guess", "Expected ISO 8601 timestamp"))

    outcomes = idea.get("outcomes")
    if not isinstance(outcomes, list):
        issues.append((f"{path}.outcomes", "Expected array"))
    else:
        if len(outcomes) < 2 or len(outcomes) > MAX_OUTCOMES:
            issues.append((f"{path}.outcomes", f"Expected between 2 and {MAX_OUTCOMES} outcomes"))
        elif isinstance(market_type, str) and market_type.strip().upper() == "YES_NO" and len(outcomes) != 2:
            issues.append((f"{path}.outcomes", "YES_NO markets need exactly 2 outcomes"))
        for idx, outcome in enumerate(outcomes):
            outcome_path = f"{path}.outcomes.{idx}"
            if not isinstance(outcome, dict):
                issues.append((outcome_path, "Expected object"))
                continue
            if not _is_text(outcome.get("label")):
                issues.append((f"{outcome_path}.label", "Expected non-empty string"))
            probability = outcome.get("probability")
            if not _is_number(probability) or not (0.0 <= probability <= 1.0):
                issues.append((f"{outcome_path}.probability", "Expected number between 0 and 1"))

    scores = idea.get("scores")
    if not isinstance(scores, dict):
        issues.append((f"{path}.scores", "Expected object"))
    else:
        for key in SCORE_KEYS:
            value = scores.get(key)
            if not _is_number(value) or not (0.0 <= value <= 1.0):
                issues.append((f"{path}.scores.{key}", "Expected number between 0 and 1"))

    evidence = idea.get("evidence", [])
    if not isinstance(evidence, list):
        issues.append((f"{path}.evidence", "Expected array"))
        return
    for idx, item in enumerate(evidence):
        item_path = f"{path}.evidence.{idx}"
        if not isinstance(item, dict):
            issues.append((item_path, "Expected object"))
            continue
        if not _is_text(item.get("quote")):
            issues.append((f"{item_path}.quote", "Expected non-empty string"))
        approx_time = item.get("approx_time")
        if approx_time is not None and not isinstance(approx_time, str):
            issues.append((f"{item_path}.approx_time", "Expected string or null"))


def validate_market_ideas(parsed: Any) -> ParseOutcome:
    """
    Validate a parsed JSON value against the market ideas schema.

    Args:
        parsed: Value returned by parse_json_object

    Returns:
        ParseOutcome holding the list of raw idea dicts, or a
        SchemaValidationError listing every (path, message) issue
    """
    issues: list[tuple[str, str]] = []

    if not isinstance(parsed, dict):
        issues.append(("root", "Expected object"))
        return ParseOutcome.failure(SchemaValidationError(issues))

    ideas = parsed.get(MARKET_IDEAS_KEY)
    if not isinstance(ideas, list):
        issues.append((MARKET_IDEAS_KEY, "Expected array"))
        return ParseOutcome.failure(SchemaValidationError(issues))

    if not ideas:
        issues.append((MARKET_IDEAS_KEY, "Expected at least 1 market idea"))
    elif len(ideas) > MAX_MARKET_IDEAS:
        issues.append((MARKET_IDEAS_KEY, f"Expected at most {MAX_MARKET_IDEAS} market ideas"))

    for idx, idea in enumerate(ideas):
        _validate_idea(idea, f"{MARKET_IDEAS_KEY}.{idx}", issues)

    if issues:
        return ParseOutcome.failure(SchemaValidationError(issues))
    return ParseOutcome.success(ideas)


def extract_market_ideas(text: str) -> ParseOutcome:
    """
    Parse and validate a backend reply in one step.

    Returns:
        ParseOutcome holding finalised MarketIdea objects, or the first failure
    """
    parsed = parse_json_object(text)
    if not parsed.ok:
        return parsed

    validated = validate_market_ideas(parsed.value)
    if not validated.ok:
        return validated

    return ParseOutcome.success(finalize_market_ideas(validated.value))


def _canonical_category(value: str) -> str:
    lowered = value.strip().lower()
    for category in MARKET_CATEGORIES:
        if category.lower() == lowered:
            return category
    return "Other"


def finalize_market_ideas(ideas: list[dict[str, Any]]) -> list[MarketIdea]:
    """
    Convert validated idea dicts into MarketIdea objects.

    Titles and evidence are clipped, id and slug are re-derived from the
    title and position, and outcome sets go through normalize_probabilities.

    Args:
        ideas: Output of a successful validate_market_ideas

    Returns:
        List of MarketIdea
    """
    finalized: list[MarketIdea] = []

    for index, idea in enumerate(ideas):
        title = idea["title"].strip()[:MAX_TITLE_CHARS]
        market_id, slug = market_identity(title, index, prefix="market")

        outcomes = normalize_probabilities([
            OutcomeOption(label=str(outcome["label"]).strip(), probability=float(outcome["probability"]))
            for outcome in idea["outcomes"]
        ])

        evidence = []
        seen: set[str] = set()
        for item in idea.get("evidence", []):
            quote = " ".join(item["quote"].split())[:MAX_QUOTE_CHARS]
            if quote in seen:
                continue
            seen.add(quote)
            evidence.append(Evidence(quote=quote, approx_time=item.get("approx_time")))
            if len(evidence) >= MAX_EVIDENCE_ITEMS:
                break

        scores = idea["scores"]
        finalized.append(MarketIdea(
            id=market_id,
            slug=slug,
            title=title,
            description=idea["description"].strip(),
            category=_canonical_category(idea["category"]),
            market_type=idea["market_type"].strip().upper(),
            resolution_criteria=idea["resolution_criteria"].strip(),
            close_time_guess=format_timestamp(_parse_iso(idea["close_time_guess"])),
            outcomes=outcomes,
            scores=MarketScores(**{key: float(scores[key]) for key in SCORE_KEYS}),
            evidence=evidence,
        ))

    return finalized
