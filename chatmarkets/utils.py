"""
Utility functions for the chat-to-markets generator.

This module provides shared helpers used across the codebase: numeric
clamping, probability normalisation and identifier derivation.
All functions are pure helpers with no pipeline logic.
"""

import hashlib
import logging
import re

from chatmarkets.models import OutcomeOption

# Configure module logger
logger = logging.getLogger(__name__)

SLUG_MAX_CHARS = 64

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def clamp(value: float, min_value: float, max_value: float) -> float:
    """
    Clamp a value between minimum and maximum bounds.

    Args:
        value: Value to clamp
        min_value: Minimum allowed value
        max_value: Maximum allowed value

    Returns:
        Clamped value between min_value and max_value

    Raises:
        ValueError: If min_value > max_value
    """
    if min_value > max_value:
        raise ValueError(f"min_value ({min_value}) must be <= max_value ({max_value})")

    return max(min_value, min(value, max_value))


def round2(value: float) -> float:
    """Round half away from zero to two decimals."""
    return float(f"{value + (1e-9 if value >= 0 else -1e-9):.2f}")


def normalize_probabilities(outcomes: list[OutcomeOption]) -> list[OutcomeOption]:
    """
    Rescale an outcome set so probabilities are in [0, 1] and sum to exactly 1.

    Each probability is clamped to [0, 1] first. A set summing to zero gets
    equal shares. Otherwise every entry but the last is divided by the sum and
    rounded to two decimals, and the last entry receives the remainder. When
    rounding pushes the leading shares past 1, the largest ones give back 0.01
    at a time until the remainder is non-negative.

    Args:
        outcomes: Outcome options with raw (unnormalised) probabilities

    Returns:
        New list of OutcomeOption with normalised probabilities
    """
    if not outcomes:
        return []

    safe = [clamp(outcome.probability, 0.0, 1.0) for outcome in outcomes]
    total = sum(safe)

    if total <= 0:
        shares = [round2(1.0 / len(safe))] * (len(safe) - 1)
    else:
        shares = [round2(value / total) for value in safe[:-1]]

    # Leading shares never exceed 1 in total
    excess = round2(sum(shares) - 1.0)
    while excess > 0:
        largest = max(range(len(shares)), key=lambda i: shares[i])
        shares[largest] = round2(shares[largest] - 0.01)
        excess = round2(excess - 0.01)
    shares.append(round2(1.0 - sum(shares)))

    return [
        OutcomeOption(label=outcome.label, probability=clamp(share, 0.0, 1.0))
        for outcome, share in zip(outcomes, shares)
    ]


def hash_id(value: str) -> str:
    """Return the first 12 hex characters of the SHA-1 digest of value."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:12]


def slugify(value: str) -> str:
    """
    Project a title onto a URL slug.

    Args:
        value: Arbitrary title text

    Returns:
        Lowercase string of [a-z0-9-] without leading/trailing hyphens,
        at most 64 characters; empty when value has no ASCII alphanumerics
    """
    slug = _NON_SLUG_CHARS.sub("-", value.lower()).strip("-")
    return slug[:SLUG_MAX_CHARS].strip("-")


def market_identity(title: str, index: int, prefix: str) -> tuple[str, str]:
    """
    Derive the (id, slug) pair for a market idea.

    Args:
        title: Final (already clipped) title
        index: Zero-based position of the idea in its generation call
        prefix: "heuristic" for local ideas, "market" for backend ideas

    Returns:
        Tuple of id and slug; slug falls back to id when the title has no slug form
    """
    market_id = f"{prefix}-{index + 1}-{hash_id(f'{title}-{index}')}"
    slug = slugify(title or market_id) or market_id
    return market_id, slug
