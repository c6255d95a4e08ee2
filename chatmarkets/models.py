"""
Data models for the chat-to-markets generator.

This module defines the dataclasses that flow through the pipeline: parsed
chat messages, per-participant statistics, and the market ideas returned to
the caller. Serialisation uses the same snake_case keys as the backend schema.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

MARKET_TYPES = ("YES_NO", "NUMERIC", "MULTIPLE_CHOICE")

MARKET_CATEGORIES = (
    "Friends",
    "Attendance",
    "Plans",
    "Tonight",
    "Chaos",
    "Logistics",
    "Weekend",
    "Other",
)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """
    Render a datetime as a UTC ISO 8601 string with millisecond precision.

    Args:
        value: Naive (assumed UTC) or aware datetime, or None

    Returns:
        String such as "2026-02-21T22:10:00.000Z", or None
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass
class ChatMessage:
    """
    One message parsed from a chat transcript.

    Attributes:
        speaker: Display name before the colon
        text: Message body; continuation lines are joined with newlines
        timestamp: UTC time of the message, or None when unparseable
    """
    speaker: str
    text: str
    timestamp: Optional[datetime] = None


@dataclass
class ParticipantStats:
    """
    Recency-weighted behavioural counters for one speaker.

    Every counter is a weighted sum and only ever grows as messages are folded in.
    """
    messages: float = 0.0
    proposals: float = 0.0
    confirms: float = 0.0
    cancels: float = 0.0
    late_signals: float = 0.0
    on_way_signals: float = 0.0
    location_signals: float = 0.0


@dataclass
class Evidence:
    quote: str
    approx_time: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"quote": self.quote, "approx_time": self.approx_time}


@dataclass
class OutcomeOption:
    label: str
    probability: float

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "probability": self.probability}


@dataclass
class MarketScores:
    creativity: float
    clarity: float
    evidence: float
    fun: float

    def to_dict(self) -> dict[str, float]:
        return {
            "creativity": self.creativity,
            "clarity": self.clarity,
            "evidence": self.evidence,
            "fun": self.fun,
        }


@dataclass
class MarketIdea:
    """
    A forecastable question proposed for the market catalog.

    Attributes:
        id: Stable identifier derived from a hash of title and index
        slug: Lowercase hyphenated projection of the title (max 64 chars)
        title: Question text (max 120 chars)
        description: One-line context
        category: One of MARKET_CATEGORIES
        market_type: One of MARKET_TYPES
        resolution_criteria: How the market resolves
        close_time_guess: ISO 8601 close time
        outcomes: Outcome options whose probabilities sum to 1
        scores: Quality scores in [0, 1]
        evidence: Up to three supporting quotes
    """
    id: str
    slug: str
    title: str
    description: str
    category: str
    market_type: str
    resolution_criteria: str
    close_time_guess: str
    outcomes: list[OutcomeOption]
    scores: MarketScores
    evidence: list[Evidence] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "market_type": self.market_type,
            "resolution_criteria": self.resolution_criteria,
            "close_time_guess": self.close_time_guess,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "scores": self.scores.to_dict(),
            "evidence": [item.to_dict() for item in self.evidence],
        }


@dataclass
class GenerationResult:
    """
    Output of one pipeline call, owned entirely by the caller.

    Attributes:
        model_used: Model identifier, suffixed with "-heuristic-fallback" for local output
        market_ideas: Generated ideas
        reasoning_trace: Backend reasoning details when reasoning is enabled
    """
    model_used: str
    market_ideas: list[MarketIdea]
    reasoning_trace: Optional[list[Any]] = None

    @property
    def is_fallback(self) -> bool:
        return self.model_used.endswith("-heuristic-fallback")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "model_used": self.model_used,
            "market_ideas": [idea.to_dict() for idea in self.market_ideas],
        }
        if self.reasoning_trace is not None:
            data["reasoning_trace"] = self.reasoning_trace
        return data
