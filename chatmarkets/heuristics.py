"""
Local heuristic market generator.

This module turns a chat transcript into twelve market ideas without any
backend call. It parses timestamped messages, folds them into recency-weighted
per-participant statistics, and fills fixed blueprints with names, places,
times, probabilities and evidence drawn from the chat. The output depends only
on the input text (and on the supplied "now" when no message has a timestamp).
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from chatmarkets.models import (
    ChatMessage,
    Evidence,
    MarketIdea,
    MarketScores,
    OutcomeOption,
    ParticipantStats,
    format_timestamp,
)
from chatmarkets.utils import clamp, market_identity, normalize_probabilities

# Configure module logger
logger = logging.getLogger(__name__)

_DIRECTION_MARKS = re.compile("[\u200e\u200f]")

BRACKETED_LINE = re.compile(
    r"^\[(\d{1,2})[./](\d{1,2})[./](\d{2,4}),\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\]\s([^:]+):\s?(.*)$"
)
DASHED_LINE = re.compile(
    r"^(\d{1,2})[./](\d{1,2})[./](\d{2,4}),\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s-\s([^:]+):\s?(.*)$"
)

PROPOSAL_PATTERN = re.compile(
    r"(יושבים|ישיבה|רוצים|בואו|אפשר|איפה|מתי|דיבור|קובעים|נקבע|מי בא|אצלי|לבוא"
    r"|let'?s|shall we|who'?s in|where should|what time|meet ?up|come over|anyone up for)",
    re.IGNORECASE,
)
CONFIRM_PATTERN = re.compile(
    r"(בעד|כן|אבוא|בא\b|מגיע|מגיעה|אצטרף|זורם|יכול|יכולה"
    r"|\bi'?m in\b|count me in|\byes\b|i'?ll be there|i'?ll come|\bcoming\b|works for me)",
    re.IGNORECASE,
)
CANCEL_PATTERN = re.compile(
    r"(לא יכול|לא יכולה|בחוץ|לא מגיע|לא בא|פוצץ|לא מסתדר|לא זמין|לא משנה"
    r"|can'?t make it|cannot make it|won'?t make it|\bi'?m out\b|not coming|\bcancel)",
    re.IGNORECASE,
)
LATE_PATTERN = re.compile(
    r"(אאחר|מאחר|באיחור|בעיכוב|בדרך|on my way|עוד .*דקות|אצטרף ב\d"
    r"|running late|\blate\b|delayed|stuck in traffic)",
    re.IGNORECASE,
)
ON_WAY_PATTERN = re.compile(
    r"(בדרך|on my way|יוצא עכשיו|עוד \d+ דקות|מגיע עוד|\bomw\b|leaving now|heading (?:out|over))",
    re.IGNORECASE,
)
LOCATION_PATTERN = re.compile(
    r"(גבעתיים|פשפשים|מרלן|כצנלסון|מלי|חומוס|בר|אצלי|בבית|לובי|דירה|קומה|נחלת יצחק|חיפה|צפון"
    r"|givatayim|flea market|my place|\bbar\b|\bpub\b|\bcafe\b|restaurant|\bpark\b|\bbeach\b|hummus)",
    re.IGNORECASE,
)
CLOCK_TIME_PATTERN = re.compile(r"\b(\d{1,2}[:.]\d{2})\b")

# (keyword, label); several keywords may share a label
LOCATION_KEYWORDS = (
    ("גבעתיים", "Givatayim"),
    ("givatayim", "Givatayim"),
    ("פשפשים", "Flea Market area"),
    ("flea market", "Flea Market area"),
    ("מרלן", "Merlen"),
    ("כצנלסון", "Katzenelson"),
    ("מלי", "Meli"),
    ("חומוס", "Hummus spot"),
    ("hummus", "Hummus spot"),
    ("אצלי", "Someone's home"),
    ("my place", "Someone's home"),
)
DEFAULT_LOCATION_LABELS = ("Givatayim", "Someone's home", "Other area")
DEFAULT_MEETUP_TIME = "22:30"
GENERIC_EVIDENCE = "Recent chat messages indicate evolving plans and uncertainty."
FALLBACK_SPEAKER = "Group"

HEURISTIC_SCORES = {"creativity": 0.66, "clarity": 0.76, "evidence": 0.67, "fun": 0.71}


@dataclass(frozen=True)
class HeuristicTuning:
    """
    Empirical constants of the heuristic generator.

    Attributes:
        recent_window: Number of newest messages weighted as recent
        older_message_weight: Weight of a signal outside the recent window
        older_mention_weight: Weight of a place/time mention outside the recent window
        evidence_pool_limit: Size cap of the general evidence pool
        drivers: (baseline, slope, low, high) per YES/NO blueprint; the Yes
            probability is clamp(baseline + statistic * slope, low, high)
    """
    recent_window: int = 1800
    older_message_weight: float = 0.35
    older_mention_weight: float = 0.4
    evidence_pool_limit: int = 120
    drivers: dict = field(default_factory=lambda: {
        "organizer_first": (0.35, 0.05, 0.35, 0.78),
        "six_confirm": (0.3, 0.06, 0.28, 0.82),
        "location_change": (0.25, 0.05, 0.25, 0.74),
        "late_start": (0.3, 0.6, 0.3, 0.8),
        "cancel_flip": (0.22, 0.45, 0.22, 0.75),
        "on_my_way": (0.28, 0.7, 0.28, 0.82),
    })

    def drive(self, key: str, statistic: float) -> float:
        baseline, slope, low, high = self.drivers[key]
        return clamp(baseline + statistic * slope, low, high)


# Close times land up to 14 days after the anchor
LATEST_TIMESTAMP = datetime.max - timedelta(days=15)


def parse_timestamp(
    day: str, month: str, year: str, hour: str, minute: str, second: Optional[str] = None
) -> Optional[datetime]:
    """
    Build a UTC datetime from chat-export date parts.

    Two-digit years are taken as 20xx. Impossible dates, and dates too close
    to datetime.max to place a close time after, yield None.
    """
    try:
        year_value = int(year)
        if year_value < 100:
            year_value += 2000
        parsed = datetime(
            year_value, int(month), int(day), int(hour), int(minute), int(second or 0)
        )
    except ValueError:
        return None
    if parsed > LATEST_TIMESTAMP:
        return None
    return parsed


def parse_chat_messages(source_text: str) -> list[ChatMessage]:
    """
    Parse a chat export into messages.

    Recognises "[d/m/yy, HH:MM] Name: text" and "d/m/yy, HH:MM - Name: text"
    lines. Any other line continues the current message; lines before the
    first recognised message are dropped.

    Args:
        source_text: Raw transcript

    Returns:
        Messages in transcript order (oldest first)
    """
    parsed: list[ChatMessage] = []
    current: Optional[ChatMessage] = None

    for raw_line in source_text.splitlines():
        line = _DIRECTION_MARKS.sub("", raw_line).rstrip()
        match = BRACKETED_LINE.match(line) or DASHED_LINE.match(line)

        if match:
            if current:
                parsed.append(current)
            day, month, year, hour, minute, second, speaker, text = match.groups()
            current = ChatMessage(
                speaker=speaker.strip(),
                text=(text or "").strip(),
                timestamp=parse_timestamp(day, month, year, hour, minute, second),
            )
            continue

        if current:
            current.text = f"{current.text}\n{line}".strip()

    if current:
        parsed.append(current)

    return parsed


def compute_participant_stats(
    messages: list[ChatMessage], tuning: HeuristicTuning
) -> dict[str, ParticipantStats]:
    """
    Fold messages into recency-weighted per-speaker counters.

    Messages among the newest tuning.recent_window count 1.0, older ones
    tuning.older_message_weight.

    Returns:
        Mapping of speaker to ParticipantStats, in order of first appearance
    """
    stats: dict[str, ParticipantStats] = {}
    recent_boundary = max(0, len(messages) - tuning.recent_window)

    for index, message in enumerate(messages):
        name = message.speaker.strip()
        if not name:
            continue
        text = " ".join(message.text.split())
        weight = 1.0 if index >= recent_boundary else tuning.older_message_weight
        entry = stats.setdefault(name, ParticipantStats())

        entry.messages += weight
        if PROPOSAL_PATTERN.search(text):
            entry.proposals += weight
        if CONFIRM_PATTERN.search(text):
            entry.confirms += weight
        if CANCEL_PATTERN.search(text):
            entry.cancels += weight
        if LATE_PATTERN.search(text):
            entry.late_signals += weight
        if ON_WAY_PATTERN.search(text):
            entry.on_way_signals += weight
        if LOCATION_PATTERN.search(text):
            entry.location_signals += weight

    return stats


def rank_participants(stats: dict[str, ParticipantStats], attribute: str) -> list[str]:
    """Return speakers sorted by one counter, highest first; ties keep first-appearance order."""
    return [
        name
        for name, _ in sorted(stats.items(), key=lambda item: -getattr(item[1], attribute))
    ]


def top_locations(
    messages: list[ChatMessage], tuning: HeuristicTuning, limit: int = 3
) -> list[str]:
    """Return location labels mentioned in the chat, most frequent first."""
    recent_boundary = max(0, len(messages) - tuning.recent_window)
    scores: dict[str, float] = {}

    for keyword, label in LOCATION_KEYWORDS:
        for index, message in enumerate(messages):
            if keyword in message.text.lower():
                weight = 1.0 if index >= recent_boundary else tuning.older_mention_weight
                scores[label] = scores.get(label, 0.0) + weight

    ranked = sorted(scores.items(), key=lambda item: -item[1])
    return [label for label, count in ranked if count > 0][:limit]


def top_clock_time(messages: list[ChatMessage], tuning: HeuristicTuning) -> str:
    """Return the most mentioned HH:MM token, or DEFAULT_MEETUP_TIME."""
    recent_boundary = max(0, len(messages) - tuning.recent_window)
    mentions: dict[str, float] = {}

    for index, message in enumerate(messages):
        weight = 1.0 if index >= recent_boundary else tuning.older_mention_weight
        for match in CLOCK_TIME_PATTERN.findall(message.text):
            normalized = match.replace(".", ":")
            mentions[normalized] = mentions.get(normalized, 0.0) + weight

    if not mentions:
        return DEFAULT_MEETUP_TIME
    return sorted(mentions.items(), key=lambda item: -item[1])[0][0]


def to_evidence(message: ChatMessage) -> Evidence:
    return Evidence(
        quote=" ".join(message.text.split())[:180],
        approx_time=format_timestamp(message.timestamp),
    )


def build_evidence_pool(
    source_text: str, newest_first: list[ChatMessage], limit: int
) -> list[Evidence]:
    """
    Collect general-purpose evidence, deduplicated by quote text.

    Double-quoted spans (8 to 180 chars) come first, then message bodies
    longer than 8 characters, newest first.
    """
    pool: list[Evidence] = []
    seen: set[str] = set()

    for span in re.findall(r'"([^"]{8,180})"', source_text):
        quote = span.strip()
        if len(quote) < 8 or quote in seen:
            continue
        seen.add(quote)
        pool.append(Evidence(quote=quote))
        if len(pool) >= limit:
            return pool

    for message in newest_first:
        if len(message.text.strip()) <= 8:
            continue
        evidence = to_evidence(message)
        if evidence.quote in seen:
            continue
        seen.add(evidence.quote)
        pool.append(evidence)
        if len(pool) >= limit:
            break

    return pool


def evidence_slice(pool: list[Evidence], index: int) -> list[Evidence]:
    """Rotate through the pool: entries index and index + 3 (mod pool size)."""
    if not pool:
        return [Evidence(quote=GENERIC_EVIDENCE)]

    first = pool[index % len(pool)]
    second = pool[(index + 3) % len(pool)]
    if second.quote == first.quote:
        return [first]
    return [first, second]


def pick_evidence(
    newest_first: list[ChatMessage],
    patterns: list[re.Pattern],
    pool: list[Evidence],
    index: int,
) -> list[Evidence]:
    """
    Select up to two quotes from the newest messages matching any pattern.

    Falls back to a rotating slice of the general pool when nothing matches.
    """
    matched: list[Evidence] = []
    seen: set[str] = set()

    for message in newest_first:
        if not any(pattern.search(message.text) for pattern in patterns):
            continue
        evidence = to_evidence(message)
        if not evidence.quote or evidence.quote in seen:
            continue
        seen.add(evidence.quote)
        matched.append(evidence)
        if len(matched) >= 2:
            break

    if matched:
        return matched
    return evidence_slice(pool, index)[:2]


def close_time_guess(index: int, anchor: datetime) -> str:
    """Close 7 to 14 days after anchor, at 18:00 to 21:00 UTC depending on index."""
    close = anchor + timedelta(days=7 + (index % 8))
    close = close.replace(hour=18 + (index % 4), minute=0, second=0, microsecond=0)
    return format_timestamp(close)


def _distinct_labels(candidates: list[str], fallbacks: tuple[str, ...], count: int) -> list[str]:
    labels: list[str] = []
    for label in list(candidates) + list(fallbacks):
        if label and label not in labels:
            labels.append(label)
        if len(labels) == count:
            break
    return labels


def _yes_no(probability: float) -> list[OutcomeOption]:
    # Raw weights; after normalisation Yes becomes p / (1 + p)
    return [OutcomeOption("Yes", probability), OutcomeOption("No", 1.0)]


def build_heuristic_markets(
    source_text: str,
    now: Optional[datetime] = None,
    tuning: Optional[HeuristicTuning] = None,
) -> list[MarketIdea]:
    """
    Generate twelve market ideas from a transcript without any backend.

    Args:
        source_text: Raw chat transcript (non-empty)
        now: Anchor for close times when no message carries a timestamp
            (defaults to the current UTC time)
        tuning: Empirical constants (defaults to HeuristicTuning())

    Returns:
        Exactly twelve MarketIdea objects
    """
    tuning = tuning or HeuristicTuning()

    messages = parse_chat_messages(source_text)
    if not messages:
        messages = [ChatMessage(speaker=FALLBACK_SPEAKER, text=source_text, timestamp=None)]
    newest_first = list(reversed(messages))

    stats = compute_participant_stats(messages, tuning)
    by_messages = rank_participants(stats, "messages")
    by_proposals = rank_participants(stats, "proposals")
    by_cancels = rank_participants(stats, "cancels")

    primary = by_messages[0] if by_messages else "Someone"
    secondary = by_messages[1] if len(by_messages) > 1 else "Another member"
    top_organizer = by_proposals[0] if by_proposals else primary
    top_canceler = by_cancels[0] if by_cancels else secondary

    latest_timestamp = next(
        (message.timestamp for message in newest_first if message.timestamp), None
    )
    if latest_timestamp is None:
        anchor = now or datetime.now(timezone.utc)
        if anchor.tzinfo is not None:
            anchor = anchor.astimezone(timezone.utc).replace(tzinfo=None)
    else:
        anchor = latest_timestamp

    locations = _distinct_labels(top_locations(messages, tuning), DEFAULT_LOCATION_LABELS, 3)
    top_time = top_clock_time(messages, tuning)

    entries = list(stats.values())
    total_confirms = sum(entry.confirms for entry in entries)
    total_late = sum(entry.late_signals for entry in entries)
    total_on_way = sum(entry.on_way_signals for entry in entries)
    confirming_people = sum(1 for entry in entries if entry.confirms > 0)
    venue_suggesters = sum(1 for entry in entries if entry.location_signals > 0)
    late_rate = total_late / max(1.0, total_confirms)
    on_way_rate = total_on_way / max(1.0, total_confirms)

    organizer_stats = stats.get(top_organizer, ParticipantStats())
    canceler_stats = stats.get(top_canceler, ParticipantStats())
    flip_ratio = canceler_stats.cancels / max(1.0, canceler_stats.confirms + 1)

    logger.debug(
        f"Heuristic stats: {len(messages)} messages, {len(stats)} participants, "
        f"late_rate={late_rate:.2f}, on_way_rate={on_way_rate:.2f}"
    )

    lock_in_labels = _distinct_labels(
        [top_organizer, primary, secondary], ("Another member",), 2
    ) + ["Someone else"]

    blueprints = [
        {
            "title": f"Will {top_organizer} be the first to kick off the next meetup plan?",
            "description": "Organizer momentum based on recent planning behavior.",
            "category": "Friends",
            "market_type": "YES_NO",
            "resolution_criteria": f"Resolves YES if {top_organizer} posts the first concrete planning message (time/place) for the next meetup.",
            "outcomes": _yes_no(tuning.drive("organizer_first", organizer_stats.proposals)),
            "patterns": [PROPOSAL_PATTERN],
        },
        {
            "title": "Will at least 6 people explicitly confirm attendance?",
            "description": "Attendance strength over the next planned meetup.",
            "category": "Attendance",
            "market_type": "YES_NO",
            "resolution_criteria": "Resolves YES if 6 or more unique members explicitly confirm attending the next meetup before close time.",
            "outcomes": _yes_no(tuning.drive("six_confirm", confirming_people)),
            "patterns": [CONFIRM_PATTERN],
        },
        {
            "title": "Will the meetup location change after an initial location is proposed?",
            "description": "Tracks last-minute place pivots.",
            "category": "Plans",
            "market_type": "YES_NO",
            "resolution_criteria": "Resolves YES if the group switches to a different final location after at least one specific location was already proposed.",
            "outcomes": _yes_no(tuning.drive("location_change", venue_suggesters)),
            "patterns": [LOCATION_PATTERN],
        },
        {
            "title": f"Will the next meetup start later than {top_time}?",
            "description": "Timing drift from planned start.",
            "category": "Tonight",
            "market_type": "YES_NO",
            "resolution_criteria": "Resolves YES if the first clear arrival/start message appears later than the most commonly discussed meetup time.",
            "outcomes": _yes_no(tuning.drive("late_start", late_rate)),
            "patterns": [LATE_PATTERN, CLOCK_TIME_PATTERN],
        },
        {
            "title": f"Will {top_canceler} cancel after initially sounding in?",
            "description": "Flip-risk for likely dropouts.",
            "category": "Chaos",
            "market_type": "YES_NO",
            "resolution_criteria": f"Resolves YES if {top_canceler} sends a positive/neutral attendance signal and later sends a cancel/out signal for the same upcoming meetup.",
            "outcomes": _yes_no(tuning.drive("cancel_flip", flip_ratio)),
            "patterns": [CANCEL_PATTERN, CONFIRM_PATTERN],
        },
        {
            "title": "Will someone send a clear “on my way / בדרך” message before arrival?",
            "description": "Transport/arrival signal before meetup start.",
            "category": "Logistics",
            "market_type": "YES_NO",
            "resolution_criteria": "Resolves YES if a participant sends an explicit pre-arrival movement message (e.g. on my way / בדרך) before the meetup starts.",
            "outcomes": _yes_no(tuning.drive("on_my_way", on_way_rate)),
            "patterns": [ON_WAY_PATTERN],
        },
        {
            "title": "How many people will explicitly confirm attendance?",
            "description": "Numeric attendance depth.",
            "category": "Attendance",
            "market_type": "NUMERIC",
            "resolution_criteria": "Resolves to the bucket containing the number of unique explicit confirmations for the next meetup.",
            "outcomes": [
                OutcomeOption("0-3", 0.5 if confirming_people <= 3 else 0.2),
                OutcomeOption("4-6", 0.5 if 4 <= confirming_people <= 6 else 0.4),
                OutcomeOption("7+", 0.5 if confirming_people >= 7 else 0.4),
            ],
            "patterns": [CONFIRM_PATTERN],
        },
        {
            "title": "How many distinct location options will be proposed?",
            "description": "Numeric location-option breadth.",
            "category": "Logistics",
            "market_type": "NUMERIC",
            "resolution_criteria": "Resolves to the number bucket of distinct location options proposed before final venue confirmation.",
            "outcomes": [
                OutcomeOption("1-2", 0.5 if venue_suggesters <= 2 else 0.25),
                OutcomeOption("3-4", 0.5 if 3 <= venue_suggesters <= 4 else 0.45),
                OutcomeOption("5+", 0.4 if venue_suggesters >= 5 else 0.3),
            ],
            "patterns": [LOCATION_PATTERN],
        },
        {
            "title": "How many late/delay signals will appear before meetup start?",
            "description": "Numeric lateness chatter intensity.",
            "category": "Plans",
            "market_type": "NUMERIC",
            "resolution_criteria": "Resolves to bucket by count of delay/late signals (e.g. late, in traffic, arriving later) before meetup starts.",
            "outcomes": [
                OutcomeOption("0-1", 0.55 if total_late <= 1 else 0.25),
                OutcomeOption("2-4", 0.55 if 2 <= total_late <= 4 else 0.45),
                OutcomeOption("5+", 0.35 if total_late >= 5 else 0.3),
            ],
            "patterns": [LATE_PATTERN],
        },
        {
            "title": "How many meetup-time revisions will happen before final lock?",
            "description": "Numeric schedule volatility.",
            "category": "Weekend",
            "market_type": "NUMERIC",
            "resolution_criteria": "Resolves to bucket by count of distinct proposed meetup times before final plan lock for next meetup.",
            "outcomes": [
                OutcomeOption("0", 0.2),
                OutcomeOption("1-2", 0.55),
                OutcomeOption("3+", 0.25),
            ],
            "patterns": [CLOCK_TIME_PATTERN],
        },
        {
            "title": "Which area is most likely for the next meetup?",
            "description": "Multiple-choice location forecast.",
            "category": "Other",
            "market_type": "MULTIPLE_CHOICE",
            "resolution_criteria": "Resolves to the area that matches the final meetup location mentioned in the group chat.",
            "outcomes": [
                OutcomeOption(locations[0], 0.45),
                OutcomeOption(locations[1], 0.33),
                OutcomeOption(locations[2], 0.22),
            ],
            "patterns": [LOCATION_PATTERN],
        },
        {
            "title": "Who will post the final lock-in message for the next meetup?",
            "description": "Multiple-choice final decision ownership.",
            "category": "Friends",
            "market_type": "MULTIPLE_CHOICE",
            "resolution_criteria": "Resolves to the person who sends the final unambiguous lock-in message (time/place confirmed) for the next meetup.",
            "outcomes": [
                OutcomeOption(lock_in_labels[0], 0.44),
                OutcomeOption(lock_in_labels[1], 0.3),
                OutcomeOption(lock_in_labels[2], 0.26),
            ],
            "patterns": [PROPOSAL_PATTERN, CONFIRM_PATTERN],
        },
    ]

    pool = build_evidence_pool(source_text, newest_first, tuning.evidence_pool_limit)

    ideas: list[MarketIdea] = []
    for index, blueprint in enumerate(blueprints):
        title = blueprint["title"][:120]
        market_id, slug = market_identity(title, index, prefix="heuristic")
        ideas.append(MarketIdea(
            id=market_id,
            slug=slug,
            title=title,
            description=blueprint["description"],
            category=blueprint["category"],
            market_type=blueprint["market_type"],
            resolution_criteria=blueprint["resolution_criteria"],
            close_time_guess=close_time_guess(index, anchor),
            outcomes=normalize_probabilities(blueprint["outcomes"]),
            scores=MarketScores(**HEURISTIC_SCORES),
            evidence=pick_evidence(newest_first, blueprint["patterns"], pool, index)[:3],
        ))

    return ideas
