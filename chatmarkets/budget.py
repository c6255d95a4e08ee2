"""
Input size budgeting for generation requests.

A budget is a maximum character count for one request's input. Oversized
text keeps its opening (10% of the budget) and its most recent tail, with a
marker standing in for the dropped middle.
"""

from chatmarkets.config import Config

TRUNCATION_MARKER = "\n\n...[truncated for token budget]...\n\n"
HEAD_FRACTION = 0.1
TAIL_RESERVE_CHARS = 64
MIN_TAIL_CHARS = 1_500


def clip_text(text: str, budget: int) -> str:
    """
    Truncate text to a character budget, keeping head and tail.

    Args:
        text: Source text
        budget: Maximum characters wanted

    Returns:
        text unchanged when it fits; otherwise the first 10% of the budget,
        the truncation marker, and the last max(budget - head - 64, 1500) characters
    """
    if len(text) <= budget:
        return text

    head_chars = int(budget * HEAD_FRACTION)
    tail_chars = max(budget - head_chars - TAIL_RESERVE_CHARS, MIN_TAIL_CHARS)
    return f"{text[:head_chars]}{TRUNCATION_MARKER}{text[-tail_chars:]}"


def needs_chunking(text: str, config: Config) -> bool:
    """Return True when text exceeds the largest single-request budget."""
    return len(text) > config.max_input_chars
