"""
Prompt templates for market generation, repair and chunk summaries.

The market prompt asks for the exact JSON shape that schema.validate_market_ideas
accepts, so the repair prompt can simply point back at it.
"""

from chatmarkets.models import MARKET_CATEGORIES, MARKET_TYPES

_SCHEMA_EXAMPLE = """{
  "market_ideas": [
    {
      "title": "Will Dana confirm Friday's dinner before Thursday night?",
      "description": "Short context for the market.",
      "category": "Plans",
      "market_type": "YES_NO",
      "resolution_criteria": "Resolves YES if ...",
      "close_time_guess": "2026-03-01T18:00:00.000Z",
      "outcomes": [
        {"label": "Yes", "probability": 0.6},
        {"label": "No", "probability": 0.4}
      ],
      "scores": {"creativity": 0.7, "clarity": 0.8, "evidence": 0.6, "fun": 0.75},
      "evidence": [
        {"quote": "short verbatim quote from the chat", "approx_time": null}
      ]
    }
  ]
}"""

SYSTEM_PROMPT = f"""You turn group chat transcripts into playful but well-defined prediction markets.

Rules:
- Propose 8 to 12 market ideas about things likely to happen AFTER the latest messages.
- Each market must be resolvable from the group chat itself.
- market_type is one of: {", ".join(MARKET_TYPES)}.
- category is one of: {", ".join(MARKET_CATEGORIES)}.
- YES_NO markets have exactly two outcomes labelled "Yes" and "No".
- Outcome probabilities are numbers between 0 and 1 and should sum to 1.
- scores (creativity, clarity, evidence, fun) are numbers between 0 and 1.
- evidence holds at most 3 short verbatim quotes (max 180 characters each).
- Titles are at most 120 characters.

Return ONLY valid JSON (no markdown, no code blocks, no explanatory text) with this structure:

{_SCHEMA_EXAMPLE}"""


def user_prompt(chat_text: str) -> str:
    """
    Build the user message carrying the (possibly clipped or digested) chat.

    Args:
        chat_text: Chat transcript or chunk digest

    Returns:
        Formatted prompt string
    """
    return f"""Here is the group chat (oldest first unless marked as a newest-first digest).
Prioritise the most recent plans and open questions.

Chat:
\"\"\"
{chat_text}
\"\"\"

Return the JSON object now."""


def fix_json_prompt(invalid_output: str) -> str:
    """Build the corrective instruction for the repair pass."""
    preview = invalid_output[:4_000]
    return f"""Your previous reply was not valid JSON matching the required schema.
Repair it into valid JSON matching the schema from the system message.
Return ONLY the JSON object, with no commentary.

Previous reply:
{preview}"""


CHUNK_SYSTEM_PROMPT = """You compress group chat chunks for downstream market generation.
Return plain text only, no markdown.
Output must be concise and contain:
- Prioritize newest updates in this chunk over old updates in this chunk.
- Names mentioned (first names only)
- Concrete upcoming plans/logistics/timing facts
- 5-12 direct short quotes copied from the chunk
- Any uncertainty/conflicts in plans"""


def chunk_user_prompt(chunk_text: str, rank: int, total: int, summary_chars: int) -> str:
    """
    Build the user message for one chunk summary request.

    Args:
        chunk_text: Chunk contents
        rank: 1-based position of the chunk (1 is newest)
        total: Number of chunks
        summary_chars: Length cap the summary should respect
    """
    return f"""Chunk {rank}/{total} (newest-first order)
Extract only the most useful signals for prediction markets.
Focus on events likely to happen after the latest messages.
Keep it under {summary_chars} characters.

Chunk text:
\"\"\"
{chunk_text}
\"\"\""""
