"""
Reporter module for rendering generated market ideas.

This module formats a GenerationResult as a plain-text report: a header,
summary statistics and one block per market idea, with close times shown in
the configured report timezone.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytz

from chatmarkets.models import MARKET_TYPES, GenerationResult, MarketIdea

# Configure module logger
logger = logging.getLogger(__name__)


def _resolve_timezone(name: str):
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown report timezone {name!r}, using UTC")
        return pytz.utc


def generate_report(
    result: GenerationResult,
    output_file: Optional[Path] = None,
    report_timezone: str = "UTC",
    generated_at: Optional[datetime] = None,
) -> str:
    """
    Generate a formatted report of market ideas.

    Args:
        result: Pipeline output
        output_file: Optional path to save report to file
        report_timezone: pytz timezone name for displayed times
        generated_at: Report timestamp (defaults to now)

    Returns:
        Formatted report string
    """
    tz = _resolve_timezone(report_timezone)

    header = _generate_header(result, tz, generated_at)
    summary = _generate_summary(result)
    ideas_section = _generate_ideas_section(result.market_ideas, tz)

    report = f"{header}\n\n{summary}\n\n{ideas_section}"

    if output_file:
        save_output(report, output_file)

    return report


def generate_json(result: GenerationResult, output_file: Optional[Path] = None) -> str:
    """Render the result as indented JSON, optionally saving it."""
    rendered = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)
    if output_file:
        save_output(rendered, output_file)
    return rendered


def _generate_header(result: GenerationResult, tz, generated_at: Optional[datetime]) -> str:
    now = generated_at or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    stamp = now.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S %Z")

    header = f"""
{'='*80}
  CHAT MARKETS - MARKET IDEAS REPORT
{'='*80}
Generated: {stamp}
Market Ideas: {len(result.market_ideas)}
{'='*80}
"""
    return header.strip()


def _generate_summary(result: GenerationResult) -> str:
    """
    Generate summary statistics section.

    Args:
        result: Pipeline output

    Returns:
        Summary string
    """
    ideas = result.market_ideas
    if not ideas:
        return "No market ideas generated."

    type_lines = []
    for market_type in MARKET_TYPES:
        count = sum(1 for idea in ideas if idea.market_type == market_type)
        type_lines.append(f"  - {market_type}: {count}")

    avg_clarity = sum(idea.scores.clarity for idea in ideas) / len(ideas)
    avg_fun = sum(idea.scores.fun for idea in ideas) / len(ideas)

    summary = f"""
SUMMARY STATISTICS
{'-'*80}
Model Used: {result.model_used}
Heuristic Fallback: {"yes" if result.is_fallback else "no"}
Total Market Ideas: {len(ideas)}
""" + "\n".join(type_lines) + f"""

Average Scores:
  - Clarity: {avg_clarity:.2f}
  - Fun: {avg_fun:.2f}
"""
    return summary.strip()


def _generate_ideas_section(ideas: list[MarketIdea], tz) -> str:
    if not ideas:
        return "No market ideas to display."

    sections = ["MARKET IDEAS", "-" * 80]

    for idx, idea in enumerate(ideas, 1):
        sections.append(_format_idea(idx, idea, tz))
        sections.append("")

    return "\n".join(sections)


def _format_idea(position: int, idea: MarketIdea, tz) -> str:
    """
    Format a single market idea with outcomes and evidence.

    Args:
        position: 1-based position in the report
        idea: MarketIdea to render
        tz: pytz timezone for the close time

    Returns:
        Formatted idea string
    """
    lines = [
        f"[{position}] {idea.title}",
        f"    Slug: {idea.slug}",
        f"    Type: {idea.market_type} | Category: {idea.category}",
        f"    Closes: {format_close_time(idea.close_time_guess, tz)}",
        "",
        "    OUTCOMES:",
    ]
    for outcome in idea.outcomes:
        lines.append(f"      {outcome.label}: {outcome.probability:.0%}")

    lines.append("")
    lines.append("    RESOLUTION:")
    lines.append(f"      {idea.resolution_criteria}")

    if idea.evidence:
        lines.append("")
        lines.append("    EVIDENCE:")
        for item in idea.evidence:
            lines.append(f'      • "{item.quote}"')

    return "\n".join(lines)


def format_close_time(value: str, tz) -> str:
    """
    Render an ISO close time in the given timezone.

    Args:
        value: ISO 8601 timestamp (trailing "Z" allowed)
        tz: pytz timezone

    Returns:
        "YYYY-MM-DD HH:MM TZ", or the raw value if it cannot be parsed
    """
    candidate = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed.astimezone(tz).strftime("%Y-%m-%d %H:%M %Z")


def save_output(content: str, file_path: Path) -> None:
    """
    Save rendered output to file.

    Args:
        content: Report or JSON string
        file_path: Path to save file
    """
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
        logger.info(f"Output saved to {file_path}")
    except OSError as e:
        logger.error(f"Error saving output to {file_path}: {e}", exc_info=True)
