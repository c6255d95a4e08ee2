"""
Market generation pipeline entry point.

Flow for one call:
1. Reject blank input and a missing API key before any backend call
2. Replace oversized transcripts with a chunked digest
3. Try each input budget in descending order: generate, validate, repair once
4. Move to a smaller budget only when the failure reports a context overflow
5. Fall back to the local heuristic generator when every budget failed
"""

import logging
import time
from datetime import datetime
from typing import Any, Optional

from chatmarkets.backend_client import ChatTurn, create_completion
from chatmarkets.budget import clip_text, needs_chunking
from chatmarkets.chunking import build_chunked_digest
from chatmarkets.config import Config
from chatmarkets.errors import (
    ConfigurationError,
    EmptyInputError,
    MarketGenerationError,
    is_context_length_error,
)
from chatmarkets.events import EventSink, LoggingEventSink
from chatmarkets.heuristics import build_heuristic_markets
from chatmarkets.models import GenerationResult, MarketIdea
from chatmarkets.prompts import SYSTEM_PROMPT, fix_json_prompt, user_prompt
from chatmarkets.schema import extract_market_ideas

# Configure module logger
logger = logging.getLogger(__name__)

GENERATION_TEMPERATURE = 0.25
REPAIR_TEMPERATURE = 0
FALLBACK_SUFFIX = "-heuristic-fallback"


def _elapsed_ms(started_at: float) -> int:
    return int((time.monotonic() - started_at) * 1000)


def run_attempt(
    config: Config, input_text: str, budget: int, sink: EventSink
) -> tuple[list[MarketIdea], list[Any]]:
    """
    Run one generate-then-repair attempt at a given budget.

    The first reply is parsed and validated. On failure the conversation is
    replayed with the invalid reply and a corrective instruction at
    temperature 0, and the repaired reply is validated once.

    Args:
        config: Pipeline configuration
        input_text: Transcript or digest already clipped to budget
        budget: Budget in characters (for events only)
        sink: Event sink

    Returns:
        tuple: (market_ideas, reasoning_details collected from each pass)

    Raises:
        MarketGenerationError: Backend failure on either pass, or an invalid repaired reply
    """
    started_at = time.monotonic()
    sink.record("model:attempt", model=config.model, budget_chars=budget, clipped_chars=len(input_text))

    base_messages = [
        ChatTurn(role="system", content=SYSTEM_PROMPT),
        ChatTurn(role="user", content=user_prompt(input_text)),
    ]

    first_pass = create_completion(
        config, base_messages, temperature=GENERATION_TEMPERATURE, sink=sink, attempt_label="initial"
    )
    reasoning: list[Any] = []
    if first_pass.reasoning_details is not None:
        reasoning.append(first_pass.reasoning_details)

    outcome = extract_market_ideas(first_pass.content)
    if outcome.ok:
        sink.record(
            "model:success-first-pass",
            model=config.model,
            market_count=len(outcome.value),
            elapsed_ms=_elapsed_ms(started_at),
        )
        return outcome.value, reasoning

    sink.record("model:first-pass-invalid", model=config.model, error=str(outcome.error))

    repair_messages = base_messages + [
        ChatTurn(
            role="assistant",
            content=first_pass.content,
            reasoning_details=first_pass.reasoning_details,
        ),
        ChatTurn(role="user", content=fix_json_prompt(first_pass.content)),
    ]
    repaired_pass = create_completion(
        config, repair_messages, temperature=REPAIR_TEMPERATURE, sink=sink, attempt_label="repair"
    )
    if repaired_pass.reasoning_details is not None:
        reasoning.append(repaired_pass.reasoning_details)

    outcome = extract_market_ideas(repaired_pass.content)
    if not outcome.ok:
        raise outcome.error

    sink.record(
        "model:success-after-repair",
        model=config.model,
        market_count=len(outcome.value),
        elapsed_ms=_elapsed_ms(started_at),
    )
    return outcome.value, reasoning


def generate_markets_from_chat(
    chat_text: str,
    config: Optional[Config] = None,
    sink: Optional[EventSink] = None,
    now: Optional[datetime] = None,
) -> GenerationResult:
    """
    Turn a chat transcript into market ideas.

    Args:
        chat_text: Raw exported chat transcript
        config: Pipeline configuration (defaults to Config.from_env())
        sink: Event sink (defaults to a LoggingEventSink)
        now: Close-time anchor for heuristic ideas when the transcript has no timestamps

    Returns:
        GenerationResult owned by the caller

    Raises:
        EmptyInputError: If chat_text is blank
        ConfigurationError: If no API key is configured
        MarketGenerationError: If every budget failed and the heuristic fallback is disabled
    """
    trimmed = (chat_text or "").strip()
    if not trimmed:
        raise EmptyInputError("Chat text is empty.")

    config = config or Config.from_env()
    sink = sink or LoggingEventSink()

    if not config.api_key:
        raise ConfigurationError("OPENROUTER_API_KEY is missing.")

    chunking_used = needs_chunking(trimmed, config)
    source_text = build_chunked_digest(trimmed, config, sink) if chunking_used else trimmed
    budgets = config.input_budgets

    sink.record(
        "generate:start",
        model=config.model,
        input_chars=len(chat_text),
        effective_input_chars=len(source_text),
        chunking_used=chunking_used,
        input_budgets=budgets,
        max_input_chars=config.max_input_chars,
    )

    last_failure: Optional[str] = None
    last_error: Optional[MarketGenerationError] = None

    for position, budget in enumerate(budgets):
        clipped = clip_text(source_text, budget)
        try:
            ideas, reasoning = run_attempt(config, clipped, budget, sink)
        except MarketGenerationError as e:
            last_error = e
            last_failure = str(e)
            context_error = is_context_length_error(e)
            sink.record(
                "model:failed",
                model=config.model,
                budget_chars=budget,
                error=last_failure,
                is_context_error=context_error,
            )
            if context_error and position < len(budgets) - 1:
                sink.record(
                    "model:retry-with-smaller-budget",
                    model=config.model,
                    next_budget=budgets[position + 1],
                )
                continue
            break

        return GenerationResult(
            model_used=config.model,
            market_ideas=ideas,
            reasoning_trace=reasoning if config.reasoning_enabled else None,
        )

    if not config.heuristic_fallback:
        raise MarketGenerationError(
            f"[{config.model}] {last_failure or 'failed after all input budgets'}"
        ) from last_error

    logger.warning(f"All backend attempts failed, using heuristic markets: {last_failure}")
    sink.record(
        "fallback:heuristic-markets",
        model=config.model,
        reason=last_failure or "empty-or-unusable-model-output",
        source_chars=len(trimmed),
    )
    return GenerationResult(
        model_used=f"{config.model}{FALLBACK_SUFFIX}",
        market_ideas=build_heuristic_markets(trimmed, now=now),
    )
