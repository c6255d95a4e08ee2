"""
Configuration management for the chat-to-markets generator.

This module loads every tunable of the generation pipeline from environment
variables (optionally via a .env file) into one immutable Config value. The
pipeline builds a fresh Config per invocation and passes it explicitly to each
component, so no module reads the environment on its own.
"""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_MODEL = "stepfun/step-3.5-flash:free"
DEFAULT_MAX_INPUT_CHARS = 40_000
DEFAULT_CHUNK_SIZE_CHARS = 12_000
DEFAULT_CHUNK_OVERLAP_CHARS = 1_000
DEFAULT_MAX_CHUNKS = 10
DEFAULT_CHUNK_SUMMARY_CHARS = 2_000
DEFAULT_REQUEST_TIMEOUT_MS = 15_000
MIN_REQUEST_TIMEOUT_MS = 3_000
DEFAULT_MAX_OUTPUT_TOKENS = 3_500
DEFAULT_STEPFUN_MAX_OUTPUT_TOKENS = 12_000
DEFAULT_RETRY_BUDGETS = (20_000, 10_000)
DEFAULT_APP_TITLE = "potymarket"


def _read_number(name: str, default: float) -> float:
    """
    Read a numeric environment variable.

    Args:
        name: Environment variable name
        default: Value used when the variable is unset or not a finite number

    Returns:
        Parsed float, or default
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value):
        return default
    return value


def _read_switch(name: str) -> Optional[bool]:
    """Return True for "on", False for "off", None when unset or unrecognised."""
    raw = (os.getenv(name) or "").strip().lower()
    if raw == "on":
        return True
    if raw == "off":
        return False
    return None


def _read_budgets(name: str) -> tuple[int, ...]:
    raw = os.getenv(name)
    if not raw:
        return DEFAULT_RETRY_BUDGETS
    budgets = []
    for part in raw.split(","):
        try:
            value = float(part.strip())
        except ValueError:
            continue
        if math.isfinite(value) and int(value) > 0:
            budgets.append(int(value))
    return tuple(budgets) or DEFAULT_RETRY_BUDGETS


def _default_referer() -> Optional[str]:
    configured = (os.getenv("OPENROUTER_REFERER") or "").strip()
    if configured:
        return configured
    if os.getenv("APP_ENV", os.getenv("NODE_ENV", "")) != "production":
        return "http://localhost:3000"
    if os.getenv("VERCEL_URL"):
        return f"https://{os.getenv('VERCEL_URL')}"
    return None


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for one generation call.

    All values have safe defaults; out-of-range values read from the
    environment are replaced by the default rather than rejected, except the
    API key, whose absence is reported by validate().

    Attributes:
        api_key: Bearer token for the completions backend
        model: Backend model identifier
        max_input_chars: Largest request input budget, and the chunking threshold
        chunk_size: Characters per chunk when the input is chunked
        chunk_overlap: Characters shared by neighbouring chunks
        max_chunks: Upper bound on the number of chunks
        chunk_summary_chars: Length cap on each chunk summary
        use_llm_chunk_summary: Summarise chunks with the backend instead of locally
        heuristic_fallback: Fall back to local market generation on total failure
        request_timeout_ms: Per-request timeout in milliseconds
        max_output_tokens: Generic output token cap
        stepfun_max_output_tokens: Output token cap for stepfun/ models
        reasoning_enabled: Ask the backend for reasoning traces and return them
        referer: Attribution referrer header, or None to omit it
        app_title: Attribution title header
        retry_budgets: Smaller budgets tried after max_input_chars on context overflow
    """
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_input_chars: int = DEFAULT_MAX_INPUT_CHARS
    chunk_size: int = DEFAULT_CHUNK_SIZE_CHARS
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP_CHARS
    max_chunks: int = DEFAULT_MAX_CHUNKS
    chunk_summary_chars: int = DEFAULT_CHUNK_SUMMARY_CHARS
    use_llm_chunk_summary: bool = False
    heuristic_fallback: bool = True
    request_timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    stepfun_max_output_tokens: int = DEFAULT_STEPFUN_MAX_OUTPUT_TOKENS
    reasoning_enabled: bool = False
    referer: Optional[str] = "http://localhost:3000"
    app_title: str = DEFAULT_APP_TITLE
    retry_budgets: tuple[int, ...] = field(default=DEFAULT_RETRY_BUDGETS)

    # Logging / reporting
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    report_timezone: str = "UTC"

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Config":
        """
        Build a Config from the current environment.

        Args:
            load_env_file: Load a .env file first if one exists

        Returns:
            Config with every guard applied
        """
        if load_env_file:
            load_dotenv()

        max_input = _read_number("OPENROUTER_MAX_INPUT_CHARS", DEFAULT_MAX_INPUT_CHARS)
        if max_input <= 2_000:
            max_input = DEFAULT_MAX_INPUT_CHARS

        chunk_size = _read_number("OPENROUTER_CHUNK_SIZE_CHARS", DEFAULT_CHUNK_SIZE_CHARS)
        if chunk_size <= 2_000:
            chunk_size = DEFAULT_CHUNK_SIZE_CHARS
        chunk_size = int(chunk_size)

        overlap = _read_number("OPENROUTER_CHUNK_OVERLAP_CHARS", DEFAULT_CHUNK_OVERLAP_CHARS)
        if not (0 <= overlap < chunk_size):
            overlap = DEFAULT_CHUNK_OVERLAP_CHARS
        overlap = int(overlap)

        max_chunks = _read_number("OPENROUTER_MAX_CHUNKS", DEFAULT_MAX_CHUNKS)
        if max_chunks < 1:
            max_chunks = DEFAULT_MAX_CHUNKS

        summary_chars = _read_number("OPENROUTER_CHUNK_SUMMARY_CHARS", DEFAULT_CHUNK_SUMMARY_CHARS)
        if summary_chars < 1:
            summary_chars = DEFAULT_CHUNK_SUMMARY_CHARS

        timeout_ms = _read_number("OPENROUTER_REQUEST_TIMEOUT_MS", DEFAULT_REQUEST_TIMEOUT_MS)
        if timeout_ms < MIN_REQUEST_TIMEOUT_MS:
            timeout_ms = DEFAULT_REQUEST_TIMEOUT_MS

        max_tokens = _read_number("OPENROUTER_MAX_OUTPUT_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS)
        if max_tokens <= 0:
            max_tokens = DEFAULT_MAX_OUTPUT_TOKENS

        stepfun_tokens = _read_number(
            "OPENROUTER_STEPFUN_MAX_OUTPUT_TOKENS", DEFAULT_STEPFUN_MAX_OUTPUT_TOKENS
        )
        if stepfun_tokens <= 0:
            stepfun_tokens = DEFAULT_STEPFUN_MAX_OUTPUT_TOKENS

        log_file = os.getenv("LOG_FILE")

        return cls(
            api_key=os.getenv("OPENROUTER_API_KEY") or None,
            model=os.getenv("OPENROUTER_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL,
            max_input_chars=int(max_input),
            chunk_size=chunk_size,
            chunk_overlap=overlap,
            max_chunks=int(max_chunks),
            chunk_summary_chars=int(summary_chars),
            use_llm_chunk_summary=_read_switch("OPENROUTER_USE_LLM_CHUNK_SUMMARY") is True,
            heuristic_fallback=_read_switch("OPENROUTER_ENABLE_HEURISTIC_FALLBACK") is not False,
            request_timeout_ms=int(timeout_ms),
            max_output_tokens=int(max_tokens),
            stepfun_max_output_tokens=int(stepfun_tokens),
            reasoning_enabled=_read_switch("OPENROUTER_REASONING") is True,
            referer=_default_referer(),
            app_title=os.getenv("OPENROUTER_APP_TITLE", DEFAULT_APP_TITLE),
            retry_budgets=_read_budgets("OPENROUTER_RETRY_BUDGETS"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=Path(log_file) if log_file else None,
            report_timezone=os.getenv("REPORT_TIMEZONE", "UTC"),
        )

    @property
    def input_budgets(self) -> list[int]:
        """
        Descending sequence of input budgets for the retry controller.

        Starts at max_input_chars; configured retry budgets are kept only when
        strictly smaller than the previous entry.
        """
        budgets = [self.max_input_chars]
        for budget in sorted(set(self.retry_budgets), reverse=True):
            if budget < budgets[-1]:
                budgets.append(budget)
        return budgets

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000.0

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate that all required configuration values are present.

        Returns:
            tuple: (is_valid, list_of_errors)
        """
        errors: list[str] = []

        if not self.api_key:
            errors.append("OPENROUTER_API_KEY is required but not set")

        if not self.model:
            errors.append("OPENROUTER_MODEL must not be empty")

        if self.chunk_overlap >= self.chunk_size:
            errors.append("OPENROUTER_CHUNK_OVERLAP_CHARS must be smaller than the chunk size")

        if self.request_timeout_ms < MIN_REQUEST_TIMEOUT_MS:
            errors.append(f"Request timeout must be at least {MIN_REQUEST_TIMEOUT_MS}ms")

        return (len(errors) == 0, errors)
