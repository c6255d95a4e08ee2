"""
Completions client for the OpenRouter chat API.

This module sends one structured chat request per call and normalises the
reply into plain text. It performs no retries: retry and fallback policy
belongs to the generator. Every failure is raised as a typed BackendError.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from chatmarkets.config import Config
from chatmarkets.errors import (
    BackendHttpError,
    BackendTimeoutError,
    ConfigurationError,
    ContextLengthExceededError,
    EmptyBackendOutputError,
    CONTEXT_LENGTH_PATTERN,
)
from chatmarkets.events import EventSink, LoggingEventSink

# Configure module logger
logger = logging.getLogger(__name__)

OPENROUTER_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"


@dataclass
class ChatTurn:
    """
    One role-tagged message sent to the backend.

    Attributes:
        role: "system", "user" or "assistant"
        content: Message text
        reasoning_details: Reasoning payload replayed with an assistant turn
    """
    role: str
    content: str
    reasoning_details: Any = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.reasoning_details is not None:
            payload["reasoning_details"] = self.reasoning_details
        return payload


@dataclass
class CompletionResult:
    content: str
    reasoning_details: Any = None


def is_stepfun_model(model: str) -> bool:
    return model.startswith("stepfun/")


def normalize_content(choice: Any) -> str:
    """
    Collapse the content of one response choice into trimmed text.

    Handles the shapes the backend is known to return:
    - message.content as a string
    - message.content as a list of strings and/or {"text": ...} fragments
    - a top-level "text" field on the choice
    Anything else normalises to the empty string.

    Args:
        choice: One element of the response's "choices" array

    Returns:
        Trimmed content string, possibly empty
    """
    if not isinstance(choice, dict):
        return ""

    message = choice.get("message")
    content = message.get("content") if isinstance(message, dict) else None

    if isinstance(content, str):
        return content.strip()

    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        merged = "".join(parts).strip()
        if merged:
            return merged

    text = choice.get("text")
    if isinstance(text, str):
        return text.strip()

    return ""


def resolve_max_tokens(config: Config, model: str, max_tokens: Optional[int]) -> int:
    """Pick the output token cap: explicit value, then the model-specific cap, then the generic one."""
    if max_tokens is not None and max_tokens > 0:
        return max_tokens
    if is_stepfun_model(model):
        return config.stepfun_max_output_tokens
    return config.max_output_tokens


def _build_headers(config: Config) -> dict[str, str]:
    headers = {
        "Authorization": f"Bearer {config.api_key}",
        "Content-Type": "application/json",
        "X-Title": config.app_title,
    }
    if config.referer:
        headers["HTTP-Referer"] = config.referer
    return headers


def _error_message(data: Any, status_code: int) -> str:
    """
    Build the failure message for a non-success response.

    The provider's raw diagnostic, when present, is appended after " | ".
    """
    error = data.get("error") if isinstance(data, dict) else None
    if not isinstance(error, dict):
        return f"OpenRouter request failed ({status_code})."

    message = error.get("message") or None
    metadata = error.get("metadata")
    raw = metadata.get("raw") if isinstance(metadata, dict) else None
    if raw:
        return f"{message or 'OpenRouter error'} | {raw}"
    return message or f"OpenRouter request failed ({status_code})."


def create_completion(
    config: Config,
    messages: list[ChatTurn],
    temperature: float = 0.25,
    max_tokens: Optional[int] = None,
    model: Optional[str] = None,
    allow_empty: bool = False,
    sink: Optional[EventSink] = None,
    attempt_label: str = "initial",
) -> CompletionResult:
    """
    Send one chat completion request and return the normalised reply.

    Args:
        config: Pipeline configuration (credentials, timeout, token caps)
        messages: Ordered role-tagged messages
        temperature: Sampling temperature
        max_tokens: Optional explicit output token cap
        model: Model identifier (defaults to config.model)
        allow_empty: Return an empty result instead of raising (diagnostics only)
        sink: Event sink for request diagnostics
        attempt_label: Free-form label included in events

    Returns:
        CompletionResult with trimmed content and optional reasoning details

    Raises:
        ConfigurationError: If no API key is configured
        BackendTimeoutError: If the request exceeds the configured timeout
        BackendHttpError: On transport failures or non-success status
        ContextLengthExceededError: If a non-success message reports context overflow
        EmptyBackendOutputError: If the reply content is empty and allow_empty is False
    """
    if not config.api_key:
        raise ConfigurationError("OPENROUTER_API_KEY is missing.")

    sink = sink or LoggingEventSink()
    model = model or config.model
    stepfun = is_stepfun_model(model)
    reasoning_enabled = True if stepfun else config.reasoning_enabled
    safe_max_tokens = resolve_max_tokens(config, model, max_tokens)

    payload = {
        "model": model,
        "temperature": temperature,
        "messages": [message.to_payload() for message in messages],
        "max_tokens": safe_max_tokens,
        "reasoning": {"enabled": reasoning_enabled},
    }

    sink.record(
        "request:start",
        model=model,
        message_count=len(messages),
        reasoning_enabled=reasoning_enabled,
        max_tokens=safe_max_tokens,
        attempt=attempt_label,
    )

    started_at = time.monotonic()
    try:
        logger.debug(f"Calling OpenRouter with model {model}")
        response = requests.post(
            OPENROUTER_ENDPOINT,
            json=payload,
            headers=_build_headers(config),
            timeout=config.request_timeout_seconds,
        )
    except Timeout as e:
        raise BackendTimeoutError(
            f"OpenRouter request timed out after {config.request_timeout_ms}ms."
        ) from e
    except ConnectionError as e:
        raise BackendHttpError(f"Connection error calling OpenRouter: {e}") from e
    except RequestException as e:
        raise BackendHttpError(f"OpenRouter request failed: {e}") from e

    try:
        data = response.json()
    except ValueError:
        logger.debug(f"Non-JSON response body: {response.text[:500]}")
        data = {}

    sink.record(
        "request:response",
        model=model,
        status=response.status_code,
        elapsed_ms=int((time.monotonic() - started_at) * 1000),
        attempt=attempt_label,
    )

    if not response.ok:
        error_payload = data.get("error") if isinstance(data, dict) else None
        sink.record("request:error-payload", model=model, error=error_payload)
        message = _error_message(data, response.status_code)
        if CONTEXT_LENGTH_PATTERN.search(message):
            raise ContextLengthExceededError(message, status_code=response.status_code)
        raise BackendHttpError(message, status_code=response.status_code)

    choices = data.get("choices") if isinstance(data, dict) else None
    choice = choices[0] if isinstance(choices, list) and choices else None
    message_body = choice.get("message") if isinstance(choice, dict) else None
    reasoning_details = (
        message_body.get("reasoning_details") if isinstance(message_body, dict) else None
    )
    content = normalize_content(choice)
    result = CompletionResult(content=content, reasoning_details=reasoning_details)

    if content:
        logger.debug(f"Received response of length {len(content)}")
        return result

    sink.record(
        "request:empty-content",
        model=model,
        attempt=attempt_label,
        has_message=isinstance(message_body, dict),
        has_reasoning_details=reasoning_details is not None,
        finish_reason=choice.get("finish_reason") if isinstance(choice, dict) else None,
        native_finish_reason=choice.get("native_finish_reason") if isinstance(choice, dict) else None,
        choice_keys=sorted(choice.keys()) if isinstance(choice, dict) else [],
    )
    logger.debug(f"Empty completion payload: {json.dumps(data)[:500]}")

    if allow_empty:
        return result

    raise EmptyBackendOutputError("OpenRouter returned an empty response.")
