"""Shared fixtures: scripted backend responses and test configuration."""

import json

import pytest

from chatmarkets.config import Config
from chatmarkets.events import MemoryEventSink


class FakeResponse:
    """Stand-in for requests.Response with only the attributes the client reads."""

    def __init__(self, payload=None, status_code=200, text=""):
        self._payload = payload
        self.status_code = status_code
        self.text = text or (json.dumps(payload) if payload is not None else "")

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class ScriptedBackend:
    """Replacement for requests.post that replays responses in order."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if not self.responses:
            raise AssertionError("Unexpected backend call")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def sent_messages(self, call_index):
        return self.calls[call_index]["json"]["messages"]


def completion(content, reasoning_details=None, finish_reason="stop"):
    message = {"role": "assistant", "content": content}
    if reasoning_details is not None:
        message["reasoning_details"] = reasoning_details
    return FakeResponse({"choices": [{"message": message, "finish_reason": finish_reason}]})


def error_response(message, status_code=400, raw=None):
    error = {"message": message, "code": status_code}
    if raw is not None:
        error["metadata"] = {"raw": raw}
    return FakeResponse({"error": error}, status_code=status_code)


def market_idea(title="Will Dana confirm Friday dinner?", **overrides):
    idea = {
        "title": title,
        "description": "Dana keeps saying maybe.",
        "category": "Plans",
        "market_type": "YES_NO",
        "resolution_criteria": "Resolves YES if Dana confirms in the chat before Friday.",
        "close_time_guess": "2026-03-01T18:00:00Z",
        "outcomes": [
            {"label": "Yes", "probability": 0.6},
            {"label": "No", "probability": 0.4},
        ],
        "scores": {"creativity": 0.7, "clarity": 0.8, "evidence": 0.6, "fun": 0.75},
        "evidence": [{"quote": "maybe, will see", "approx_time": None}],
    }
    idea.update(overrides)
    return idea


@pytest.fixture
def make_config():
    def _make(**overrides):
        values = {"api_key": "test-key", "referer": None}
        values.update(overrides)
        return Config(**values)
    return _make


@pytest.fixture
def sink():
    return MemoryEventSink()


@pytest.fixture
def backend(monkeypatch):
    """Install a ScriptedBackend in place of requests.post."""
    def _install(*responses):
        scripted = ScriptedBackend(responses)
        monkeypatch.setattr("chatmarkets.backend_client.requests.post", scripted)
        return scripted
    return _install


@pytest.fixture
def reply():
    return completion


@pytest.fixture
def failure():
    return error_response


@pytest.fixture
def valid_payload():
    return {
        "market_ideas": [
            market_idea(),
            market_idea(
                title="How many people show up to the beach?",
                market_type="NUMERIC",
                category="Attendance",
                outcomes=[
                    {"label": "0-3", "probability": 0.2},
                    {"label": "4-6", "probability": 0.5},
                    {"label": "7+", "probability": 0.3},
                ],
            ),
        ]
    }


@pytest.fixture
def idea_factory():
    return market_idea


@pytest.fixture
def raw_response():
    return FakeResponse
