"""Tests for report rendering and the command-line entry point."""

import json
import logging
from datetime import datetime, timezone

import pytest
import pytz

from chatmarkets import main as cli
from chatmarkets.models import Evidence, GenerationResult, MarketIdea, MarketScores, OutcomeOption
from chatmarkets.reporter import format_close_time, generate_json, generate_report

GENERATED_AT = datetime(2026, 2, 22, 8, 0, tzinfo=timezone.utc)


def _idea(**overrides):
    values = dict(
        id="market-1-0123456789ab",
        slug="will-dana-confirm",
        title="Will Dana confirm?",
        description="Dana keeps saying maybe.",
        category="Plans",
        market_type="YES_NO",
        resolution_criteria="Resolves YES if Dana confirms.",
        close_time_guess="2026-03-01T18:00:00.000Z",
        outcomes=[OutcomeOption("Yes", 0.6), OutcomeOption("No", 0.4)],
        scores=MarketScores(creativity=0.7, clarity=0.8, evidence=0.6, fun=0.75),
        evidence=[Evidence(quote="maybe, will see")],
    )
    values.update(overrides)
    return MarketIdea(**values)


class TestReport:
    def test_sections(self):
        result = GenerationResult(model_used="openai/gpt-4o-mini", market_ideas=[_idea()])

        report = generate_report(result, generated_at=GENERATED_AT)

        assert "CHAT MARKETS - MARKET IDEAS REPORT" in report
        assert "Generated: 2026-02-22 08:00:00 UTC" in report
        assert "Model Used: openai/gpt-4o-mini" in report
        assert "Heuristic Fallback: no" in report
        assert "  - YES_NO: 1" in report
        assert "  - NUMERIC: 0" in report
        assert "[1] Will Dana confirm?" in report
        assert "      Yes: 60%" in report
        assert "      No: 40%" in report
        assert '"maybe, will see"' in report
        assert "Closes: 2026-03-01 18:00 UTC" in report

    def test_fallback_flag(self):
        result = GenerationResult(model_used="m-heuristic-fallback", market_ideas=[_idea()])
        assert "Heuristic Fallback: yes" in generate_report(result, generated_at=GENERATED_AT)

    def test_report_timezone(self):
        result = GenerationResult(model_used="m", market_ideas=[_idea()])

        report = generate_report(result, report_timezone="Asia/Jerusalem", generated_at=GENERATED_AT)

        assert "Closes: 2026-03-01 20:00 IST" in report
        assert "Generated: 2026-02-22 10:00:00 IST" in report

    def test_unknown_timezone_uses_utc(self):
        result = GenerationResult(model_used="m", market_ideas=[_idea()])
        report = generate_report(result, report_timezone="Mars/Olympus", generated_at=GENERATED_AT)
        assert "Closes: 2026-03-01 18:00 UTC" in report

    def test_empty_result(self):
        report = generate_report(GenerationResult(model_used="m", market_ideas=[]), generated_at=GENERATED_AT)
        assert "No market ideas generated." in report
        assert "No market ideas to display." in report

    def test_unparseable_close_time_is_shown_raw(self):
        assert format_close_time("soon", pytz.utc) == "soon"

    def test_saves_to_file(self, tmp_path):
        result = GenerationResult(model_used="m", market_ideas=[_idea()])
        target = tmp_path / "reports" / "ideas.txt"

        report = generate_report(result, output_file=target, generated_at=GENERATED_AT)

        assert target.read_text(encoding="utf-8") == report

    def test_json_output(self, tmp_path):
        result = GenerationResult(model_used="m", market_ideas=[_idea()], reasoning_trace=[{"t": 1}])
        target = tmp_path / "ideas.json"

        data = json.loads(generate_json(result, output_file=target))

        assert data["model_used"] == "m"
        assert data["reasoning_trace"] == [{"t": 1}]
        assert data["market_ideas"][0]["outcomes"][0] == {"label": "Yes", "probability": 0.6}
        assert json.loads(target.read_text(encoding="utf-8")) == data


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    monkeypatch.chdir(tmp_path)
    for name in ("OPENROUTER_MODEL", "OPENROUTER_MAX_INPUT_CHARS", "LOG_FILE", "REPORT_TIMEZONE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    transcript = tmp_path / "chat.txt"
    transcript.write_text("[21/2/26, 22:10] Avi: on my way, 10 min\n", encoding="utf-8")
    yield transcript
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


class TestMain:
    def test_json_run(self, cli_env, backend, reply, valid_payload, capsys):
        backend(reply(json.dumps(valid_payload)))

        exit_code = cli.main([str(cli_env), "--json"])

        assert exit_code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["model_used"] == "stepfun/step-3.5-flash:free"
        assert len(data["market_ideas"]) == 2

    def test_text_report_with_fallback_and_output_file(self, cli_env, backend, failure, capsys, tmp_path):
        backend(failure("Service unavailable", status_code=503))
        target = tmp_path / "out" / "report.txt"

        exit_code = cli.main([str(cli_env), "--output", str(target)])

        assert exit_code == 0
        out = capsys.readouterr().out
        assert "Heuristic Fallback: yes" in out
        assert "Total Market Ideas: 12" in out
        assert target.exists()

    def test_stdin(self, cli_env, backend, reply, valid_payload, monkeypatch, capsys):
        import io

        backend(reply(json.dumps(valid_payload)))
        monkeypatch.setattr("sys.stdin", io.StringIO(cli_env.read_text(encoding="utf-8")))

        assert cli.main(["--json"]) == 0
        assert json.loads(capsys.readouterr().out)["market_ideas"]

    def test_missing_api_key(self, cli_env, backend, monkeypatch):
        scripted = backend()
        monkeypatch.delenv("OPENROUTER_API_KEY")

        assert cli.main([str(cli_env)]) == 1
        assert scripted.calls == []

    def test_empty_transcript(self, cli_env, backend):
        backend()
        cli_env.write_text("   \n", encoding="utf-8")

        assert cli.main([str(cli_env)]) == 1

    def test_missing_file(self, cli_env, backend, tmp_path):
        backend()
        assert cli.main([str(tmp_path / "nope.txt")]) == 1

    def test_fallback_disabled_failure(self, cli_env, backend, failure, monkeypatch):
        backend(failure("Service unavailable", status_code=503))
        monkeypatch.setenv("OPENROUTER_ENABLE_HEURISTIC_FALLBACK", "off")

        assert cli.main([str(cli_env)]) == 1

    def test_interrupt(self, cli_env, monkeypatch):
        def interrupted(*args, **kwargs):
            raise KeyboardInterrupt

        monkeypatch.setattr(cli, "generate_markets_from_chat", interrupted)

        assert cli.main([str(cli_env)]) == 130
