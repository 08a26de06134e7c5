from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from eval_telemetry import __main__ as cli
from eval_telemetry.config import get_settings
from eval_telemetry.sinks import RecordingMetricSink, RecordingSpanSink

runner = CliRunner()

OPENAI_LINE = {
    "id": "eval-1",
    "startTime": 1_000,
    "endTime": 1_800,
    "request": {
        "model": "gpt-4o",
        "messages": [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
        ],
    },
    "response": {
        "object": "chat.completion",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": "hello"}}],
        "usage": {"prompt_tokens": 3, "completion_tokens": 1},
    },
}


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ("CAPTURE_CONTENT", "SAMPLE_CONTENT_RATE", "MAX_EVENTS_PER_SPAN", "REDACT_PATTERN"):
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _write(tmp_path, *lines):
    path = tmp_path / "evals.jsonl"
    path.write_text(
        "\n".join(line if isinstance(line, str) else json.dumps(line) for line in lines) + "\n",
        encoding="utf-8",
    )
    return str(path)


def test_dry_run_prints_summary(tmp_path):
    path = _write(tmp_path, OPENAI_LINE, "", OPENAI_LINE)
    result = runner.invoke(cli.app, ["ingest", "--file", path, "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "TRACE eval=eval-1 op=chat model=gpt-4o events=0 metrics=4" in result.output
    assert "Processed 2 evaluation(s). dry_run=True failed=0" in result.output


def test_capture_flag_and_event_cap(tmp_path):
    path = _write(tmp_path, OPENAI_LINE)
    result = runner.invoke(
        cli.app, ["ingest", "-f", path, "--dry-run", "--capture-content", "--max-events", "1"]
    )
    assert result.exit_code == 0, result.output
    assert "events=1" in result.output


def test_capture_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("CAPTURE_CONTENT", "true")
    path = _write(tmp_path, OPENAI_LINE)
    result = runner.invoke(cli.app, ["ingest", "-f", path, "--dry-run"])
    assert "events=3" in result.output


def test_bad_lines_are_counted(tmp_path):
    path = _write(tmp_path, OPENAI_LINE, "{broken", {"hello": "world"})
    result = runner.invoke(cli.app, ["ingest", "-f", path, "--dry-run"])
    assert result.exit_code == 0
    assert "Processed 1 evaluation(s). dry_run=True failed=2" in result.output


def test_all_lines_failing_exits_non_zero(tmp_path):
    path = _write(tmp_path, "{broken", "[]")
    result = runner.invoke(cli.app, ["ingest", "-f", path, "--dry-run"])
    assert result.exit_code == 1
    assert "failed=2" in result.output


def test_record_without_model_is_rejected(tmp_path):
    line = dict(OPENAI_LINE, request={"messages": []})
    path = _write(tmp_path, line)
    result = runner.invoke(cli.app, ["ingest", "-f", path, "--dry-run"])
    assert result.exit_code == 1


@pytest.mark.parametrize("provider", ["azure", "unknown"])
def test_invalid_provider_is_a_usage_error(tmp_path, provider):
    path = _write(tmp_path, OPENAI_LINE)
    result = runner.invoke(cli.app, ["ingest", "-f", path, "--dry-run", "--provider", provider])
    assert result.exit_code == 2


def test_strict_autodetect(tmp_path):
    line = {"request": {"model": "m"}, "response": {"foo": 1}}
    path = _write(tmp_path, line)
    lenient = runner.invoke(cli.app, ["ingest", "-f", path, "--dry-run"])
    assert lenient.exit_code == 0
    strict = runner.invoke(cli.app, ["ingest", "-f", path, "--dry-run", "--autodetect-strict"])
    assert strict.exit_code == 1


def test_emit_canonical_and_provider_override(tmp_path):
    path = _write(tmp_path, OPENAI_LINE)
    result = runner.invoke(
        cli.app,
        ["ingest", "-f", path, "--dry-run", "--emit-canonical", "--provider-override", "azure.openai"],
    )
    assert result.exit_code == 0, result.output
    (line,) = [ln for ln in result.output.splitlines() if ln.startswith("{")]
    canonical = json.loads(line)
    assert canonical["id"] == "eval-1"
    assert canonical["providerTag"] == "openai-chat"
    assert canonical["system"] == "azure.openai"


def test_invalid_override_is_a_usage_error(tmp_path):
    path = _write(tmp_path, OPENAI_LINE)
    result = runner.invoke(cli.app, ["ingest", "-f", path, "--sample-rate", "3"])
    assert result.exit_code == 2


def test_emits_through_sinks(tmp_path, monkeypatch):
    spans, points = RecordingSpanSink(), RecordingMetricSink()
    calls = []
    monkeypatch.setattr(cli, "init_telemetry", lambda settings: calls.append("init"))
    monkeypatch.setattr(cli, "shutdown_telemetry", lambda: calls.append("shutdown"))
    monkeypatch.setattr(cli, "OtelSpanSink", lambda: spans)
    monkeypatch.setattr(cli, "OtelMetricSink", lambda: points)

    path = _write(tmp_path, OPENAI_LINE)
    result = runner.invoke(cli.app, ["ingest", "-f", path, "--no-dry-run"])
    assert result.exit_code == 0, result.output
    assert calls == ["init", "shutdown"]
    ((span, _events),) = spans.spans
    assert span.attributes["gen_ai.request.model"] == "gpt-4o"
    assert {p.name for p in points.points} >= {"gen_ai.client.token.usage", "gen_ai.client.operation.duration"}
    assert "dry_run=False" in result.output
