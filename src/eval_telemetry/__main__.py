"""Main CLI entry point for eval-telemetry.

This module provides a command-line interface using Typer to replay a JSONL
file of evaluation records through the telemetry pipeline:
1.  Loading configuration (environment, `.env`, CLI overrides).
2.  Reading each line as a provider payload, canonical record or legacy
    evaluation result (eval_telemetry.replay).
3.  Detecting and normalizing provider payloads (eval_telemetry.mapping).
4.  Building spans, events and metric points (eval_telemetry.processor).
5.  Emitting them through local OpenTelemetry SDK providers with console
    exporters, or printing a one-line summary per record in dry-run mode.

Failing lines are logged and skipped; the run reports how many failed.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from .config import Settings, build_policy, get_settings
from .mapping.normalizers import coerce_provider_tag
from .models.canonical import ProviderTag, RecordValidationError
from .processor import emit, process
from .replay import ReplayError, iter_jsonl, parse_line
from .sinks import OtelMetricSink, OtelSpanSink, init_telemetry, shutdown_telemetry

# Load .env file if present (before any config access)
_env_file = find_dotenv(usecwd=True)
if _env_file:
    load_dotenv(_env_file)

logger = logging.getLogger(__name__)

app = typer.Typer(help="eval-telemetry: LLM evaluation records to OpenTelemetry")


@app.callback()
def main() -> None:  # pragma: no cover - simple callback
    """eval-telemetry CLI.

    Use a subcommand like 'ingest' to replay a JSONL file.
    """
    pass


def _effective_settings(settings: Settings, overrides: Dict[str, Any]) -> Settings:
    if not overrides:
        return settings
    try:
        return Settings.model_validate({**settings.model_dump(), **overrides})
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.command(help="Replay a JSONL file of evaluation records as telemetry.")
def ingest(
    file: Path = typer.Option(
        ...,
        "--file",
        "-f",
        exists=True,
        dir_okay=False,
        readable=True,
        help="JSONL file with one payload / record per line",
    ),
    provider: Optional[str] = typer.Option(
        None,
        help=(
            "Force the provider shape for payload lines instead of autodetecting "
            "(openai-chat, openai-compatible, anthropic, cohere, bedrock, vertex, ollama)"
        ),
    ),
    provider_override: Optional[str] = typer.Option(
        None, help="Rewrite gen_ai.system on every record (e.g. 'azure.openai')"
    ),
    autodetect_strict: bool = typer.Option(
        False,
        "--autodetect-strict",
        help="Fail payload lines whose provider shape cannot be detected",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run/--no-dry-run",
        help="Only print a summary line per record; do not create spans or metrics",
    ),
    capture_content: Optional[bool] = typer.Option(
        None,
        "--capture-content/--no-capture-content",
        help="Override CAPTURE_CONTENT from config/env",
    ),
    sample_rate: Optional[float] = typer.Option(
        None, help="Override SAMPLE_CONTENT_RATE (0..1)"
    ),
    content_cap: Optional[int] = typer.Option(
        None, help="Override CONTENT_MAX_LENGTH (0 disables truncation)"
    ),
    redact_pattern: Optional[str] = typer.Option(
        None, help="Override REDACT_PATTERN (matching content is withheld)"
    ),
    max_events: Optional[int] = typer.Option(
        None, help="Override MAX_EVENTS_PER_SPAN (0 = unbounded)"
    ),
    emit_canonical: bool = typer.Option(
        False,
        "--emit-canonical",
        help="Print each canonical record as a JSON line",
    ),
) -> None:
    """Replay evaluation records and emit them as telemetry.

    Each non-blank line is parsed, normalized, processed and either emitted
    through the console OpenTelemetry providers or summarized (dry run).
    Lines that fail parsing or validation are logged and counted.
    """
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)

    forced: Optional[ProviderTag] = None
    if provider is not None:
        try:
            forced = coerce_provider_tag(provider)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--provider") from exc
        if forced is ProviderTag.UNKNOWN:
            raise typer.BadParameter(
                "'unknown' cannot be forced; omit --provider to autodetect",
                param_hint="--provider",
            )

    overrides: Dict[str, Any] = {}
    if capture_content is not None:
        overrides["CAPTURE_CONTENT"] = capture_content
    if sample_rate is not None:
        overrides["SAMPLE_CONTENT_RATE"] = sample_rate
    if content_cap is not None:
        overrides["CONTENT_MAX_LENGTH"] = content_cap
    if redact_pattern is not None:
        overrides["REDACT_PATTERN"] = redact_pattern
    if max_events is not None:
        overrides["MAX_EVENTS_PER_SPAN"] = max_events
    settings = _effective_settings(settings, overrides)
    policy = build_policy(settings)

    span_sink: Optional[OtelSpanSink] = None
    metric_sink: Optional[OtelMetricSink] = None
    if not dry_run:
        init_telemetry(settings)
        span_sink, metric_sink = OtelSpanSink(), OtelMetricSink()

    count = 0
    failed = 0
    try:
        for lineno, line in iter_jsonl(file):
            try:
                item = parse_line(line, provider=forced, strict=autodetect_strict)
                if item is None:
                    continue
                record = item.record
                if provider_override:
                    record = record.model_copy(update={"system": provider_override})
                result = process(record, policy, item.options)
            except (ReplayError, RecordValidationError) as exc:
                failed += 1
                logger.warning("Skipping line %d of %s: %s", lineno, file, exc)
                continue
            if emit_canonical:
                typer.echo(record.to_json_line())
            if dry_run:
                typer.echo(
                    f"TRACE eval={result.record_id} op={record.operation.value} "
                    f"model={record.request.model} events={len(result.events)} "
                    f"metrics={len(result.metrics)}"
                )
            else:
                emit(result, span_sink, metric_sink)
            count += 1
    finally:
        if not dry_run:
            # Ensure exporter flush & shutdown for short-lived process reliability
            shutdown_telemetry()

    typer.echo(f"Processed {count} evaluation(s). dry_run={dry_run} failed={failed}")
    if failed and not count:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
