from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path

import typer
import uvicorn

from .config import EngineConfig, load_config, load_config_file
from .logging_setup import setup_logging
from .replay import iter_jsonl, replay_session
from .scoring import summary_to_payload
from .stats import DEFAULT_LOOKBACK_DAYS, aggregate_user_stats, daily_buckets, query_lookback
from .storage import JsonFileSessionStore

app = typer.Typer(
    help="ZenFocus attention engine commands (serve, replay, stats, show-config).",
    no_args_is_help=True,
)


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level for engine logs."),
    log_file: str | None = typer.Option(None, "--log-file", help="Optional rotating log file path."),
) -> None:
    setup_logging(log_level=log_level, log_file=log_file)


def _engine_config(config_path: Path | None) -> EngineConfig:
    base = load_config().engine
    return load_config_file(config_path, base=base) if config_path else base


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind host (default: ZENFOCUS_HOST or 0.0.0.0)."),
    port: int | None = typer.Option(None, "--port", help="Bind port (default: ZENFOCUS_PORT or 8000)."),
) -> None:
    cfg = load_config()
    uvicorn.run(
        "zenfocus.serve_api:create_app",
        factory=True,
        host=host or cfg.host,
        port=port or cfg.port,
        reload=False,
    )


@app.command("replay")
def replay(
    signals: Path = typer.Option(
        ...,
        "--signals",
        exists=True,
        dir_okay=False,
        help="JSONL file of frame signals (and optional pause/resume/end rows).",
    ),
    user_id: str = typer.Option("local", "--user-id", help="User the replayed session belongs to."),
    config_path: Path | None = typer.Option(None, "--config-path", exists=True, help="Optional YAML engine config."),
    state_dir: Path | None = typer.Option(
        None,
        "--state-dir",
        help="Save the scored session into this JSON store directory.",
    ),
    start_ms: int = typer.Option(0, "--start-ms", help="Session start timestamp (epoch ms)."),
    out: Path | None = typer.Option(None, "--out", help="Optional output path for the summary JSON."),
) -> None:
    cfg = _engine_config(config_path)
    store = JsonFileSessionStore(state_dir) if state_dir else None
    result = replay_session(iter_jsonl(signals), user_id=user_id, config=cfg, store=store, start_ms=start_ms)
    payload = summary_to_payload(result.session)
    payload["activityCounts"] = result.activity_counts
    text = json.dumps(payload, indent=2)
    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text + "\n", encoding="utf-8")
        typer.echo(f"[replay] Wrote summary: {out}")
    else:
        typer.echo(text)
    if result.save_error:
        typer.echo(f"[replay] Session not saved: {result.save_error}", err=True)
    elif result.saved_id:
        typer.echo(f"[replay] Saved session {result.saved_id} to {state_dir}")
    typer.echo(
        f"[replay] score={result.session.productivity_score} "
        f"focus={result.session.total_focus_minutes}m distractions={result.session.distraction_count}"
    )


@app.command("stats")
def stats(
    state_dir: Path = typer.Option(..., "--state-dir", exists=True, file_okay=False, help="JSON store directory."),
    user_id: str = typer.Option(..., "--user-id", help="User to aggregate."),
    days: int = typer.Option(DEFAULT_LOOKBACK_DAYS, "--days", help="Lookback window in days."),
    daily_days: int = typer.Option(7, "--daily-days", help="Number of daily buckets to print."),
    mode: str = typer.Option("running", "--mode", help="Bucket score mode: running or mean."),
) -> None:
    if mode not in ("running", "mean"):
        raise typer.BadParameter("--mode must be 'running' or 'mean'")
    store = JsonFileSessionStore(state_dir)
    now, sessions = query_lookback(store, user_id, days_back=days)
    user = aggregate_user_stats(sessions, now=now)
    buckets = daily_buckets(sessions, days_back=daily_days, now=now, mode=mode)  # type: ignore[arg-type]
    payload = {
        "stats": user.model_dump(by_alias=True),
        "daily": [b.model_dump(by_alias=True) for b in buckets],
    }
    typer.echo(json.dumps(payload, indent=2))


@app.command("show-config")
def show_config(
    config_path: Path | None = typer.Option(None, "--config-path", exists=True, help="Optional YAML engine config."),
) -> None:
    typer.echo(json.dumps(asdict(_engine_config(config_path)), indent=2, sort_keys=True))


if __name__ == "__main__":
    app()
