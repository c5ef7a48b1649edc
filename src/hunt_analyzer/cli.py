from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import typer
import uvicorn

from hunt_analyzer.analysis import build_analyzer
from hunt_analyzer.auth import CredentialProvider
from hunt_analyzer.config import Settings, get_settings
from hunt_analyzer.errors import AnalyzerError
from hunt_analyzer.fetchers.producthunt import ProductHuntSource
from hunt_analyzer.logging_utils import cleanup_logs, setup_logging
from hunt_analyzer.models import RunSummary
from hunt_analyzer.orchestrator import StreamingOrchestrator
from hunt_analyzer.reporting import build_csv, build_json_payload, build_markdown
from hunt_analyzer.results import LatestResults
from hunt_analyzer.storage import RunStorage
from hunt_analyzer.web import create_app

app = typer.Typer(help="Product Hunt Analyzer CLI")


def _storage(settings: Settings) -> Optional[RunStorage]:
    return RunStorage(settings.db_path) if settings.archive_enabled else None


def _orchestrator(settings: Settings) -> StreamingOrchestrator:
    results = LatestResults(storage=_storage(settings), keep_runs=settings.archive_keep_runs)
    return StreamingOrchestrator(
        settings,
        credentials=CredentialProvider(settings),
        source=ProductHuntSource(settings),
        analyzer=build_analyzer(settings),
        results=results,
    )


def _echo_event(kind: str, payload: dict[str, Any]) -> None:
    if kind == "progress":
        typer.echo(f"[{payload['current']}/{payload['total']}] {payload['message']}")
    elif kind == "product":
        analysis = payload.get("analysis") or {}
        outcome = analysis.get("error") or analysis.get("summary") or ""
        typer.echo(f"  - {payload.get('name')}: {outcome}")
    elif kind == "error":
        typer.echo(f"Error: {payload.get('message')}", err=True)
    elif kind == "status":
        typer.echo(payload.get("message", ""))


def write_report(report_dir: Path, summary: RunSummary) -> dict[str, Path]:
    report_dir.mkdir(parents=True, exist_ok=True)
    md_path = report_dir / f"{summary.run_id}.md"
    json_path = report_dir / f"{summary.run_id}.json"
    md_path.write_text(build_markdown(summary), encoding="utf-8")
    json_path.write_text(build_json_payload(summary), encoding="utf-8")
    return {"markdown": md_path, "json": json_path}


@app.command("serve")
def serve(host: str = "127.0.0.1", port: int = 3000) -> None:
    settings = get_settings()
    setup_logging(settings)
    cleanup_logs(settings.log_dir, settings.log_retention_days)
    web_app = create_app(settings)
    uvicorn.run(web_app, host=host, port=port)


@app.command("analyze")
def analyze(limit: Optional[int] = typer.Option(default=None, help="产品数量上限")) -> None:
    settings = get_settings()
    setup_logging(settings)
    orchestrator = _orchestrator(settings)
    summary = asyncio.run(orchestrator.run(_echo_event, requested_count=limit))
    if not summary.total_products:
        raise typer.Exit(code=1)
    paths = write_report(settings.report_dir, summary)
    typer.echo(
        f"Done. run={summary.run_id} success={summary.success_count} "
        f"errors={summary.error_count} md={paths['markdown']}"
    )


@app.command("quick")
def quick(limit: Optional[int] = typer.Option(default=None, help="产品数量上限")) -> None:
    settings = get_settings()
    setup_logging(settings)
    orchestrator = _orchestrator(settings)
    try:
        summary = asyncio.run(orchestrator.run_bounded(limit))
    except AnalyzerError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(summary.to_bounded_dict(), ensure_ascii=False, indent=2))


@app.command("runs")
def runs(limit: int = typer.Option(20, help="最多列出的运行数")) -> None:
    settings = get_settings()
    storage = RunStorage(settings.db_path)
    rows = storage.list_runs(limit=limit)
    if not rows:
        typer.echo("No archived runs.")
        return
    for row in rows:
        typer.echo(
            f"{row['run_id']}  {row['created_at']}  total={row['total_products']} "
            f"success={row['success_count']} errors={row['error_count']}"
        )


@app.command("export-csv")
def export_csv(
    run_id: str = typer.Argument(..., help="Run id, see `runs`"),
    out: Optional[Path] = typer.Option(default=None, help="输出文件路径"),
) -> None:
    settings = get_settings()
    storage = RunStorage(settings.db_path)
    run = storage.get_run(run_id)
    if not run:
        typer.echo(f"Error: run {run_id} not found")
        raise typer.Exit(code=1)
    target = out or settings.report_dir / f"product_analysis_{run_id}.csv"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(build_csv(json.loads(run["json_content"])), encoding="utf-8")
    typer.echo(f"Exported CSV. out={target}")


@app.command("auth-status")
def auth_status() -> None:
    settings = get_settings()
    credentials = CredentialProvider(settings)
    info = credentials.token_info()
    typer.echo(json.dumps({"configured": credentials.configured, **info}, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    app()
