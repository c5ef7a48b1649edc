from __future__ import annotations

import json
import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx
import markdown
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response, StreamingResponse
from fastapi.templating import Jinja2Templates

from hunt_analyzer.analysis import ProductAnalyzer, build_analyzer
from hunt_analyzer.auth import SETUP_STATE_PREFIX, CredentialProvider
from hunt_analyzer.config import Settings
from hunt_analyzer.errors import AnalyzerError
from hunt_analyzer.fetchers.producthunt import ProductHuntSource
from hunt_analyzer.middleware import install_middleware
from hunt_analyzer.orchestrator import ListingSource, StreamingOrchestrator
from hunt_analyzer.reporting import aggregate_stats, build_csv
from hunt_analyzer.results import LatestResults
from hunt_analyzer.sse import SSE_HEADERS, SSE_MEDIA_TYPE, stream_run
from hunt_analyzer.storage import RunStorage

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(
    settings: Settings,
    credentials: Optional[CredentialProvider] = None,
    source: Optional[ListingSource] = None,
    analyzer: Optional[ProductAnalyzer] = None,
    results: Optional[LatestResults] = None,
    storage: Optional[RunStorage] = None,
) -> FastAPI:
    app = FastAPI(title="Product Hunt Analyzer", version=VERSION)
    template_dir = Path(__file__).parent / "templates"
    templates = Jinja2Templates(directory=str(template_dir))
    started = time.monotonic()

    if storage is None and settings.archive_enabled:
        storage = RunStorage(settings.db_path)
    credentials = credentials or CredentialProvider(settings)
    results = results or LatestResults(storage=storage, keep_runs=settings.archive_keep_runs)
    orchestrator = StreamingOrchestrator(
        settings,
        credentials=credentials,
        source=source or ProductHuntSource(settings),
        analyzer=analyzer or build_analyzer(settings),
        results=results,
    )
    app.state.orchestrator = orchestrator
    app.state.results = results

    install_middleware(app, settings)

    def _md_to_html(md_text: str) -> str:
        html = markdown.markdown(md_text, extensions=["fenced_code", "tables", "sane_lists"])
        return re.sub(r"^\s*<h1>.*?</h1>\s*", "", html, count=1, flags=re.DOTALL)

    def _stored_payload(run_id: str) -> dict:
        if storage is None:
            raise HTTPException(status_code=404, detail="Run archive disabled")
        run = storage.get_run(run_id)
        if not run:
            raise HTTPException(status_code=404, detail="Run not found")
        return run

    @app.get("/", response_class=HTMLResponse)
    def index(request: Request, error: Optional[str] = None, setup: Optional[str] = None):
        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "error": error,
                "setup": setup,
                "stream_max_items": settings.stream_max_items,
                "has_results": results.latest() is not None,
            },
        )

    @app.get("/api/analyze-stream")
    async def analyze_stream(limit: Optional[int] = None):
        return StreamingResponse(
            stream_run(orchestrator, requested_count=limit),
            media_type=SSE_MEDIA_TYPE,
            headers=SSE_HEADERS,
        )

    @app.post("/api/quick-analyze")
    async def quick_analyze(limit: Optional[int] = None):
        try:
            summary = await orchestrator.run_bounded(limit)
        except AnalyzerError as exc:
            return JSONResponse({"error": exc.message}, status_code=exc.status_code)
        except Exception as exc:
            logger.exception("Quick analysis failed")
            return JSONResponse({"error": str(exc) or "Quick analysis failed"}, status_code=500)
        return JSONResponse({"success": True, "data": summary.to_bounded_dict()})

    @app.get("/api/latest-results")
    def latest_results():
        summary = results.latest()
        if summary is None:
            return JSONResponse({"error": "No analysis results available"}, status_code=404)
        return JSONResponse(summary.to_dict())

    @app.get("/results", response_class=HTMLResponse)
    def results_page(request: Request):
        summary = results.latest()
        if summary is None:
            return RedirectResponse("/?error=no-results", status_code=302)
        payload = summary.to_dict()
        return templates.TemplateResponse(
            request,
            "results.html",
            {"data": payload, "stats": aggregate_stats(payload)},
        )

    @app.get("/api/runs")
    def list_runs(limit: int = 50):
        if storage is None:
            return JSONResponse({"error": "Run archive disabled"}, status_code=404)
        runs = storage.list_runs(limit=max(1, min(limit, 200)))
        return JSONResponse({"success": True, "totalRuns": len(runs), "runs": runs})

    @app.get("/api/runs/{run_id}")
    def get_run(run_id: str):
        run = _stored_payload(run_id)
        return JSONResponse({"success": True, "runId": run_id, "data": json.loads(run["json_content"])})

    @app.get("/api/runs/{run_id}/csv")
    def export_run_csv(run_id: str):
        run = _stored_payload(run_id)
        content = build_csv(json.loads(run["json_content"]))
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="product_analysis_{run_id}.csv"'},
        )

    @app.get("/runs/{run_id}", response_class=HTMLResponse)
    def run_detail(request: Request, run_id: str):
        run = _stored_payload(run_id)
        return templates.TemplateResponse(
            request,
            "run.html",
            {"run": run, "report_html": _md_to_html(str(run.get("markdown") or ""))},
        )

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    @app.get("/api/status")
    def status():
        info = credentials.token_info()
        return {
            "status": "running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
            "environment": settings.environment,
            "authentication": {"hasToken": info.get("hasToken", False), "isExpired": info.get("isExpired", False)},
            "analyzer": getattr(orchestrator.analyzer, "name", "custom"),
            "uptime": round(time.monotonic() - started, 3),
        }

    @app.get("/api/auth/status")
    async def auth_status():
        if not credentials.configured:
            return JSONResponse(
                {
                    "error": "Product Hunt credentials not configured. "
                    "Set PH_DEVELOPER_TOKEN or PH_CLIENT_ID/PH_CLIENT_SECRET environment variables.",
                    "configured": False,
                    "requiresSetup": True,
                },
                status_code=500,
            )
        authenticated = bool(await credentials.get_credential())
        return {
            "configured": True,
            "authenticated": authenticated,
            "tokenInfo": credentials.token_info(),
            "authMethod": credentials.auth_method,
            "message": "Authentication active" if authenticated else "Authentication required",
        }

    @app.get("/auth/setup")
    def auth_setup():
        if not credentials.oauth_configured:
            return JSONResponse({"error": "Product Hunt OAuth not configured.", "configured": False}, status_code=500)
        return RedirectResponse(credentials.authorize_url(), status_code=302)

    @app.get("/callback")
    async def oauth_callback(code: Optional[str] = None, state: Optional[str] = None):
        if not code:
            return JSONResponse({"error": "Authorization code not provided"}, status_code=400)
        if not state or not state.startswith(SETUP_STATE_PREFIX):
            logger.warning("Unauthorized OAuth callback attempt")
            return JSONResponse({"error": "Unauthorized access attempt"}, status_code=403)
        try:
            await credentials.exchange_code(code)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("OAuth code exchange failed: %s", exc)
            return JSONResponse({"error": "Internal authentication failed", "message": str(exc)}, status_code=500)
        return RedirectResponse("/?setup=complete", status_code=302)

    return app
