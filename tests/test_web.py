import json

from fastapi.testclient import TestClient

from hunt_analyzer.analysis import RuleBasedAnalyzer
from hunt_analyzer.auth import CredentialProvider
from hunt_analyzer.config import Settings
from hunt_analyzer.models import Product, Topic
from hunt_analyzer.web import create_app


class FakeSource:
    def __init__(self, count: int = 3):
        self.count = count

    async def fetch(self, credential, count):
        return [
            Product(id=str(i), name=f"Product {i}", votes_count=40 * i, topics=[Topic(name="Productivity")])
            for i in range(1, min(count, self.count) + 1)
        ]


def _settings(tmp_path, **overrides) -> Settings:
    values = {
        "data_dir": tmp_path,
        "db_path": tmp_path / "runs.db",
        "report_dir": tmp_path / "reports",
        "token_file": tmp_path / "access_token.json",
        "log_dir": tmp_path / "logs",
        "ph_developer_token": "dev-token",
        "ph_client_id": None,
        "ph_client_secret": None,
        "analysis_provider": "heuristic",
        "item_delay_sec": 0.0,
        "environment": "development",
        "allowed_domains": "",
        "rate_limit_max_requests": 100,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _client(tmp_path, **overrides) -> TestClient:
    settings = _settings(tmp_path, **overrides)
    app = create_app(
        settings,
        credentials=CredentialProvider(settings),
        source=FakeSource(),
        analyzer=RuleBasedAnalyzer(),
    )
    return TestClient(app)


def _parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    for frame in body.strip().split("\n\n"):
        lines = frame.splitlines()
        kind = lines[0][len("event: ") :]
        data = json.loads(lines[1][len("data: ") :])
        events.append((kind, data))
    return events


def test_health_and_internal_headers(tmp_path) -> None:
    client = _client(tmp_path)

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}
    assert resp.headers["X-Internal-Tool"] == "true"
    assert "noindex" in resp.headers["X-Robots-Tag"]


def test_status_reports_auth_and_version(tmp_path) -> None:
    client = _client(tmp_path)

    body = client.get("/api/status").json()

    assert body["status"] == "running"
    assert body["version"] == "1.0.0"
    assert body["authentication"] == {"hasToken": True, "isExpired": False}
    assert body["analyzer"] == "rule_based"


def test_latest_results_empty_before_any_run(tmp_path) -> None:
    client = _client(tmp_path)

    assert client.get("/api/latest-results").status_code == 404
    resp = client.get("/results", follow_redirects=False)
    assert resp.status_code == 302
    assert resp.headers["location"] == "/?error=no-results"


def test_stream_endpoint_delivers_run_and_publishes(tmp_path) -> None:
    client = _client(tmp_path)

    resp = client.get("/api/analyze-stream")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"
    events = _parse_sse(resp.text)
    kinds = [kind for kind, _ in events]
    assert kinds[:3] == ["status", "status", "status"]
    assert kinds.count("product") == 3
    assert kinds[-1] == "complete"

    latest = client.get("/api/latest-results").json()
    assert latest["totalProducts"] == 3
    assert latest["runId"] == events[-1][1]["runId"]

    page = client.get("/results")
    assert page.status_code == 200
    assert "Product 3" in page.text


def test_stream_limit_is_capped(tmp_path) -> None:
    client = _client(tmp_path)

    events = _parse_sse(client.get("/api/analyze-stream?limit=1").text)

    assert [kind for kind, _ in events].count("product") == 1


def test_stream_without_credential_emits_single_error(tmp_path) -> None:
    client = _client(tmp_path, ph_developer_token=None)

    events = _parse_sse(client.get("/api/analyze-stream").text)

    assert [kind for kind, _ in events] == ["error"]


def test_archived_run_is_listed_exported_and_rendered(tmp_path) -> None:
    client = _client(tmp_path)
    run_id = _parse_sse(client.get("/api/analyze-stream").text)[-1][1]["runId"]

    runs = client.get("/api/runs").json()
    assert runs["totalRuns"] == 1
    assert runs["runs"][0]["run_id"] == run_id

    detail = client.get(f"/api/runs/{run_id}").json()
    assert detail["data"]["totalProducts"] == 3

    csv_resp = client.get(f"/api/runs/{run_id}/csv")
    assert csv_resp.status_code == 200
    assert csv_resp.content.startswith(b"\xef\xbb\xbf")
    assert "产品名称" in csv_resp.text.splitlines()[0]
    assert f"product_analysis_{run_id}.csv" in csv_resp.headers["content-disposition"]

    html = client.get(f"/runs/{run_id}")
    assert html.status_code == 200
    assert "Product 1" in html.text


def test_unknown_run_returns_json_404(tmp_path) -> None:
    client = _client(tmp_path)

    resp = client.get("/api/runs/missing")

    assert resp.status_code == 404
    body = resp.json()
    assert body["message"] == "Run not found"
    assert body["statusCode"] == 404
    assert body["path"] == "/api/runs/missing"


def test_quick_analyze_is_bounded_and_not_published(tmp_path) -> None:
    client = _client(tmp_path)

    resp = client.post("/api/quick-analyze?limit=10")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["totalProducts"] == 3
    assert client.get("/api/latest-results").status_code == 404


def test_quick_analyze_without_credential_is_401(tmp_path) -> None:
    client = _client(tmp_path, ph_developer_token=None)

    resp = client.post("/api/quick-analyze")

    assert resp.status_code == 401
    assert resp.json() == {"error": "Authentication required"}


def test_index_page_has_stream_client(tmp_path) -> None:
    client = _client(tmp_path)

    resp = client.get("/?error=no-results")

    assert resp.status_code == 200
    assert "EventSource" in resp.text
    assert "No analysis results yet" in resp.text


def test_callback_rejects_missing_code_and_foreign_state(tmp_path) -> None:
    client = _client(tmp_path, ph_client_id="cid", ph_client_secret="secret")

    missing = client.get("/callback")
    foreign = client.get("/callback?code=abc&state=someone-else")

    assert missing.status_code == 400
    assert foreign.status_code == 403
    assert foreign.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"


def test_auth_setup_redirects_to_provider(tmp_path) -> None:
    client = _client(tmp_path, ph_client_id="cid", ph_client_secret="secret")

    resp = client.get("/auth/setup", follow_redirects=False)

    assert resp.status_code == 302
    assert "client_id=cid" in resp.headers["location"]


def test_rate_limit_rejects_excess_requests_but_not_health(tmp_path) -> None:
    client = _client(tmp_path, rate_limit_max_requests=2)

    assert client.get("/api/status").status_code == 200
    assert client.get("/api/status").status_code == 200
    limited = client.get("/api/status")
    assert limited.status_code == 429
    assert "Too many requests" in limited.json()["error"]
    assert client.get("/health").status_code == 200


def test_production_rejects_unlisted_domain(tmp_path) -> None:
    client = _client(tmp_path, environment="production", allowed_domains="tool.example.com")

    resp = client.get("/api/status")

    assert resp.status_code == 403
    assert resp.json()["error"] == "Access denied"


def test_forwarded_for_header_does_not_bypass_rate_limit(tmp_path) -> None:
    client = _client(tmp_path, rate_limit_max_requests=1)

    assert client.get("/api/status", headers={"X-Forwarded-For": "198.51.100.1"}).status_code == 200
    spoofed = client.get("/api/status", headers={"X-Forwarded-For": "198.51.100.2"})

    assert spoofed.status_code == 429


def test_forwarded_for_is_used_behind_trusted_proxy(tmp_path) -> None:
    client = _client(tmp_path, rate_limit_max_requests=1, trust_forwarded_for=True)

    assert client.get("/api/status", headers={"X-Forwarded-For": "198.51.100.1"}).status_code == 200
    assert client.get("/api/status", headers={"X-Forwarded-For": "198.51.100.2"}).status_code == 200
    assert client.get("/api/status", headers={"X-Forwarded-For": "198.51.100.1"}).status_code == 429
