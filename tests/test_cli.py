import json

from typer.testing import CliRunner

from hunt_analyzer import cli
from hunt_analyzer.analysis import rule_based_analysis
from hunt_analyzer.config import Settings
from hunt_analyzer.models import AnalyzedProduct, Product, RunSummary
from hunt_analyzer.storage import RunStorage

runner = CliRunner()


def _settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        db_path=tmp_path / "runs.db",
        report_dir=tmp_path / "reports",
        token_file=tmp_path / "access_token.json",
        log_dir=tmp_path / "logs",
        ph_developer_token=None,
        ph_client_id=None,
        ph_client_secret=None,
    )


def _summary() -> RunSummary:
    product = Product(id="1", name="Inbox Zero", votes_count=64)
    return RunSummary.build("run-7", [AnalyzedProduct(product=product, analysis=rule_based_analysis(product))])


def test_write_report_creates_markdown_and_json(tmp_path) -> None:
    paths = cli.write_report(tmp_path / "reports", _summary())

    assert paths["markdown"].read_text(encoding="utf-8").startswith("# Product Hunt Analysis")
    payload = json.loads(paths["json"].read_text(encoding="utf-8"))
    assert payload["runId"] == "run-7"
    assert payload["stats"]["totalVotes"] == 64


def test_runs_and_export_csv(tmp_path, monkeypatch) -> None:
    settings = _settings(tmp_path)
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    RunStorage(settings.db_path).save_run(_summary(), "# report")

    listed = runner.invoke(cli.app, ["runs"])
    out = tmp_path / "export.csv"
    exported = runner.invoke(cli.app, ["export-csv", "run-7", "--out", str(out)])
    missing = runner.invoke(cli.app, ["export-csv", "nope"])

    assert listed.exit_code == 0
    assert "run-7" in listed.output
    assert exported.exit_code == 0
    assert "Inbox Zero" in out.read_text(encoding="utf-8")
    assert missing.exit_code == 1


def test_auth_status_reports_unconfigured(tmp_path, monkeypatch) -> None:
    settings = _settings(tmp_path)
    monkeypatch.setattr(cli, "get_settings", lambda: settings)

    result = runner.invoke(cli.app, ["auth-status"])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["hasToken"] is False
