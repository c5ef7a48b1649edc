import logging

from hunt_analyzer.models import AnalyzedProduct, Product, RunSummary
from hunt_analyzer.analysis import rule_based_analysis
from hunt_analyzer.results import LatestResults
from hunt_analyzer.storage import RunStorage


def _summary(run_id: str, timestamp: str) -> RunSummary:
    product = Product(id=run_id, name=f"Product {run_id}", votes_count=12)
    return RunSummary.build(
        run_id,
        [AnalyzedProduct(product=product, analysis=rule_based_analysis(product))],
        timestamp=timestamp,
    )


class BrokenStorage:
    def save_run(self, summary, markdown):
        raise OSError("disk full")

    def prune(self, keep):
        return 0


def test_publish_replaces_latest_and_counts_sequence() -> None:
    results = LatestResults()
    first = _summary("a", "2026-03-10T01:00:00Z")
    second = _summary("b", "2026-03-10T00:00:00Z")

    assert results.latest() is None
    assert results.publish(first) == 1
    assert results.publish(second) == 2
    # publish order decides, not run timestamps
    assert results.latest() is second


def test_run_ids_are_unique() -> None:
    results = LatestResults()

    ids = {results.next_run_id() for _ in range(50)}

    assert len(ids) == 50


def test_publish_archives_and_prunes(tmp_path) -> None:
    storage = RunStorage(tmp_path / "runs.db")
    results = LatestResults(storage=storage, keep_runs=2)

    for idx in range(3):
        results.publish(_summary(f"run-{idx}", f"2026-03-10T0{idx}:00:00Z"))

    runs = storage.list_runs()
    assert [r["run_id"] for r in runs] == ["run-2", "run-1"]
    stored = storage.get_run("run-2")
    assert stored["success_count"] == 1
    assert "Product run-2" in stored["markdown"]
    assert storage.latest_run()["run_id"] == "run-2"
    assert storage.get_run("run-0") is None


def test_archive_failure_does_not_break_publish(caplog) -> None:
    results = LatestResults(storage=BrokenStorage())
    summary = _summary("x", "2026-03-10T00:00:00Z")

    with caplog.at_level(logging.ERROR):
        results.publish(summary)

    assert results.latest() is summary
    assert "Failed to archive run x" in caplog.text


def test_save_run_overwrites_same_id(tmp_path) -> None:
    storage = RunStorage(tmp_path / "runs.db")
    storage.save_run(_summary("same", "2026-03-10T00:00:00Z"), "# old")
    storage.save_run(_summary("same", "2026-03-11T00:00:00Z"), "# new")

    runs = storage.list_runs()
    assert len(runs) == 1
    assert storage.get_run("same")["markdown"] == "# new"
