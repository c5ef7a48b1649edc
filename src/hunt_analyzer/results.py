from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from hunt_analyzer.models import RunSummary
from hunt_analyzer.reporting import build_markdown
from hunt_analyzer.storage import RunStorage

logger = logging.getLogger(__name__)


class LatestResults:
    """Process-wide slot holding the most recent completed streaming run.

    Runs are not serialized against each other. Two overlapping runs each
    publish when they finish and the later publish wins, regardless of which
    run started first. ``publish`` returns a sequence number so callers can
    tell whether their summary is still the current one.
    """

    def __init__(self, storage: Optional[RunStorage] = None, keep_runs: int = 10):
        self._lock = threading.Lock()
        self._latest: Optional[RunSummary] = None
        self._sequence = 0
        self._run_counter = itertools.count(1)
        self.storage = storage
        self.keep_runs = keep_runs

    def next_run_id(self) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        return f"{stamp}-{next(self._run_counter):04d}"

    def publish(self, summary: RunSummary) -> int:
        with self._lock:
            self._latest = summary
            self._sequence += 1
            sequence = self._sequence
        self._archive(summary)
        return sequence

    def latest(self) -> Optional[RunSummary]:
        with self._lock:
            return self._latest

    @property
    def sequence(self) -> int:
        with self._lock:
            return self._sequence

    def _archive(self, summary: RunSummary) -> None:
        if self.storage is None:
            return
        try:
            self.storage.save_run(summary, build_markdown(summary))
            self.storage.prune(self.keep_runs)
        except Exception:
            logger.exception("Failed to archive run %s", summary.run_id)
