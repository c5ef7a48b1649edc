from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from hunt_analyzer.config import Settings

LOGGER_NAME = "hunt_analyzer"

_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "taskName",
}


class JsonlFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED:
                payload[key] = value
        if record.exc_info:
            payload["stack"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _level_from_string(level: str) -> int:
    return getattr(logging, (level or "INFO").upper(), logging.INFO)


def log_file_path(log_dir: Path, day: datetime | None = None) -> Path:
    stamp = (day or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return log_dir / f"app-{stamp}.log"


def setup_logging(settings: Settings) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    level = _level_from_string(settings.log_level)
    logger.setLevel(level)
    logger.handlers = []
    logger.propagate = False

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(console)

    if settings.log_file_enabled:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path(settings.log_dir), encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(JsonlFormatter())
        logger.addHandler(file_handler)

    return logger


def log_event(logger: logging.Logger | None, message: str, level: int = logging.INFO, **fields: Any) -> None:
    if logger is None:
        return
    logger.log(level, message, extra=fields)


def cleanup_logs(log_dir: Path, days_to_keep: int = 30) -> list[Path]:
    if not log_dir.exists():
        return []
    cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
    removed: list[Path] = []
    for path in log_dir.glob("app-*.log"):
        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        if modified < cutoff:
            path.unlink()
            removed.append(path)
    return removed
