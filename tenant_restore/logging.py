import json
import logging
import sys
from datetime import datetime, timezone
from threading import local
from typing import Iterable, Optional

LOGGER_NAME = "tenant_restore"

_log_ctx = local()


def set_log_context(**kwargs):
    for k, v in kwargs.items():
        setattr(_log_ctx, k, v)


def clear_log_context(keys: Optional[Iterable[str]] = None):
    names = list(keys) if keys is not None else list(get_log_context())
    for name in names:
        if hasattr(_log_ctx, name):
            delattr(_log_ctx, name)


def get_log_context() -> dict:
    return {k: v for k, v in _log_ctx.__dict__.items() if not k.startswith("_")}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        data = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            ),
            "level": record.levelname,
            "run_id": getattr(record, "run_id", ctx.get("run_id")),
            "stage": getattr(record, "stage", ctx.get("stage")),
            "msg": record.getMessage(),
        }

        if hasattr(record, "duration_ms"):
            data["duration_ms"] = record.duration_ms
        if hasattr(record, "metrics"):
            data["metrics"] = record.metrics
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)

        # Clean nulls
        data = {k: v for k, v in data.items() if v is not None}
        return json.dumps(data, default=str)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not name:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def setup_logging(level=logging.INFO, log_file: str = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    formatter = JsonFormatter()

    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger
