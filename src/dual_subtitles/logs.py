"""Logging setup shared by the addon server and the pipeline.

Plain text by default; structured JSON lines when ``json_logs`` is enabled.
Every record carries the per-request id when one is set.
"""

from __future__ import annotations

import contextvars
import datetime
import json
import logging
import sys

# Per-request context for correlation
REQUEST_ID: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%H:%M:%S"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload = {
            "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="seconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        rid = REQUEST_ID.get("")
        if rid:
            payload["rid"] = rid
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class RequestIdFilter(logging.Filter):
    """Prefix text log lines with ``[rid=...]`` while a request is in flight."""

    def filter(self, record: logging.LogRecord) -> bool:
        rid = REQUEST_ID.get("")
        if rid and not getattr(record, "_rid_tagged", False):
            record.msg = f"[rid={rid}] {record.msg}"
            record._rid_tagged = True
        return True


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_dual_subs", False):
            root.removeHandler(handler)

    stream = logging.StreamHandler(sys.stdout)
    stream._dual_subs = True  # type: ignore[attr-defined]
    if json_logs:
        stream.setFormatter(JSONFormatter())
    else:
        stream.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))
        stream.addFilter(RequestIdFilter())
    root.addHandler(stream)
    root.setLevel(level.upper())

    logging.getLogger("dual_subtitles").setLevel(level.upper())
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    charset_logger = logging.getLogger("charset_normalizer")
    charset_logger.setLevel(logging.WARNING)
    charset_logger.propagate = False
