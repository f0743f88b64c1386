"""JSON logging for the gateway.

Every line is one JSON object. Request and stream context passed through
``extra=`` (peer address, request path, video id, itag, response status) is
lifted into top-level keys so log lines can be filtered per video or client.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

CONTEXT_FIELDS: tuple[str, ...] = ("peer", "path", "video_id", "itag", "status")


class JsonFormatter(logging.Formatter):
    """Render records as JSON, including any gateway context fields set on them."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "message": record.getMessage(),
            "name": record.name,
            "line": record.lineno,
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(debug: bool) -> None:
    """Send JSON lines to stdout; ``debug`` lowers the gateway loggers to DEBUG.

    Library loggers (asyncio, yt-dlp's networking) stay at WARNING unless ``debug``
    is set, since they report every reset client connection and retried request.
    """

    level: int = logging.DEBUG if debug else logging.INFO
    handler: logging.Handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger: logging.Logger = logging.getLogger()
    root_logger.setLevel(level)
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)

    for name in ("asyncio", "yt_dlp"):
        logging.getLogger(name).setLevel(level if debug else logging.WARNING)
