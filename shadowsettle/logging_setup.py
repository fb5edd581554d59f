import logging
import json
import time
from flask import has_request_context, request

# Liveness probes hit these every few seconds
QUIET_PATHS = ("/health", "/metrics")


class JsonRequestFormatter(logging.Formatter):
    def format(self, record):
        if has_request_context() and request.path in QUIET_PATHS:
            return ""

        data = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        if has_request_context():
            data.update({
                "method": request.method,
                "path": request.path,
                "remote_addr": request.headers.get("X-Forwarded-For", request.remote_addr),
                "request_id": request.headers.get("X-Request-ID"),
            })

        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(data, ensure_ascii=False, default=str)


class _DropEmpty(logging.Filter):
    def filter(self, record):
        return not (has_request_context() and request.path in QUIET_PATHS)


def setup_logging(app=None, level=logging.INFO):
    root = logging.getLogger()
    root.setLevel(level)

    # avoid duplicated handlers on reload
    for h in list(root.handlers):
        root.removeHandler(h)

    h = logging.StreamHandler()
    h.setFormatter(JsonRequestFormatter())
    h.addFilter(_DropEmpty())
    root.addHandler(h)

    if app:
        app.logger.handlers = [h]
        app.logger.setLevel(level)


def short(value, size: int = 18) -> str:
    """Truncate long hex identifiers for log lines."""
    text = str(value or "")
    return text if len(text) <= size else text[:size] + "..."
