# rollsync/logging_config.py

import logging
import sys
import json
from contextvars import ContextVar

# Set by the HTTP middleware for the duration of a request
request_id_var: ContextVar = ContextVar("request_id", default=None)


# Custom formatter that outputs logs as structured JSON
class JsonFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
        }

        request_id = getattr(record, "request_id", None) or request_id_var.get()
        if request_id:
            payload["request_id"] = request_id

        # Roll-scoped lines carry the remote roll id
        if hasattr(record, "roll_id"):
            payload["roll_id"] = record.roll_id

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload)


def setup_logging(level=logging.INFO):
    """Configure the root logger with the JSON formatter on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.setLevel(level)

    # Clear any existing handlers to avoid duplicate logs
    root.handlers.clear()
    root.addHandler(handler)

    # The socket library is chatty at DEBUG
    if level > logging.DEBUG:
        logging.getLogger("websockets").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
