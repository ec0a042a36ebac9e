import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

from governed_rag.config import LOG_FILE, LOG_LEVEL


# Reserved LogRecord attributes that cannot be overwritten
_RESERVED_ATTRS = {
    "name", "msg", "args", "levelname", "levelno",
    "pathname", "filename", "module", "exc_info",
    "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "message",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, with `extra=` fields merged in.

    Values that json cannot encode (datetimes, enums, numpy scalars)
    are written with str().
    """

    def format(self, record: logging.LogRecord) -> str:

        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, value in record.__dict__.items():

            if key.startswith("_") or key in _RESERVED_ATTRS:
                continue

            # Avoid overwriting existing fields
            if key in log_data:
                log_data[f"extra_{key}"] = value
            else:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = LOG_LEVEL, log_file: Optional[str] = LOG_FILE):

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter())
    root_logger.addHandler(console_handler)

    if log_file:

        directory = os.path.dirname(log_file)

        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Silence noisy libs
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
