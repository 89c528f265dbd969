"""
Logging configuration for the provenance service.

Emits one JSON object per line so ledger invocations can be followed in a
log aggregator.
"""

import json
import logging
import os
import sys
import time
from typing import Optional

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(level: Optional[str] = None, json_format: bool = True) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name, defaults to the LOG_LEVEL environment variable
        json_format: Use the JSON formatter instead of plain text
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    root_logger.addHandler(handler)
