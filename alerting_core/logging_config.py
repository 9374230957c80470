"""
Centralized Logging Configuration for the alert decision engine

Provides:
- Colored console output for development
- JSON format for production (LOG_FORMAT=json), with the bracketed subsystem
  tag ("[SUPPRESSION] ...") lifted into its own field
- Optional rotating file handler (LOG_FILE)
"""

import logging
import logging.handlers
import os
import re
import sys
from datetime import datetime, timezone
import json


# ============================================================================
# Configuration
# ============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")  # 'console' or 'json'
LOG_FILE = os.getenv("LOG_FILE")  # Optional file path

_TAG_PATTERN = re.compile(r"^\[([A-Z_]+)\]\s*")


# ============================================================================
# Custom Formatters
# ============================================================================

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S')

        if record.levelname in ['ERROR', 'CRITICAL']:
            prefix = f"{color}[{record.levelname}]{self.RESET}"
        else:
            prefix = f"{color}[{record.name}]{self.RESET}"

        line = f"{timestamp} {prefix} {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JSONFormatter(logging.Formatter):
    """JSON formatter for production/log aggregation"""

    def format(self, record):
        message = record.getMessage()
        match = _TAG_PATTERN.match(message)

        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "subsystem": match.group(1).lower() if match else None,
            "message": message[match.end():] if match else message,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


# ============================================================================
# Logger Setup
# ============================================================================

def setup_logging(level: str = LOG_LEVEL, fmt: str = LOG_FORMAT, log_file=LOG_FILE):
    """Configure the root logger with appropriate handlers"""

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level, logging.INFO))
    console_handler.setFormatter(JSONFormatter() if fmt == "json" else ColoredFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    return root_logger
