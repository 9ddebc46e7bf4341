"""
Structured Logging Module
JSON log output for the checker, selected with LOG_FORMAT=json
"""

import json
import logging
from typing import Any


class JSONFormatter(logging.Formatter):
    """
    Formats log records as one JSON object per line.

    Batch summaries attach their context (strategy, counts, timing) through
    `extra={"extra_fields": {...}}`, so a polling run can be followed with
    jq instead of grepping message text. Credential-like keys are redacted
    before they are merged.
    """

    SENSITIVE_FIELDS = {
        'password', 'token', 'secret', 'credential', 'auth'
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in getattr(record, "extra_fields", {}).items():
            # Context never overwrites the base fields
            if key not in log_data:
                log_data[key] = self._sanitize_value(key, value)

        return json.dumps(log_data, default=str)

    def _sanitize_value(self, key: str, value: Any) -> Any:
        """Return "[REDACTED]" for keys that look like credentials."""
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in self.SENSITIVE_FIELDS):
            return "[REDACTED]"
        return value
