"""
Logging configuration for the desktop sign-in flow.

Logs go to stderr so they never mix with command output:
- Default: structured JSON, one object per line
- OAUTHDESK_LOG_FORMAT=text: human-readable lines for local debugging
"""

import json
import logging
import os
from datetime import UTC, datetime


# Attributes every LogRecord has; anything else came in through ``extra=``
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """
    Custom JSON log formatter.

    Fields passed through ``extra=`` (provider, endpoint, ...) are merged
    into the top-level object.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            A JSON string representing the log record.
        """
        log_object = {
            "timestamp": datetime.now(UTC).isoformat(),
            "severity": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_object[key] = value

        if record.exc_info:
            log_object["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_object, default=str)


def setup_global_logging() -> None:
    """
    Configure global logging based on environment.

    Replaces any handlers already on the root logger so repeated calls
    do not duplicate output.
    """
    log_format = os.getenv("OAUTHDESK_LOG_FORMAT", "json").lower()

    handler = logging.StreamHandler()
    if log_format == "text":
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)
