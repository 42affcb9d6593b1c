"""
Logging setup for the ledger

Every package logger hangs off "family_ledger". With the JSON format each
record becomes one object carrying the ledger context attached through
log_action: who acted, in which cluster, doing what, to which record.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

ROOT_LOGGER = "family_ledger"

CONTEXT_FIELDS = ("identity_id", "cluster_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record; unset context fields are omitted"""

    def format(self, record):
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json",
                  logger_name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Attach a single stderr handler to the package logger.

    Calling it again replaces the previous handler, so reconfiguring from a
    new LedgerConfig does not duplicate output.
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               identity_id: Optional[str] = None, cluster_id: Optional[str] = None,
               action: Optional[str] = None, resource: Optional[str] = None,
               extra: Optional[dict] = None):
    """Log message at level with whichever ledger context fields are set"""
    context = dict(zip(CONTEXT_FIELDS, (identity_id, cluster_id, action, resource, extra)))
    logger.log(getattr(logging, level.upper()), message,
               extra={k: v for k, v in context.items() if v})
