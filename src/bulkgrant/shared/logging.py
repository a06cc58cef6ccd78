"""Structured event logging.

Each event is one JSON object per line, keyed by a dotted event name.
Fields that could carry a credential are dropped before formatting.
"""
import json
import logging
import os
from typing import Any, Dict, Mapping, Optional


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
REDACTED_FIELDS = frozenset({"credential", "authorization", "access_token", "token"})

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    global _configured
    if _configured:
        return
    logging.basicConfig(level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(), format=LOG_FORMAT)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def event_payload(event: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    payload = {key: value for key, value in fields.items() if key.lower() not in REDACTED_FIELDS}
    payload["event"] = event
    return payload


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    if not logger.isEnabledFor(level):
        return
    logger.log(level, json.dumps(event_payload(event, fields), sort_keys=True, default=str))
