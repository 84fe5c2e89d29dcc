# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Logger setup shared by the engine, the trainer and the CLI."""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

LOGGER_NAME = "ftpipe"

_log_format = "text"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    """Install a single stdout handler on the ``ftpipe`` logger."""

    global _log_format
    _log_format = fmt
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    if name.startswith(LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def log_event(logger: logging.Logger, event: str, payload: Dict[str, Any], *, level: str = "info") -> None:
    fn = getattr(logger, level, logger.info)
    if not logger.isEnabledFor(logging.getLevelName(level.upper())):
        return
    if _log_format == "json":
        record = {"ts": _utc_now_iso(), "event": event, **payload}
        msg = json.dumps(record, ensure_ascii=False, default=str)
    else:
        details = " ".join(f"{key}={value}" for key, value in payload.items())
        msg = f"{event} {details}".rstrip()
    fn(msg)


__all__ = ["LOGGER_NAME", "configure_logging", "get_logger", "log_event"]
