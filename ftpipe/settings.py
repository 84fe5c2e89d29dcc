# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Environment-driven settings."""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_truthy(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


class Settings(BaseModel):
    model_dir: Path
    output_dir: Optional[Path] = None
    log_level: str = "INFO"
    log_format: str = "text"
    weak_count: int = 1000
    weight_trim_rate: float = 0.95
    clear_after_train: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        model_dir = (os.environ.get("FTPIPE_MODEL_DIR") or "").strip() or tempfile.gettempdir()
        output_dir = (os.environ.get("FTPIPE_OUTPUT_DIR") or "").strip() or None
        log_format = (os.environ.get("FTPIPE_LOG_FORMAT") or "text").strip().lower()
        if log_format not in {"text", "json"}:
            log_format = "text"
        return cls(
            model_dir=Path(model_dir),
            output_dir=Path(output_dir) if output_dir else None,
            log_level=(os.environ.get("FTPIPE_LOG_LEVEL") or "INFO").strip().upper(),
            log_format=log_format,
            weak_count=max(1, _env_int("FTPIPE_WEAK_COUNT", 1000)),
            weight_trim_rate=min(1.0, max(0.0, _env_float("FTPIPE_WEIGHT_TRIM_RATE", 0.95))),
            clear_after_train=_env_truthy("FTPIPE_CLEAR_AFTER_TRAIN", True),
        )


__all__ = ["Settings"]
