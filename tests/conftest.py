# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Pytest configuration shared across the suite."""

from __future__ import annotations

import sys
from pathlib import Path

import cv2
import numpy as np
import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ftpipe import (  # noqa: E402
    ClassifierTrainer,
    MockBoostBackend,
    MockLineDetector,
    TextDetectionEngine,
    TrainerConfig,
    mock_instance_factory,
)


@pytest.fixture
def text_image() -> np.ndarray:
    image = np.full((80, 240), 255, dtype=np.uint8)
    cv2.putText(image, "TEXT 42", (10, 55), cv2.FONT_HERSHEY_SIMPLEX, 1.5, 0, 3)
    return image


@pytest.fixture
def gray_image() -> np.ndarray:
    return np.full((120, 160), 128, dtype=np.uint8)


@pytest.fixture
def mock_image() -> np.ndarray:
    return np.full((60, 120), 200, dtype=np.uint8)


@pytest.fixture
def trainer_config(tmp_path) -> TrainerConfig:
    return TrainerConfig(
        output_path=tmp_path / "models" / "cvBoostChar.boost",
        derived_output_path=tmp_path / "models" / "cvBoostMultiChar.boost",
    )


@pytest.fixture
def mock_engine(trainer_config) -> TextDetectionEngine:
    engine = TextDetectionEngine(
        factory=mock_instance_factory,
        line_detector=MockLineDetector(),
        trainer=ClassifierTrainer(trainer_config, backend=MockBoostBackend()),
    )
    engine.create_instance(instance_id=0)
    return engine
