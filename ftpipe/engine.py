# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Caller-facing facade over the detection session, stats and trainer.

A :class:`TextDetectionEngine` owns every piece of mutable state (registry,
session, stat accumulator, feature buffers). Independent engines share
nothing, but a single engine must be driven from one thread at a time.
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np

from .features import FeatureAccumulator
from .interfaces import LineDetector
from .models import (
    DetectionStat,
    DirectionStrokes,
    InstanceConfig,
    Keypoint,
    KeypointDetectorConfig,
    KeypointPixelIndex,
    PixelStrokes,
    TrainingReport,
)
from .registry import InstanceFactory, InstanceRegistry
from .session import DetectionSession
from .stats import StatAccumulator
from .trainer import ClassifierTrainer, TrainerConfig


def find_keypoints(
    image: np.ndarray, config: Optional[KeypointDetectorConfig] = None
) -> Tuple[List[Keypoint], KeypointPixelIndex]:
    """One-shot keypoint detection that leaves every engine untouched."""

    from .simple import FastPyramidDetector

    return FastPyramidDetector(config).detect(image)


class TextDetectionEngine:
    def __init__(
        self,
        factory: Optional[InstanceFactory] = None,
        line_detector: Optional[LineDetector] = None,
        trainer: Optional[ClassifierTrainer] = None,
        trainer_config: Optional[TrainerConfig] = None,
    ) -> None:
        self.registry = InstanceRegistry(factory)
        self.stats = StatAccumulator()
        self.session = DetectionSession(self.registry, self.stats, line_detector)
        self.accumulator = FeatureAccumulator(self.session)
        self.trainer = trainer or ClassifierTrainer(trainer_config)

    def create_instance(self, config: Optional[InstanceConfig] = None, instance_id: Optional[int] = None) -> int:
        return self.registry.create_instance(config, instance_id)

    # stages

    def detect_keypoints(self, instance_id: int, image: np.ndarray) -> int:
        return self.session.detect_keypoints(instance_id, image)

    def segment_characters(
        self,
        instance_id: int,
        image: Optional[np.ndarray] = None,
        min_height: int = 0,
        output_dir: Optional[Union[str, Path]] = None,
        image_name: str = "image",
    ) -> int:
        return self.session.segment_characters(instance_id, image, min_height, output_dir, image_name)

    def find_text_lines(
        self,
        instance_id: int,
        output_dir: Optional[Union[str, Path]] = None,
        image_name: str = "image",
    ) -> int:
        return self.session.find_text_lines(instance_id, output_dir, image_name)

    # queries

    @property
    def generations(self) -> Tuple[int, int, int]:
        """Current ``(keypoint, candidate, line)`` generations."""

        session = self.session
        return session.keypoint_generation, session.candidate_generation, session.line_generation

    def query_strokes(
        self, keypoint_id: int, instance_id: int = 0, generation: Optional[int] = None
    ) -> Union[PixelStrokes, DirectionStrokes]:
        return self.session.query_strokes(keypoint_id, instance_id, generation)

    def query_mask(self, segment_id: int, generation: Optional[int] = None) -> np.ndarray:
        return self.session.query_mask(segment_id, generation)

    def query_features(self, segment_id: int, generation: Optional[int] = None) -> List[float]:
        return self.session.query_features(segment_id, generation)

    def query_normalized_line(
        self, line_index: int, instance_id: int = 0, generation: Optional[int] = None
    ) -> np.ndarray:
        return self.session.query_normalized_line(line_index, instance_id, generation)

    def query_keypoints_snapshot(self) -> np.ndarray:
        return self.session.keypoint_table()

    def query_candidates(self) -> np.ndarray:
        return self.session.candidate_table()

    def query_lines(self) -> np.ndarray:
        return self.session.line_table()

    def query_image_pyramid_level(self, level: int, instance_id: int = 0) -> np.ndarray:
        return self.session.query_image_pyramid_level(level, instance_id)

    def query_scale_table(self, instance_id: int = 0) -> np.ndarray:
        return self.session.query_scale_table(instance_id)

    def query_orb_keypoints(self) -> np.ndarray:
        return self.session.query_orb_keypoints()

    def read_and_reset_stats(self) -> DetectionStat:
        return self.stats.read_and_reset()

    # training

    def record_sample(self, label: int, segment_id: int, generation: Optional[int] = None) -> None:
        self.accumulator.record_sample(label, segment_id, generation)

    def train(self) -> Tuple[TrainingReport, Optional[TrainingReport]]:
        return self.trainer.train_accumulated(self.accumulator)


__all__ = ["TextDetectionEngine", "find_keypoints"]
