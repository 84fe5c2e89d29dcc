# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Current-image context for the three detection stages.

A :class:`DetectionSession` caches the keypoints, candidates and text lines
of the most recent image so they can be queried by index. Each collection
carries a generation counter that is bumped whenever it is replaced; queries
that pass the generation they observed are rejected once it is stale.

Stages compute into locals and publish on success only, so a stage that
raises leaves the previously cached state untouched.
"""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Union

import cv2
import numpy as np

from .errors import OutOfRange, StageNotReady, StaleGeneration
from .geometry import normalize_line
from .interfaces import FeatureExtractor, LineDetector
from .logging_utils import get_logger, log_event
from .models import (
    DirectionStrokes,
    Keypoint,
    KeypointPixelIndex,
    LetterCandidate,
    PixelStrokes,
    TextLine,
)
from .registry import InstanceRegistry
from .rendering import render_candidates, render_lines
from .stats import StatAccumulator, timed

logger = get_logger(__name__)

ORB_FEATURES = 4000
ORB_SCALE_FACTOR = 1.6
ORB_LEVELS = 8
ORB_EDGE_THRESHOLD = 13

KEYPOINT_COLUMNS = 12
CANDIDATE_COLUMNS = 11
LINE_COLUMNS = 13
ORB_COLUMNS = 10


class SessionState(str, Enum):
    IDLE = "idle"
    KEYPOINTS_READY = "keypoints_ready"
    SEGMENTATION_READY = "segmentation_ready"
    LINES_READY = "lines_ready"


def _default_line_detector() -> LineDetector:
    from .simple import GreedyLineDetector

    return GreedyLineDetector()


def _check_index(kind: str, index: int, size: int, generation: Optional[int], current: int) -> None:
    if generation is not None and generation != current:
        raise StaleGeneration(kind, index, size, generation, current)
    if index < 0 or index >= size:
        raise OutOfRange(kind, index, size)


class DetectionSession:
    def __init__(
        self,
        registry: InstanceRegistry,
        stats: StatAccumulator,
        line_detector: Optional[LineDetector] = None,
    ) -> None:
        self.registry = registry
        self.stats = stats
        self.line_detector: LineDetector = line_detector or _default_line_detector()

        self.state = SessionState.IDLE
        self.image: Optional[np.ndarray] = None
        self.keypoints: List[Keypoint] = []
        self.pixel_index: KeypointPixelIndex = {}
        self.pyramid: List[np.ndarray] = []
        self.scales: List[float] = [1.0]
        self.candidates: List[LetterCandidate] = []
        self.lines: List[TextLine] = []
        # extractor of the instance that produced the current candidates
        self.feature_extractor: Optional[FeatureExtractor] = None
        self.keypoint_elapsed_ms = 0.0

        self.keypoint_generation = 0
        self.candidate_generation = 0
        self.line_generation = 0

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def detect_keypoints(self, instance_id: int, image: np.ndarray) -> int:
        """Detect keypoints on ``image`` and make it the current image."""

        instance = self.registry.get(instance_id)
        detector = instance.detector
        with timed() as watch:
            keypoints, pixel_index = detector.detect(image)

        self.image = image
        self.keypoints = list(keypoints)
        self.pixel_index = dict(pixel_index)
        self.pyramid = list(getattr(detector, "image_pyramid", []) or [])
        self.scales = list(getattr(detector, "scales", []) or [1.0])
        self.keypoint_elapsed_ms = watch.elapsed_ms
        self.candidates = []
        self.lines = []
        self.feature_extractor = None
        self.keypoint_generation += 1
        self.state = SessionState.KEYPOINTS_READY

        self.stats.add(keypoints_count=len(self.keypoints), keypoints_time=watch.elapsed_ms)
        log_event(
            logger,
            "stage.keypoints",
            {"instance": instance_id, "count": len(self.keypoints), "ms": round(watch.elapsed_ms, 3)},
            level="debug",
        )
        return len(self.keypoints)

    def segment_characters(
        self,
        instance_id: int,
        image: Optional[np.ndarray] = None,
        min_height: int = 0,
        output_dir: Optional[Union[str, Path]] = None,
        image_name: str = "image",
    ) -> int:
        if self.state == SessionState.IDLE:
            raise StageNotReady("segmentation", "keypoint detection")
        instance = self.registry.get(instance_id)
        segmenter = instance.segmenter
        # a replacement image is segmented on its own, at the keypoint-stage scales
        if image is None or image is self.image:
            source, pyramid = self.image, self.pyramid
        else:
            source, pyramid = image, []

        with timed() as watch:
            candidates = segmenter.get_letter_candidates(
                source, self.keypoints, self.pixel_index, min_height, pyramid=pyramid, scales=self.scales
            )
        for position, candidate in enumerate(candidates):
            candidate.index = position

        classifier = segmenter.char_classifier
        if source is not self.image:
            self.image = source
            self.pyramid = []
        self.candidates = list(candidates)
        self.lines = []
        self.feature_extractor = segmenter.feature_extractor
        self.candidate_generation += 1
        self.state = SessionState.SEGMENTATION_READY

        self.stats.add(
            segmentation_time=watch.elapsed_ms,
            classification_time=segmenter.classification_time,
            raw_cls_time=classifier.classification_time if classifier is not None else 0.0,
            strokes_time=segmenter.strokes_time,
            wall_time=(self.keypoint_elapsed_ms + watch.elapsed_ms) / 1000.0,
        )
        self.keypoint_elapsed_ms = 0.0
        log_event(
            logger,
            "stage.segmentation",
            {"instance": instance_id, "candidates": len(self.candidates), "ms": round(watch.elapsed_ms, 3)},
            level="debug",
        )

        if output_dir is not None:
            render_candidates(
                source, self.candidates, self.keypoints, Path(output_dir) / f"{image_name}_chars.png"
            )
        return len(self.candidates)

    def find_text_lines(
        self,
        instance_id: int,
        output_dir: Optional[Union[str, Path]] = None,
        image_name: str = "image",
    ) -> int:
        """Group the current candidates into lines, returning the segmentable count."""

        if self.state in (SessionState.IDLE, SessionState.KEYPOINTS_READY):
            raise StageNotReady("text line detection", "character segmentation")
        self.registry.get(instance_id)  # validates the instance id
        scales = list(self.scales)

        working = [candidate.model_copy() for candidate in self.candidates]
        for candidate in working:
            candidate.group_assigned = 0
        with timed() as watch:
            lines = self.line_detector.find_text_lines(self.image, working, scales)
        with timed() as gc_watch:
            segmentable = [line for line in lines if line.is_segmentable]

        self.candidates = working
        self.lines = list(lines)
        self.line_generation += 1
        self.state = SessionState.LINES_READY

        self.stats.add(text_line_time=watch.elapsed_ms, gc_time=gc_watch.elapsed_ms)
        log_event(
            logger,
            "stage.lines",
            {"instance": instance_id, "lines": len(self.lines), "segmentable": len(segmentable)},
            level="debug",
        )

        if output_dir is not None:
            render_lines(self.image, segmentable, Path(output_dir) / f"{image_name}_detectedLines.jpg")
        return len(segmentable)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def segmentable_lines(self) -> List[TextLine]:
        return [line for line in self.lines if line.is_segmentable]

    def query_keypoints(self) -> List[Keypoint]:
        return list(self.keypoints)

    def query_strokes(
        self, keypoint_id: int, instance_id: int = 0, generation: Optional[int] = None
    ) -> Union[PixelStrokes, DirectionStrokes]:
        """Supporting pixels of a keypoint, or its stroke directions when no pixels were kept."""

        _check_index("keypoint", keypoint_id, len(self.keypoints), generation, self.keypoint_generation)
        if self.pixel_index:
            class_id = self.keypoints[keypoint_id].class_id
            return PixelStrokes(pixels=list(self.pixel_index.get(class_id, [])))
        segmenter = self.registry.get(instance_id).segmenter
        segments = [seg for group in segmenter.keypoint_strokes.get(keypoint_id, []) for seg in group]
        return DirectionStrokes(segments=segments)

    def _candidate(self, segment_id: int, generation: Optional[int]) -> LetterCandidate:
        _check_index("segment", segment_id, len(self.candidates), generation, self.candidate_generation)
        return self.candidates[segment_id]

    def query_mask(self, segment_id: int, generation: Optional[int] = None) -> np.ndarray:
        return self._candidate(segment_id, generation).mask

    def query_features(self, segment_id: int, generation: Optional[int] = None) -> List[float]:
        """Feature vector of a candidate, extracted once by the segmenting instance and cached on it."""

        candidate = self._candidate(segment_id, generation)
        if candidate.feature_vector is None:
            candidate.feature_vector = list(self.feature_extractor.extract(candidate.mask, candidate))
        return list(candidate.feature_vector)

    def query_normalized_line(
        self, line_index: int, instance_id: int = 0, generation: Optional[int] = None
    ) -> np.ndarray:
        lines = self.segmentable_lines()
        _check_index("line", line_index, len(lines), generation, self.line_generation)
        line = lines[line_index]
        if line.norm_image is None:
            self.registry.get(instance_id)  # validates the instance id
            line.norm_image = normalize_line(self.image, line, self.candidates)
        return line.norm_image

    def query_image_pyramid_level(self, level: int, instance_id: int = 0) -> np.ndarray:
        pyramid: Sequence[np.ndarray] = self.registry.get(instance_id).detector.image_pyramid
        if level < 0 or level >= len(pyramid):
            raise OutOfRange("pyramid level", level, len(pyramid))
        return pyramid[level]

    def query_scale_table(self, instance_id: int = 0) -> np.ndarray:
        return np.asarray(self.registry.get(instance_id).detector.scales, dtype=np.float64)

    def keypoint_table(self) -> np.ndarray:
        table = np.zeros((len(self.keypoints), KEYPOINT_COLUMNS), dtype=np.float32)
        for row, keypoint in enumerate(self.keypoints):
            table[row] = keypoint.as_row()
        return table

    def candidate_table(self) -> np.ndarray:
        table = np.empty((len(self.candidates), CANDIDATE_COLUMNS), dtype=object)
        for row, candidate in enumerate(self.candidates):
            for col, value in enumerate(candidate.as_row()):
                table[row, col] = value
        return table

    def line_table(self) -> np.ndarray:
        lines = self.segmentable_lines()
        table = np.zeros((len(lines), LINE_COLUMNS), dtype=np.float32)
        for row, line in enumerate(lines):
            table[row] = line.as_row()
        return table

    def query_orb_keypoints(self) -> np.ndarray:
        """ORB keypoints of the current image for comparison runs.

        Columns: ``x, y, size, angle, response, octave, class_id, 0, 0`` and
        the detection time in milliseconds.
        """

        if self.image is None:
            raise StageNotReady("ORB keypoint query", "keypoint detection")
        orb = cv2.ORB_create(ORB_FEATURES, ORB_SCALE_FACTOR, ORB_LEVELS, ORB_EDGE_THRESHOLD)
        with timed() as watch:
            found = orb.detect(self.image, None)
        table = np.zeros((len(found), ORB_COLUMNS), dtype=np.float32)
        for row, kp in enumerate(found):
            table[row, :7] = [kp.pt[0], kp.pt[1], kp.size, kp.angle, kp.response, kp.octave, kp.class_id]
        table[:, ORB_COLUMNS - 1] = watch.elapsed_ms
        return table


__all__ = ["DetectionSession", "SessionState"]
