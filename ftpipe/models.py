# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Data models for the scene-text detection pipeline.

Every stage exchanges these models so collaborators can be swapped without
changing the data passed between them. Raster payloads (source images,
candidate masks, rectified lines) are NumPy ``uint8`` arrays carried in
``object`` fields; pydantic validates the scalar attributes around them.
"""
from __future__ import annotations

import math
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

import numpy as np
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class KeypointDetectorConfig(BaseModel):
    """Parameters of the multi-scale keypoint detector."""

    scale_factor: float = 1.6
    nlevels: int = 3
    edge_threshold: int = 12
    keypoint_types: int = Field(3, description="bit mask: 1 = dark centre, 2 = bright centre")
    k_min: int = 9
    k_max: int = 16
    max_keypoints: int = 4000
    erode: bool = False
    collect_pixels: bool = True


class SegmenterConfig(BaseModel):
    """Parameters of the character-candidate segmenter."""

    classifier_path: Optional[str] = None
    min_comp_size: int = 8
    max_comp_size: int = 100_000
    segment_grad: bool = False
    threshold_factor: float = 1.0
    segm_delta_int: int = 1


class InstanceConfig(BaseModel):
    keypoints: KeypointDetectorConfig = Field(default_factory=KeypointDetectorConfig)
    segmenter: SegmenterConfig = Field(default_factory=SegmenterConfig)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


class BoundingBox(BaseModel):
    """Axis-aligned bounding box in base-image pixel coordinates."""

    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    def iou(self, other: "BoundingBox") -> float:
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.x + self.width, other.x + other.width)
        y2 = min(self.y + self.height, other.y + other.height)
        if x2 <= x1 or y2 <= y1:
            return 0.0
        intersection = (x2 - x1) * (y2 - y1)
        union = self.area + other.area - intersection
        return intersection / union if union > 0 else 0.0

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)


class RotatedRect(BaseModel):
    """Oriented rectangle with OpenCV ``RotatedRect`` conventions (angle in degrees)."""

    center: Tuple[float, float]
    size: Tuple[float, float]
    angle: float = 0.0

    def points(self) -> List[Tuple[float, float]]:
        """Return the four corners in the order ``cv2.boxPoints`` uses."""

        theta = self.angle * math.pi / 180.0
        b = math.cos(theta) * 0.5
        a = math.sin(theta) * 0.5
        cx, cy = self.center
        width, height = self.size
        p0 = (cx - a * height - b * width, cy + b * height - a * width)
        p1 = (cx + a * height - b * width, cy - b * height - a * width)
        p2 = (2 * cx - p0[0], 2 * cy - p0[1])
        p3 = (2 * cx - p1[0], 2 * cy - p1[1])
        return [p0, p1, p2, p3]


# ---------------------------------------------------------------------------
# Keypoint stage
# ---------------------------------------------------------------------------


class KeypointType(int, Enum):
    DARK = 1
    BRIGHT = 2


class Keypoint(BaseModel):
    x: float
    y: float
    octave: int = 0
    response: float = 0.0
    angle: float = -1.0
    intensity_out: Tuple[float, float] = (0.0, 0.0)
    intensity_in: Tuple[float, float] = (0.0, 0.0)
    count: int = 0
    type: int = KeypointType.DARK.value
    channel: int = 0
    class_id: int = -1

    def as_row(self) -> List[float]:
        """Row of the 12-column keypoint table."""

        return [
            self.x,
            self.y,
            float(self.octave),
            self.response,
            self.angle,
            self.intensity_out[0],
            self.intensity_out[1],
            self.intensity_in[0],
            self.intensity_in[1],
            float(self.count),
            float(self.type),
            float(self.channel),
        ]


# class id -> supporting (x, y) pixels, in detection order
KeypointPixelIndex = Dict[int, List[Tuple[int, int]]]


class StrokeDir(BaseModel):
    """Directed stroke segment supporting a keypoint."""

    center: Tuple[int, int]
    direction: Tuple[int, int]


class PixelStrokes(BaseModel):
    kind: Literal["pixels"] = "pixels"
    pixels: List[Tuple[int, int]] = Field(default_factory=list)

    def as_rows(self) -> List[List[int]]:
        return [[x, y] for x, y in self.pixels]


class DirectionStrokes(BaseModel):
    kind: Literal["directions"] = "directions"
    segments: List[StrokeDir] = Field(default_factory=list)

    def as_rows(self) -> List[List[int]]:
        return [
            [seg.center[0], seg.center[1], seg.direction[0], seg.direction[1]]
            for seg in self.segments
        ]


Strokes = Annotated[Union[PixelStrokes, DirectionStrokes], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Segmentation and line stages
# ---------------------------------------------------------------------------


class LetterCandidate(BaseModel):
    """Connected region hypothesised to contain a single character."""

    bbox: BoundingBox
    keypoint: Keypoint
    group_assigned: int = 0
    duplicate: int = 0
    quality: float = 0.0
    keypoint_ids: List[int] = Field(default_factory=list)
    mask: object = None
    feature_vector: Optional[List[float]] = None
    index: int = -1
    scale_level: int = 0

    def as_row(self) -> List[object]:
        """Row of the 11-column candidate table."""

        return [
            self.bbox.x,
            self.bbox.y,
            self.bbox.width,
            self.bbox.height,
            int(self.keypoint.x),
            int(self.keypoint.y),
            int(self.keypoint.octave),
            int(self.group_assigned),
            int(self.duplicate),
            float(self.quality),
            list(self.keypoint_ids),
        ]


class TextLineType(int, Enum):
    HORIZONTAL = 0
    SKEWED = 1


class TextLine(BaseModel):
    bbox: BoundingBox
    min_rect: RotatedRect
    is_segmentable: bool = True
    type: int = TextLineType.HORIZONTAL.value
    candidate_ids: List[int] = Field(default_factory=list)
    norm_image: object = None

    def as_row(self) -> List[float]:
        """Row of the 13-column line table."""

        row: List[float] = [
            float(self.bbox.x),
            float(self.bbox.y),
            float(self.bbox.width),
            float(self.bbox.height),
        ]
        for px, py in self.min_rect.points():
            row.extend([float(px), float(py)])
        row.append(float(int(self.type)))
        return row


# ---------------------------------------------------------------------------
# Statistics and training
# ---------------------------------------------------------------------------

STAT_FIELDS: Tuple[str, ...] = (
    "keypoints_count",
    "keypoints_time",
    "segmentation_time",
    "classification_time",
    "raw_cls_time",
    "text_line_time",
    "wall_time",
    "classification_time_tuples",
    "tuples_time",
    "strokes_time",
    "gc_time",
)


class DetectionStat(BaseModel):
    """Cumulative per-stage counters. Times are milliseconds except ``wall_time`` (seconds)."""

    keypoints_count: float = 0.0
    keypoints_time: float = 0.0
    segmentation_time: float = 0.0
    classification_time: float = 0.0
    raw_cls_time: float = 0.0
    text_line_time: float = 0.0
    wall_time: float = 0.0
    classification_time_tuples: float = 0.0
    tuples_time: float = 0.0
    strokes_time: float = 0.0
    gc_time: float = 0.0

    def as_list(self) -> List[float]:
        return [float(getattr(self, name)) for name in STAT_FIELDS]

    def as_array(self) -> np.ndarray:
        return np.asarray(self.as_list(), dtype=np.float32)


class TrainingSample(BaseModel):
    features: List[float]
    label: int


class BoostType(str, Enum):
    DISCRETE = "discrete"
    REAL = "real"
    LOGIT = "logit"
    GENTLE = "gentle"


class BoostParams(BaseModel):
    boost_type: BoostType = BoostType.GENTLE
    weak_count: int = Field(1000, ge=1)
    weight_trim_rate: float = Field(0.95, ge=0.0, le=1.0)
    use_surrogates: bool = False
    max_depth: int = Field(1, ge=1)


class TrainingReport(BaseModel):
    """Metrics of one training run.

    ``train_set_hit_rate`` and ``positive_hit_rate`` are measured on the very
    samples the model was trained on, so they are optimistic.
    """

    name: str
    sample_count: int
    feature_count: int
    positive_count: int
    negative_count: int
    train_set_hit_rate: float
    positive_hit_rate: Optional[float] = None
    confusion: List[List[int]] = Field(default_factory=lambda: [[0, 0], [0, 0]])
    confusion_q01: List[List[int]] = Field(default_factory=lambda: [[0, 0], [0, 0]])
    model_path: Optional[str] = None
    evaluation: object = None
