# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Baseline collaborators built on OpenCV.

These implementations keep the pipeline usable on real images without a
native detector:

* :class:`FastPyramidDetector` runs OpenCV FAST on every level of an image
  pyramid and classifies each corner by the polarity of its circle pixels.
* :class:`FloodFillSegmenter` grows a connected component from every
  keypoint on the level it was found on.
* :class:`GreedyLineDetector` chains candidates left to right into lines.
* :class:`MaskFeatureExtractor` describes a candidate mask with shape
  statistics.
* :class:`BoostCharClassifier` scores candidates with a model written by
  :class:`ftpipe.trainer.ClassifierTrainer`.
"""
from __future__ import annotations

import math
import time
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .errors import InvalidConfig
from .geometry import bbox_union, min_area_rect
from .interfaces import CharClassifier, FeatureExtractor
from .models import (
    BoundingBox,
    InstanceConfig,
    Keypoint,
    KeypointDetectorConfig,
    KeypointPixelIndex,
    KeypointType,
    LetterCandidate,
    SegmenterConfig,
    StrokeDir,
    TextLine,
    TextLineType,
)
from .trainer import OpenCvBoostModel

# Bresenham circle of radius 3 used by FAST, clockwise from 12 o'clock
_CIRCLE: Tuple[Tuple[int, int], ...] = (
    (0, -3), (1, -3), (2, -2), (3, -1), (3, 0), (3, 1), (2, 2), (1, 3),
    (0, 3), (-1, 3), (-2, 2), (-3, 1), (-3, 0), (-3, -1), (-2, -2), (-1, -3),
)
_CIRCLE_DX = np.array([dx for dx, _ in _CIRCLE], dtype=np.int32)
_CIRCLE_DY = np.array([dy for _, dy in _CIRCLE], dtype=np.int32)
_RADIUS = 3
_MIN_LEVEL_SIZE = 16


def to_gray(image: np.ndarray) -> np.ndarray:
    arr = np.asarray(image)
    if arr.ndim == 3:
        if arr.shape[2] == 4:
            arr = cv2.cvtColor(arr, cv2.COLOR_RGBA2GRAY)
        elif arr.shape[2] == 3:
            arr = cv2.cvtColor(arr, cv2.COLOR_RGB2GRAY)
        else:
            arr = arr[:, :, 0]
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    return np.ascontiguousarray(arr)


def resample_pyramid(image: np.ndarray, scales: Sequence[float]) -> List[np.ndarray]:
    """Gray levels of ``image`` downscaled by each factor in ``scales``."""

    gray = to_gray(image)
    height, width = gray.shape[:2]
    levels = []
    for scale in scales:
        if scale == 1.0:
            levels.append(gray)
            continue
        size = (max(1, int(round(width / scale))), max(1, int(round(height / scale))))
        levels.append(cv2.resize(gray, size, interpolation=cv2.INTER_AREA))
    return levels


class FastPyramidDetector:
    """FAST corners over an image pyramid, annotated with stroke polarity."""

    def __init__(self, config: Optional[KeypointDetectorConfig] = None) -> None:
        config = config or KeypointDetectorConfig()
        if config.scale_factor <= 1.0:
            raise InvalidConfig("scale_factor", config.scale_factor, "must be greater than 1")
        if config.nlevels < 1:
            raise InvalidConfig("nlevels", config.nlevels)
        if config.edge_threshold <= 0:
            raise InvalidConfig("edge_threshold", config.edge_threshold)
        if config.max_keypoints <= 0:
            raise InvalidConfig("max_keypoints", config.max_keypoints)
        if not 1 <= config.keypoint_types <= 3:
            raise InvalidConfig("keypoint_types", config.keypoint_types, "must be a mask within 1..3")
        if not 0 < config.k_min <= config.k_max <= len(_CIRCLE):
            raise InvalidConfig(
                "k_min/k_max", (config.k_min, config.k_max), f"must satisfy 0 < k_min <= k_max <= {len(_CIRCLE)}"
            )
        self.config = config
        self.image_pyramid: List[np.ndarray] = []
        self.scales: List[float] = []
        self.fast_keypoint_time = 0.0
        self._fast = cv2.FastFeatureDetector_create(threshold=int(config.edge_threshold), nonmaxSuppression=True)

    def build_pyramid(self, gray: np.ndarray) -> Tuple[List[np.ndarray], List[float]]:
        levels = [gray]
        scales = [1.0]
        height, width = gray.shape[:2]
        for level in range(1, self.config.nlevels):
            scale = self.config.scale_factor ** level
            size = (int(round(width / scale)), int(round(height / scale)))
            if min(size) < _MIN_LEVEL_SIZE:
                break
            levels.append(cv2.resize(gray, size, interpolation=cv2.INTER_AREA))
            scales.append(scale)
        return levels, scales

    def _describe(
        self, img: np.ndarray, px: int, py: int
    ) -> Optional[Tuple[int, np.ndarray, np.ndarray, int]]:
        center = int(img[py, px])
        circle = img[py + _CIRCLE_DY, px + _CIRCLE_DX].astype(np.int32)
        threshold = self.config.edge_threshold
        brighter = circle > center + threshold
        darker = circle < center - threshold
        if brighter.sum() >= darker.sum():
            kp_type, differing = KeypointType.DARK.value, brighter
        else:
            kp_type, differing = KeypointType.BRIGHT.value, darker
        if not self.config.keypoint_types & kp_type:
            return None
        count = int(differing.sum())
        if count < self.config.k_min or count > self.config.k_max:
            return None
        return kp_type, circle, differing, center

    def detect(self, image: np.ndarray) -> Tuple[List[Keypoint], KeypointPixelIndex]:
        start = time.perf_counter()
        gray = to_gray(image)
        if self.config.erode:
            gray = cv2.erode(gray, np.ones((3, 3), np.uint8))
        self.image_pyramid, self.scales = self.build_pyramid(gray)

        found: List[Tuple[Keypoint, List[Tuple[int, int]]]] = []
        for level, (img, scale) in enumerate(zip(self.image_pyramid, self.scales)):
            rows, cols = img.shape[:2]
            for raw in self._fast.detect(img, None):
                px, py = int(round(raw.pt[0])), int(round(raw.pt[1]))
                if px < _RADIUS or py < _RADIUS or px >= cols - _RADIUS or py >= rows - _RADIUS:
                    continue
                described = self._describe(img, px, py)
                if described is None:
                    continue
                kp_type, circle, differing, center = described
                out_vals = circle[differing]
                in_vals = np.append(circle[~differing], center)
                angle = math.degrees(
                    math.atan2(float(_CIRCLE_DY[differing].mean()), float(_CIRCLE_DX[differing].mean()))
                ) % 360.0
                keypoint = Keypoint(
                    x=px * scale,
                    y=py * scale,
                    octave=level,
                    response=float(raw.response),
                    angle=angle,
                    intensity_out=(float(out_vals.mean()), float(out_vals.std())),
                    intensity_in=(float(center), float(in_vals.mean())),
                    count=int(differing.sum()),
                    type=kp_type,
                    channel=0,
                )
                pixels = [
                    (int(round((px + dx) * scale)), int(round((py + dy) * scale)))
                    for dx, dy in zip(_CIRCLE_DX[differing], _CIRCLE_DY[differing])
                ]
                found.append((keypoint, pixels))

        found.sort(key=lambda item: item[0].response, reverse=True)
        found = found[: self.config.max_keypoints]

        keypoints: List[Keypoint] = []
        pixel_index: KeypointPixelIndex = {}
        for class_id, (keypoint, pixels) in enumerate(found):
            keypoint.class_id = class_id
            keypoints.append(keypoint)
            if self.config.collect_pixels and pixels:
                pixel_index[class_id] = pixels
        self.fast_keypoint_time = (time.perf_counter() - start) * 1000.0
        return keypoints, pixel_index


FEATURE_NAMES: Tuple[str, ...] = (
    "aspect_ratio",
    "fill_ratio",
    "solidity",
    "compactness",
    "holes",
    "row_crossings",
    "col_crossings",
    "log_height",
    "perimeter_ratio",
    "keypoint_count",
)


class MaskFeatureExtractor:
    """Shape statistics of a binary candidate mask."""

    def extract(self, mask: object, candidate: LetterCandidate) -> List[float]:
        keypoint_count = float(len(candidate.keypoint_ids))
        if mask is None:
            return [0.0] * (len(FEATURE_NAMES) - 1) + [keypoint_count]
        binary = (np.asarray(mask) > 0).astype(np.uint8)
        area = float(binary.sum())
        if binary.ndim != 2 or area == 0:
            return [0.0] * (len(FEATURE_NAMES) - 1) + [keypoint_count]

        rows, cols = binary.shape
        contours, hierarchy = cv2.findContours(binary.copy(), cv2.RETR_CCOMP, cv2.CHAIN_APPROX_NONE)
        outer = [c for c, h in zip(contours, hierarchy[0]) if h[3] < 0] if hierarchy is not None else []
        holes = float(sum(1 for h in hierarchy[0] if h[3] >= 0)) if hierarchy is not None else 0.0
        perimeter = float(sum(cv2.arcLength(c, True) for c in outer))
        hull_area = float(cv2.contourArea(cv2.convexHull(np.vstack(outer)))) if outer else 0.0

        row_crossings = float(np.count_nonzero(np.diff(binary, axis=1) == 1, axis=1).mean())
        col_crossings = float(np.count_nonzero(np.diff(binary, axis=0) == 1, axis=0).mean())

        return [
            cols / float(rows),
            area / float(rows * cols),
            min(1.0, area / hull_area) if hull_area > 0 else 1.0,
            perimeter * perimeter / (4.0 * math.pi * area),
            holes,
            row_crossings,
            col_crossings,
            math.log(float(candidate.bbox.height) + 1.0),
            perimeter / float(2 * (rows + cols)),
            keypoint_count,
        ]


class BoostCharClassifier:
    """Character/background scorer backed by a persisted boost model."""

    def __init__(self, model_path: str) -> None:
        self.model_path = model_path
        self.model = OpenCvBoostModel.load(model_path)
        self.classification_time = 0.0

    def predict_probability(self, features: Sequence[float]) -> float:
        start = time.perf_counter()
        sample = np.asarray([features], dtype=np.float32)
        vote = float(self.model.raw_votes(sample)[0])
        self.classification_time += (time.perf_counter() - start) * 1000.0
        return 1.0 / (1.0 + math.exp(-vote))


class FloodFillSegmenter:
    """Grow one connected component per keypoint on its pyramid level."""

    def __init__(
        self,
        config: Optional[SegmenterConfig] = None,
        classifier: Optional[CharClassifier] = None,
        feature_extractor: Optional[FeatureExtractor] = None,
        duplicate_iou: float = 0.9,
    ) -> None:
        config = config or SegmenterConfig()
        if config.min_comp_size <= 0:
            raise InvalidConfig("min_comp_size", config.min_comp_size)
        if config.max_comp_size < config.min_comp_size:
            raise InvalidConfig("max_comp_size", config.max_comp_size, "must not be below min_comp_size")
        if config.threshold_factor <= 0:
            raise InvalidConfig("threshold_factor", config.threshold_factor)
        if config.segm_delta_int < 0:
            raise InvalidConfig("segm_delta_int", config.segm_delta_int, "must not be negative")
        self.config = config
        self.char_classifier = classifier
        self.feature_extractor: FeatureExtractor = feature_extractor or MaskFeatureExtractor()
        self.duplicate_iou = duplicate_iou
        self.classification_time = 0.0
        self.strokes_time = 0.0
        self.components_count = 0
        self.keypoint_strokes: Dict[int, List[List[StrokeDir]]] = {}

    def _tolerance(self, keypoint: Keypoint) -> int:
        contrast = abs(keypoint.intensity_in[0] - keypoint.intensity_out[0])
        return max(1, int(contrast * 0.5 * self.config.threshold_factor)) + self.config.segm_delta_int

    def _strokes(self, img: np.ndarray, keypoint: Keypoint, scale: float) -> List[StrokeDir]:
        px, py = int(round(keypoint.x / scale)), int(round(keypoint.y / scale))
        rows, cols = img.shape[:2]
        if px < _RADIUS or py < _RADIUS or px >= cols - _RADIUS or py >= rows - _RADIUS:
            return []
        window = img[py - _RADIUS - 1 : py + _RADIUS + 2, px - _RADIUS - 1 : px + _RADIUS + 2].astype(np.float32)
        if window.shape != (2 * _RADIUS + 3, 2 * _RADIUS + 3):
            return []
        gx = cv2.Sobel(window, cv2.CV_32F, 1, 0, ksize=3)
        gy = cv2.Sobel(window, cv2.CV_32F, 0, 1, ksize=3)
        center = int(img[py, px])
        tolerance = self._tolerance(keypoint)
        strokes: List[StrokeDir] = []
        for dx, dy in _CIRCLE:
            if abs(int(img[py + dy, px + dx]) - center) <= tolerance:
                continue
            wx, wy = dx + _RADIUS + 1, dy + _RADIUS + 1
            vx, vy = float(gx[wy, wx]), float(gy[wy, wx])
            norm = math.hypot(vx, vy)
            if norm == 0:
                continue
            strokes.append(
                StrokeDir(
                    center=(int(round((px + dx) * scale)), int(round((py + dy) * scale))),
                    direction=(int(round(vx / norm * _RADIUS)), int(round(vy / norm * _RADIUS))),
                )
            )
        return strokes

    def get_letter_candidates(
        self,
        image: np.ndarray,
        keypoints: List[Keypoint],
        pixel_index: KeypointPixelIndex,
        min_height: int = 0,
        pyramid: Optional[Sequence[np.ndarray]] = None,
        scales: Optional[Sequence[float]] = None,
    ) -> List[LetterCandidate]:
        scales = list(scales or [1.0])
        pyramid = list(pyramid) if pyramid else resample_pyramid(image, scales)
        if len(pyramid) != len(scales):
            raise InvalidConfig("pyramid", len(pyramid), f"expected {len(scales)} levels to match the scales")

        self.classification_time = 0.0
        self.strokes_time = 0.0
        self.keypoint_strokes = {}
        if self.char_classifier is not None:
            self.char_classifier.classification_time = 0.0

        claimed = [np.full(img.shape[:2], -1, dtype=np.int32) for img in pyramid]
        candidates: List[LetterCandidate] = []
        flags = 8 | cv2.FLOODFILL_MASK_ONLY | cv2.FLOODFILL_FIXED_RANGE | (255 << 8)

        for kp_id, keypoint in enumerate(keypoints):
            level = min(max(keypoint.octave, 0), len(pyramid) - 1)
            img, scale = pyramid[level], scales[level]
            rows, cols = img.shape[:2]
            sx = min(max(int(round(keypoint.x / scale)), 0), cols - 1)
            sy = min(max(int(round(keypoint.y / scale)), 0), rows - 1)

            if self.config.segment_grad or not pixel_index:
                start = time.perf_counter()
                self.keypoint_strokes[kp_id] = [self._strokes(img, keypoint, scale)]
                self.strokes_time += (time.perf_counter() - start) * 1000.0

            owner = int(claimed[level][sy, sx])
            if owner >= 0:
                candidates[owner].keypoint_ids.append(kp_id)
                continue
            if owner == -2:
                continue

            tolerance = self._tolerance(keypoint)
            fill_mask = np.zeros((rows + 2, cols + 2), dtype=np.uint8)
            area, _, _, rect = cv2.floodFill(
                img.copy(), fill_mask, (sx, sy), 0, tolerance, tolerance, flags
            )
            rx, ry, rw, rh = rect
            component = fill_mask[1 + ry : 1 + ry + rh, 1 + rx : 1 + rx + rw]
            region = claimed[level][ry : ry + rh, rx : rx + rw]
            bbox = BoundingBox(
                x=int(round(rx * scale)),
                y=int(round(ry * scale)),
                width=max(1, int(round(rw * scale))),
                height=max(1, int(round(rh * scale))),
            )
            spans_level = rw >= cols or rh >= rows
            if (
                spans_level
                or not self.config.min_comp_size <= area <= self.config.max_comp_size
                or bbox.height < min_height
            ):
                region[component > 0] = -2
                continue

            region[component > 0] = len(candidates)
            candidates.append(
                LetterCandidate(
                    bbox=bbox,
                    keypoint=keypoint,
                    keypoint_ids=[kp_id],
                    mask=component.copy(),
                    index=len(candidates),
                    scale_level=level,
                )
            )

        self.components_count = len(candidates)
        self._mark_duplicates(candidates)
        self._classify(candidates)
        return candidates

    def _mark_duplicates(self, candidates: List[LetterCandidate]) -> None:
        for idx, candidate in enumerate(candidates):
            for prior in candidates[:idx]:
                if prior.duplicate or prior.scale_level == candidate.scale_level:
                    continue
                if prior.bbox.iou(candidate.bbox) >= self.duplicate_iou:
                    candidate.duplicate = 1
                    break

    def _classify(self, candidates: List[LetterCandidate]) -> None:
        start = time.perf_counter()
        for candidate in candidates:
            if self.char_classifier is not None:
                features = self.feature_extractor.extract(candidate.mask, candidate)
                candidate.feature_vector = features
                candidate.quality = self.char_classifier.predict_probability(features)
            else:
                mask = np.asarray(candidate.mask)
                candidate.quality = float((mask > 0).mean()) if mask.size else 0.0
        self.classification_time = (time.perf_counter() - start) * 1000.0


class GreedyLineDetector:
    """Chain non-duplicate candidates left to right into text lines."""

    def __init__(
        self,
        max_gap_ratio: float = 1.5,
        min_height_ratio: float = 0.5,
        min_y_overlap: float = 0.5,
        min_chars: int = 2,
        skew_degrees: float = 10.0,
    ) -> None:
        self.max_gap_ratio = max_gap_ratio
        self.min_height_ratio = min_height_ratio
        self.min_y_overlap = min_y_overlap
        self.min_chars = min_chars
        self.skew_degrees = skew_degrees

    def _compatible(self, last: BoundingBox, box: BoundingBox) -> Optional[float]:
        ratio = box.height / float(last.height) if last.height else 0.0
        if ratio < self.min_height_ratio or ratio > 1.0 / self.min_height_ratio:
            return None
        top = max(last.y, box.y)
        bottom = min(last.y + last.height, box.y + box.height)
        overlap = (bottom - top) / float(min(last.height, box.height))
        if overlap < self.min_y_overlap:
            return None
        gap = box.x - (last.x + last.width)
        if gap > self.max_gap_ratio * max(last.height, box.height):
            return None
        if gap < -0.5 * min(last.width, box.width):
            return None
        return float(gap)

    def _line_angle(self, boxes: Sequence[BoundingBox]) -> float:
        if len(boxes) < 2:
            return 0.0
        xs = np.array([b.x + b.width / 2.0 for b in boxes])
        ys = np.array([b.y + b.height / 2.0 for b in boxes])
        if np.ptp(xs) == 0:
            return 90.0
        slope = float(np.polyfit(xs, ys, 1)[0])
        return math.degrees(math.atan(slope))

    def find_text_lines(
        self,
        image: np.ndarray,
        candidates: List[LetterCandidate],
        scales: Sequence[float],
    ) -> List[TextLine]:
        pool = sorted(
            (idx for idx, c in enumerate(candidates) if not c.duplicate),
            key=lambda idx: (candidates[idx].bbox.x, candidates[idx].bbox.y),
        )
        groups: List[List[int]] = []
        for idx in pool:
            box = candidates[idx].bbox
            best: Optional[Tuple[float, int]] = None
            for g_idx, group in enumerate(groups):
                gap = self._compatible(candidates[group[-1]].bbox, box)
                if gap is not None and (best is None or gap < best[0]):
                    best = (gap, g_idx)
            if best is None:
                groups.append([idx])
            else:
                groups[best[1]].append(idx)

        lines: List[TextLine] = []
        for group in groups:
            boxes = [candidates[idx].bbox for idx in group]
            segmentable = len(group) >= self.min_chars
            angle = self._line_angle(boxes)
            lines.append(
                TextLine(
                    bbox=bbox_union(boxes),
                    min_rect=min_area_rect(boxes),
                    is_segmentable=segmentable,
                    type=(TextLineType.SKEWED if abs(angle) > self.skew_degrees else TextLineType.HORIZONTAL).value,
                    candidate_ids=list(group),
                )
            )
            if segmentable:
                for idx in group:
                    candidates[idx].group_assigned = 1
        return lines


def build_default_instance(config: InstanceConfig) -> Tuple[FastPyramidDetector, FloodFillSegmenter]:
    detector = FastPyramidDetector(config.keypoints)
    classifier = (
        BoostCharClassifier(config.segmenter.classifier_path) if config.segmenter.classifier_path else None
    )
    segmenter = FloodFillSegmenter(
        config.segmenter,
        classifier=classifier,
        feature_extractor=MaskFeatureExtractor(),
    )
    return detector, segmenter


__all__ = [
    "BoostCharClassifier",
    "FEATURE_NAMES",
    "FastPyramidDetector",
    "FloodFillSegmenter",
    "GreedyLineDetector",
    "MaskFeatureExtractor",
    "build_default_instance",
    "resample_pyramid",
    "to_gray",
]
