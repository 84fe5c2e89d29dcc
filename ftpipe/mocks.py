"""Mock implementations of the detection collaborators for testing."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .geometry import bbox_union, min_area_rect
from .interfaces import (
    BoostBackend,
    BoostModel,
    CharacterSegmenter,
    CharClassifier,
    FeatureExtractor,
    KeypointDetector,
    LineDetector,
)
from .models import (
    BoostParams,
    BoundingBox,
    InstanceConfig,
    Keypoint,
    KeypointPixelIndex,
    LetterCandidate,
    StrokeDir,
    TextLine,
)

MOCK_BOX_SIZE = 10


class MockKeypointDetector(KeypointDetector):
    """Returns ``count`` keypoints laid out on a row, 15 px apart."""

    def __init__(self, count: int = 4, collect_pixels: bool = True, fail: bool = False) -> None:
        self.count = count
        self.collect_pixels = collect_pixels
        self.fail = fail
        self.calls: List[object] = []
        self.image_pyramid: List[object] = []
        self.scales: List[float] = []

    def detect(self, image: object) -> Tuple[List[Keypoint], KeypointPixelIndex]:
        self.calls.append(image)
        if self.fail:
            raise RuntimeError("MockKeypointDetector configured to fail")
        arr = np.asarray(image)
        self.image_pyramid = [arr, arr[::2, ::2]]
        self.scales = [1.0, 2.0]
        keypoints = [
            Keypoint(x=10.0 + 15.0 * idx, y=20.0, response=float(self.count - idx), count=9, class_id=idx)
            for idx in range(self.count)
        ]
        pixel_index: KeypointPixelIndex = {}
        if self.collect_pixels:
            pixel_index = {kp.class_id: [(int(kp.x) + 1, int(kp.y)), (int(kp.x), int(kp.y) + 1)] for kp in keypoints}
        return keypoints, pixel_index


class MockFeatureExtractor(FeatureExtractor):
    def __init__(self) -> None:
        self.calls: List[LetterCandidate] = []

    def extract(self, mask: object, candidate: LetterCandidate) -> List[float]:
        self.calls.append(candidate)
        return [float(candidate.bbox.width), float(candidate.bbox.height), float(candidate.bbox.x)]


class MockCharClassifier(CharClassifier):
    def __init__(self, probability: float = 0.75) -> None:
        self.probability = probability
        self.classification_time = 0.0
        self.calls: List[Sequence[float]] = []

    def predict_probability(self, features: Sequence[float]) -> float:
        self.calls.append(features)
        self.classification_time += 0.5
        return self.probability


class MockSegmenter(CharacterSegmenter):
    """One square candidate per keypoint; with ``merge_every=n`` each run of n keypoints shares one."""

    def __init__(
        self,
        feature_extractor: Optional[FeatureExtractor] = None,
        char_classifier: Optional[CharClassifier] = None,
        merge_every: int = 0,
        fail: bool = False,
    ) -> None:
        self.feature_extractor = feature_extractor or MockFeatureExtractor()
        self.char_classifier = char_classifier
        self.merge_every = merge_every
        self.fail = fail
        self.classification_time = 0.0
        self.strokes_time = 0.0
        self.keypoint_strokes: Dict[int, List[List[StrokeDir]]] = {}
        self.calls: List[Dict[str, object]] = []

    def get_letter_candidates(
        self,
        image: object,
        keypoints: List[Keypoint],
        pixel_index: KeypointPixelIndex,
        min_height: int,
        pyramid: Optional[Sequence[object]] = None,
        scales: Optional[Sequence[float]] = None,
    ) -> List[LetterCandidate]:
        self.calls.append(
            {
                "image": image,
                "keypoints": len(keypoints),
                "min_height": min_height,
                "pyramid": list(pyramid or []),
                "scales": list(scales or []),
            }
        )
        if self.fail:
            raise RuntimeError("MockSegmenter configured to fail")
        self.classification_time = 1.0
        self.strokes_time = 0.25
        self.keypoint_strokes = {}
        if not pixel_index:
            self.keypoint_strokes = {
                idx: [[StrokeDir(center=(int(kp.x), int(kp.y)), direction=(1, 0))]]
                for idx, kp in enumerate(keypoints)
            }

        candidates: List[LetterCandidate] = []
        for idx, kp in enumerate(keypoints):
            if self.merge_every and candidates and idx % self.merge_every:
                candidates[-1].keypoint_ids.append(idx)
                continue
            if MOCK_BOX_SIZE < min_height:
                continue
            candidates.append(
                LetterCandidate(
                    bbox=BoundingBox(x=int(kp.x), y=int(kp.y), width=MOCK_BOX_SIZE, height=MOCK_BOX_SIZE),
                    keypoint=kp,
                    keypoint_ids=[idx],
                    mask=np.full((MOCK_BOX_SIZE, MOCK_BOX_SIZE), 255, dtype=np.uint8),
                    quality=0.5,
                )
            )
        if self.char_classifier is not None:
            for candidate in candidates:
                candidate.quality = self.char_classifier.predict_probability(
                    self.feature_extractor.extract(candidate.mask, candidate)
                )
        return candidates


class MockLineDetector(LineDetector):
    """Puts every non-duplicate candidate in one line and appends an empty, non-segmentable line."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[int] = []

    def find_text_lines(
        self,
        image: object,
        candidates: List[LetterCandidate],
        scales: Sequence[float],
    ) -> List[TextLine]:
        self.calls.append(len(candidates))
        if self.fail:
            raise RuntimeError("MockLineDetector configured to fail")
        members = [idx for idx, c in enumerate(candidates) if not c.duplicate]
        lines: List[TextLine] = []
        if members:
            boxes = [candidates[idx].bbox for idx in members]
            segmentable = len(members) >= 2
            lines.append(
                TextLine(
                    bbox=bbox_union(boxes),
                    min_rect=min_area_rect(boxes),
                    is_segmentable=segmentable,
                    candidate_ids=members,
                )
            )
            for idx in members:
                candidates[idx].group_assigned = int(segmentable)
        lines.append(
            TextLine(
                bbox=BoundingBox(x=0, y=0, width=0, height=0),
                min_rect=min_area_rect([]),
                is_segmentable=False,
            )
        )
        return lines


class MockBoostModel(BoostModel):
    """Thresholds the first feature; raw votes are the signed distance to it."""

    def __init__(self, threshold: float) -> None:
        self.threshold = threshold
        self.saved: List[str] = []

    def predict(self, data: object) -> np.ndarray:
        arr = np.asarray(data, dtype=np.float32)
        return (arr[:, 0] > self.threshold).astype(np.float32)

    def raw_votes(self, data: object) -> np.ndarray:
        arr = np.asarray(data, dtype=np.float32)
        return arr[:, 0] - self.threshold

    def save(self, path: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Path(path).write_text(f"threshold={self.threshold}\n", encoding="utf-8")
        self.saved.append(path)


class MockBoostBackend(BoostBackend):
    def __init__(self) -> None:
        self.calls: List[Dict[str, object]] = []

    def train(self, data: object, responses: object, params: BoostParams) -> MockBoostModel:
        arr = np.asarray(data, dtype=np.float32)
        labels = np.asarray(responses)
        self.calls.append({"shape": arr.shape, "responses": labels.tolist(), "params": params})
        positives = arr[labels == 1, 0]
        negatives = arr[labels == 0, 0]
        if positives.size and negatives.size:
            threshold = float((positives.min() + negatives.max()) / 2.0)
        else:
            threshold = float(arr[:, 0].mean())
        return MockBoostModel(threshold)


def mock_instance_factory(config: InstanceConfig) -> Tuple[MockKeypointDetector, MockSegmenter]:
    return MockKeypointDetector(collect_pixels=config.keypoints.collect_pixels), MockSegmenter()


__all__ = [
    "MockBoostBackend",
    "MockBoostModel",
    "MockCharClassifier",
    "MockFeatureExtractor",
    "MockKeypointDetector",
    "MockLineDetector",
    "MockSegmenter",
    "mock_instance_factory",
]
