# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Interfaces for the collaborators driven by the detection session."""
from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from .models import BoostParams, Keypoint, KeypointPixelIndex, LetterCandidate, StrokeDir, TextLine


class KeypointDetector(Protocol):
    image_pyramid: List[object]
    scales: List[float]

    def detect(self, image: object) -> Tuple[List[Keypoint], KeypointPixelIndex]:
        ...


class FeatureExtractor(Protocol):
    def extract(self, mask: object, candidate: LetterCandidate) -> List[float]:
        ...


class CharClassifier(Protocol):
    classification_time: float

    def predict_probability(self, features: Sequence[float]) -> float:
        ...


class CharacterSegmenter(Protocol):
    classification_time: float
    strokes_time: float
    char_classifier: Optional[CharClassifier]
    feature_extractor: FeatureExtractor
    keypoint_strokes: Dict[int, List[List[StrokeDir]]]

    def get_letter_candidates(
        self,
        image: object,
        keypoints: List[Keypoint],
        pixel_index: KeypointPixelIndex,
        min_height: int,
        pyramid: Optional[Sequence[object]] = None,
        scales: Optional[Sequence[float]] = None,
    ) -> List[LetterCandidate]:
        """Segment ``image``; an empty ``pyramid`` is rebuilt from it at ``scales``."""
        ...


class LineDetector(Protocol):
    def find_text_lines(
        self,
        image: object,
        candidates: List[LetterCandidate],
        scales: Sequence[float],
    ) -> List[TextLine]:
        ...


class BoostModel(Protocol):
    def predict(self, data: object) -> object:
        ...

    def raw_votes(self, data: object) -> object:
        ...

    def save(self, path: str) -> None:
        ...


class BoostBackend(Protocol):
    def train(self, data: object, responses: object, params: BoostParams) -> BoostModel:
        ...
