# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Labeled feature buffers fed from the current segmentation."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from .logging_utils import get_logger, log_event
from .models import TrainingSample
from .session import DetectionSession

logger = get_logger(__name__)

# caller label -> (primary label, derived label); other labels pass through
_MULTI_CHAR = 2
_SINGLE_CHAR = 1


def _as_arrays(samples: Sequence[TrainingSample]):
    if not samples:
        return np.zeros((0, 0), dtype=np.float32), np.zeros((0,), dtype=np.int32)
    data = np.asarray([s.features for s in samples], dtype=np.float32)
    labels = np.asarray([s.label for s in samples], dtype=np.int32)
    return data, labels


class FeatureAccumulator:
    """Primary (character vs. background) and derived (single vs. multi) sets.

    ``record_sample`` maps the caller's label as follows:

    * ``2`` (several characters) stores a primary positive and a derived
      positive;
    * ``1`` (one character) stores a primary positive and a derived negative;
    * anything else is stored in the primary set as given.

    Derived samples append the number of keypoints merged into the candidate
    to its feature vector.
    """

    def __init__(self, session: DetectionSession) -> None:
        self.session = session
        self._primary: List[TrainingSample] = []
        self._derived: List[TrainingSample] = []

    @property
    def primary(self) -> List[TrainingSample]:
        return list(self._primary)

    @property
    def derived(self) -> List[TrainingSample]:
        return list(self._derived)

    def record_sample(self, label: int, segment_id: int, generation: Optional[int] = None) -> None:
        features = list(self.session.query_features(segment_id, generation=generation))
        candidate = self.session.candidates[segment_id]

        if label in (_MULTI_CHAR, _SINGLE_CHAR):
            self._primary.append(TrainingSample(features=features, label=1))
            derived_features = features + [float(len(candidate.keypoint_ids))]
            derived_label = 1 if label == _MULTI_CHAR else 0
            self._derived.append(TrainingSample(features=derived_features, label=derived_label))
        else:
            self._primary.append(TrainingSample(features=features, label=int(label)))

    def counts(self) -> Dict[str, int]:
        return {"primary": len(self._primary), "derived": len(self._derived)}

    def clear(self) -> None:
        self._primary = []
        self._derived = []

    def export(self, path: Union[str, Path]) -> Path:
        """Write both buffers to a NumPy ``.npz`` archive."""

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        primary_data, primary_labels = _as_arrays(self._primary)
        derived_data, derived_labels = _as_arrays(self._derived)
        with target.open("wb") as fh:
            np.savez(
                fh,
                primary_data=primary_data,
                primary_labels=primary_labels,
                derived_data=derived_data,
                derived_labels=derived_labels,
            )
        log_event(logger, "dataset.exported", {"path": str(target), **self.counts()})
        return target


__all__ = ["FeatureAccumulator"]
