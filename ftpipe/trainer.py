# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Boosted-tree training for the character and multi-character classifiers.

The trainer evaluates every model on the samples it was trained on; there is
no held-out split. The reported ``train_set_hit_rate`` is therefore an
optimistic figure and is labelled as such.
"""
from __future__ import annotations

import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from pydantic import BaseModel, Field

from .errors import EmptyTrainingSet, InconsistentFeatureLength
from .interfaces import BoostBackend, BoostModel
from .logging_utils import get_logger, log_event
from .models import BoostParams, BoostType, TrainingReport, TrainingSample
from .settings import Settings

if TYPE_CHECKING:  # pragma: no cover
    from .features import FeatureAccumulator

logger = get_logger(__name__)

_FLT_EPSILON = float(np.finfo(np.float32).eps)
_Q_THRESHOLD = 0.1

_BOOST_TYPES = {
    BoostType.DISCRETE: "BOOST_DISCRETE",
    BoostType.REAL: "BOOST_REAL",
    BoostType.LOGIT: "BOOST_LOGIT",
    BoostType.GENTLE: "BOOST_GENTLE",
}


def _ml():
    """The ``cv2.ml`` module, resolved on first use so detection imports without it."""

    ml = getattr(cv2, "ml", None)
    if ml is None:
        raise ImportError("cv2.ml is not available in this OpenCV build; install opencv-python-headless<5")
    return ml

CHAR_MODEL_NAME = "cvBoostChar.boost"
MULTI_CHAR_MODEL_NAME = "cvBoostMultiChar.boost"
DATASET_NAME = "charFeatures.npz"


def _default_model_path(name: str) -> Path:
    return Path(tempfile.gettempdir()) / name


class TrainerConfig(BaseModel):
    params: BoostParams = Field(default_factory=BoostParams)
    output_path: Path = Field(default_factory=lambda: _default_model_path(CHAR_MODEL_NAME))
    derived_output_path: Path = Field(default_factory=lambda: _default_model_path(MULTI_CHAR_MODEL_NAME))
    dataset_export_path: Optional[Path] = None
    clear_after_train: bool = True

    @classmethod
    def from_settings(cls, settings: Settings, *, export_dataset: bool = False) -> "TrainerConfig":
        return cls(
            params=BoostParams(weak_count=settings.weak_count, weight_trim_rate=settings.weight_trim_rate),
            output_path=settings.model_dir / CHAR_MODEL_NAME,
            derived_output_path=settings.model_dir / MULTI_CHAR_MODEL_NAME,
            dataset_export_path=settings.model_dir / DATASET_NAME if export_dataset else None,
            clear_after_train=settings.clear_after_train,
        )


class OpenCvBoostModel:
    """Thin wrapper over ``cv2.ml.Boost`` with batch prediction helpers."""

    def __init__(self, model: object) -> None:
        self.model = model

    @classmethod
    def load(cls, path: str) -> "OpenCvBoostModel":
        if not Path(path).exists():
            raise FileNotFoundError(f"Boost model not found: {path}")
        return cls(_ml().Boost_load(str(path)))

    def predict(self, data: np.ndarray) -> np.ndarray:
        _, out = self.model.predict(np.asarray(data, dtype=np.float32))
        return out.reshape(-1)

    def raw_votes(self, data: np.ndarray) -> np.ndarray:
        ml = _ml()
        _, out = self.model.predict(
            np.asarray(data, dtype=np.float32),
            flags=ml.DTREES_PREDICT_SUM | ml.STAT_MODEL_RAW_OUTPUT,
        )
        return out.reshape(-1)

    def save(self, path: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.model.save(str(path))


class OpenCvBoostBackend:
    def train(self, data: np.ndarray, responses: np.ndarray, params: BoostParams) -> OpenCvBoostModel:
        ml = _ml()
        model = ml.Boost_create()
        model.setBoostType(getattr(ml, _BOOST_TYPES[BoostType(params.boost_type)]))
        model.setWeakCount(int(params.weak_count))
        model.setWeightTrimRate(float(params.weight_trim_rate))
        model.setUseSurrogates(bool(params.use_surrogates))
        model.setMaxDepth(int(params.max_depth))

        var_type = np.array(
            [ml.VAR_ORDERED] * data.shape[1] + [ml.VAR_CATEGORICAL], dtype=np.uint8
        )
        tdata = ml.TrainData_create(
            np.ascontiguousarray(data, dtype=np.float32),
            ml.ROW_SAMPLE,
            np.ascontiguousarray(responses, dtype=np.int32).reshape(-1, 1),
            varType=var_type,
        )
        model.train(tdata)
        return OpenCvBoostModel(model)


def build_training_matrix(samples: Sequence[TrainingSample]) -> Tuple[np.ndarray, np.ndarray]:
    """Dense ``float32`` matrix and binary ``int32`` responses (label > 0 is positive)."""

    if not samples:
        raise EmptyTrainingSet()
    width = len(samples[0].features)
    for row, sample in enumerate(samples):
        if len(sample.features) != width:
            raise InconsistentFeatureLength(width, len(sample.features), row)
    data = np.asarray([sample.features for sample in samples], dtype=np.float32).reshape(len(samples), width)
    responses = np.asarray([1 if sample.label > 0 else 0 for sample in samples], dtype=np.int32)
    return data, responses


def _confusion(responses: np.ndarray, predicted: np.ndarray) -> List[List[int]]:
    matrix = [[0, 0], [0, 0]]
    for truth, guess in zip(responses.tolist(), predicted.tolist()):
        matrix[int(truth)][int(guess)] += 1
    return matrix


class ClassifierTrainer:
    def __init__(self, config: Optional[TrainerConfig] = None, backend: Optional[BoostBackend] = None) -> None:
        self.config = config or TrainerConfig()
        self.backend: BoostBackend = backend or OpenCvBoostBackend()

    def evaluate(
        self, model: BoostModel, data: np.ndarray, responses: np.ndarray, name: str
    ) -> TrainingReport:
        """Score ``model`` on its own training data."""

        predicted = np.asarray(model.predict(data), dtype=np.float32).reshape(-1)
        votes = np.asarray(model.raw_votes(data), dtype=np.float64).reshape(-1)
        probability = 1.0 / (1.0 + np.exp(-votes))
        hits = (np.abs(predicted - responses) <= _FLT_EPSILON).astype(np.float32)

        positives = responses == 1
        positive_count = int(positives.sum())
        sample_count = int(responses.shape[0])

        evaluation = np.zeros((sample_count, 3 + data.shape[1]), dtype=np.float32)
        evaluation[:, 0] = responses
        evaluation[:, 1] = probability
        evaluation[:, 2] = 1.0
        evaluation[:, 3:] = data

        return TrainingReport(
            name=name,
            sample_count=sample_count,
            feature_count=int(data.shape[1]),
            positive_count=positive_count,
            negative_count=sample_count - positive_count,
            train_set_hit_rate=float(hits.mean()) if sample_count else 1.0,
            positive_hit_rate=float(hits[positives].mean()) if positive_count else None,
            confusion=_confusion(responses, (predicted > 0.5).astype(np.int32)),
            confusion_q01=_confusion(responses, (probability > _Q_THRESHOLD).astype(np.int32)),
            evaluation=evaluation,
        )

    def train(
        self,
        samples: Sequence[TrainingSample],
        output_path: Optional[Path] = None,
        name: str = "char",
    ) -> TrainingReport:
        data, responses = build_training_matrix(samples)
        log_event(
            logger,
            "trainer.start",
            {"name": name, "rows": data.shape[0], "cols": data.shape[1], "weak_count": self.config.params.weak_count},
        )
        model = self.backend.train(data, responses, self.config.params)
        report = self.evaluate(model, data, responses, name)
        if output_path is not None:
            model.save(str(output_path))
            report.model_path = str(output_path)

        positive_rate = report.positive_hit_rate
        log_event(
            logger,
            "trainer.done",
            {
                "name": name,
                "train_set_hit_rate": f"{report.train_set_hit_rate * 100.0:.1f}%",
                "positive_hit_rate": f"{positive_rate * 100.0:.1f}%" if positive_rate is not None else "n/a",
                "positives": report.positive_count,
                "negatives": report.negative_count,
                "model": report.model_path,
            },
        )
        return report

    def train_accumulated(
        self, accumulator: "FeatureAccumulator"
    ) -> Tuple[TrainingReport, Optional[TrainingReport]]:
        """Train and persist the primary and the derived multi-character models.

        The derived run is skipped, and reported as ``None``, when no single or
        multi-character sample was recorded. An empty primary buffer raises
        :class:`EmptyTrainingSet` before anything is written.
        """

        primary_samples = accumulator.primary
        derived_samples = accumulator.derived
        if not primary_samples:
            raise EmptyTrainingSet()
        if self.config.dataset_export_path is not None:
            accumulator.export(self.config.dataset_export_path)
        primary = self.train(primary_samples, self.config.output_path, name="char")
        derived: Optional[TrainingReport] = None
        if derived_samples:
            derived = self.train(derived_samples, self.config.derived_output_path, name="multi_char")
        else:
            log_event(logger, "trainer.skipped", {"name": "multi_char", "reason": "no derived samples"})
        if self.config.clear_after_train:
            accumulator.clear()
        return primary, derived


__all__ = [
    "ClassifierTrainer",
    "OpenCvBoostBackend",
    "OpenCvBoostModel",
    "TrainerConfig",
    "build_training_matrix",
]
