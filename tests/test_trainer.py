# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

from pathlib import Path

import cv2
import numpy as np
import pytest

from ftpipe import (
    BoostCharClassifier,
    BoostParams,
    BoostType,
    ClassifierTrainer,
    EmptyTrainingSet,
    InconsistentFeatureLength,
    MockBoostBackend,
    OpenCvBoostBackend,
    OpenCvBoostModel,
    Settings,
    TrainerConfig,
    TrainingSample,
)
from ftpipe.trainer import build_training_matrix


def _separable_samples(count=20):
    samples = []
    for idx in range(count):
        samples.append(TrainingSample(features=[1.0 + 0.1 * idx, 5.0, float(idx % 3)], label=1))
        samples.append(TrainingSample(features=[-1.0 - 0.1 * idx, 5.0, float(idx % 3)], label=0))
    return samples


def test_build_training_matrix_shape_and_responses():
    samples = [
        TrainingSample(features=[1.0, 2.0], label=2),
        TrainingSample(features=[3.0, 4.0], label=1),
        TrainingSample(features=[5.0, 6.0], label=0),
        TrainingSample(features=[7.0, 8.0], label=-1),
    ]

    data, responses = build_training_matrix(samples)

    assert data.shape == (4, 2)
    assert data.dtype == np.float32
    assert responses.dtype == np.int32
    assert responses.tolist() == [1, 1, 0, 0]


def test_build_training_matrix_rejects_empty_and_ragged():
    with pytest.raises(EmptyTrainingSet):
        build_training_matrix([])

    ragged = [TrainingSample(features=[1.0, 2.0], label=1), TrainingSample(features=[1.0], label=0)]
    with pytest.raises(InconsistentFeatureLength) as excinfo:
        build_training_matrix(ragged)
    assert excinfo.value.row == 1
    assert excinfo.value.expected == 2


def test_train_reports_metrics_with_mock_backend(tmp_path):
    backend = MockBoostBackend()
    trainer = ClassifierTrainer(TrainerConfig(params=BoostParams(weak_count=5)), backend=backend)
    samples = _separable_samples(10)

    report = trainer.train(samples, tmp_path / "model.boost")

    assert report.sample_count == 20
    assert report.feature_count == 3
    assert report.positive_count + report.negative_count == report.sample_count
    assert report.train_set_hit_rate == pytest.approx(1.0)
    assert report.positive_hit_rate == pytest.approx(1.0)
    assert report.confusion == [[10, 0], [0, 10]]
    assert report.evaluation.shape == (20, 6)
    assert np.all(report.evaluation[:, 2] == 1.0)
    assert report.evaluation[0, 0] == 1.0
    assert report.evaluation[0, 1] > 0.5
    assert Path(report.model_path).exists()
    assert backend.calls[0]["shape"] == (20, 3)
    assert backend.calls[0]["params"].weak_count == 5


def test_positive_hit_rate_is_none_without_positives():
    trainer = ClassifierTrainer(backend=MockBoostBackend())
    samples = [TrainingSample(features=[float(idx)], label=0) for idx in range(4)]

    report = trainer.train(samples)

    assert report.positive_count == 0
    assert report.positive_hit_rate is None
    assert report.model_path is None


def test_confusion_at_low_threshold_counts_more_positives():
    trainer = ClassifierTrainer(backend=MockBoostBackend())
    samples = [
        TrainingSample(features=[2.0], label=1),
        TrainingSample(features=[0.0], label=0),
        TrainingSample(features=[0.5], label=0),
    ]

    report = trainer.train(samples)

    # both negatives score above 0.1 with the threshold at 1.25
    assert report.confusion == [[2, 0], [0, 1]]
    assert report.confusion_q01 == [[0, 2], [0, 1]]


def test_train_accumulated_trains_both_sets_and_clears(mock_engine, mock_image, tmp_path):
    mock_engine.trainer.config.dataset_export_path = tmp_path / "dataset.npz"
    mock_engine.detect_keypoints(0, mock_image)
    mock_engine.segment_characters(0)
    for segment_id, label in enumerate([2, 1, 0, 0]):
        mock_engine.record_sample(label, segment_id)

    primary, derived = mock_engine.train()

    assert primary.sample_count == 4
    assert derived.sample_count == 2
    assert derived.feature_count == primary.feature_count + 1
    assert Path(primary.model_path).name == "cvBoostChar.boost"
    assert Path(derived.model_path).name == "cvBoostMultiChar.boost"
    assert (tmp_path / "dataset.npz").exists()
    assert mock_engine.accumulator.counts() == {"primary": 0, "derived": 0}


def test_train_accumulated_can_keep_buffers(mock_engine, mock_image):
    mock_engine.trainer.config.clear_after_train = False
    mock_engine.detect_keypoints(0, mock_image)
    mock_engine.segment_characters(0)
    for segment_id, label in enumerate([2, 1, 0, 0]):
        mock_engine.record_sample(label, segment_id)

    mock_engine.train()

    assert mock_engine.accumulator.counts() == {"primary": 4, "derived": 2}


def test_empty_accumulator_raises_before_writing(mock_engine, tmp_path):
    mock_engine.trainer.config.dataset_export_path = tmp_path / "dataset.npz"

    with pytest.raises(EmptyTrainingSet):
        mock_engine.train()

    assert not (tmp_path / "dataset.npz").exists()
    assert not Path(mock_engine.trainer.config.output_path).exists()


def test_only_negatives_trains_primary_and_skips_derived(mock_engine, mock_image):
    mock_engine.detect_keypoints(0, mock_image)
    mock_engine.segment_characters(0)
    for segment_id, label in enumerate([0, -1, 0, -1]):
        mock_engine.record_sample(label, segment_id)

    primary, derived = mock_engine.train()

    config = mock_engine.trainer.config
    assert primary.sample_count == 4
    assert primary.positive_count == 0
    assert primary.positive_hit_rate is None
    assert derived is None
    assert Path(config.output_path).exists()
    assert not Path(config.derived_output_path).exists()
    assert mock_engine.accumulator.counts() == {"primary": 0, "derived": 0}


def test_boost_backend_reports_missing_ml_module(monkeypatch):
    monkeypatch.delattr(cv2, "ml", raising=False)
    data, responses = build_training_matrix(_separable_samples(3))

    with pytest.raises(ImportError, match="cv2.ml"):
        OpenCvBoostBackend().train(data, responses, BoostParams(weak_count=2))


def test_trainer_config_from_settings(tmp_path):
    settings = Settings(model_dir=tmp_path, weak_count=7, weight_trim_rate=0.5, clear_after_train=False)

    config = TrainerConfig.from_settings(settings, export_dataset=True)

    assert config.output_path == tmp_path / "cvBoostChar.boost"
    assert config.derived_output_path == tmp_path / "cvBoostMultiChar.boost"
    assert config.dataset_export_path == tmp_path / "charFeatures.npz"
    assert config.params.weak_count == 7
    assert config.params.weight_trim_rate == 0.5
    assert config.params.boost_type == BoostType.GENTLE
    assert config.clear_after_train is False


def test_opencv_backend_trains_and_persists(tmp_path):
    trainer = ClassifierTrainer(
        TrainerConfig(params=BoostParams(weak_count=10)), backend=OpenCvBoostBackend()
    )
    samples = _separable_samples(20)
    path = tmp_path / "models" / "char.boost"

    report = trainer.train(samples, path)

    assert path.exists()
    assert report.train_set_hit_rate >= 0.95
    assert report.positive_hit_rate is not None

    model = OpenCvBoostModel.load(str(path))
    data = np.asarray([[2.0, 5.0, 0.0], [-2.0, 5.0, 0.0]], dtype=np.float32)
    assert model.predict(data).tolist() == [1.0, 0.0]

    classifier = BoostCharClassifier(str(path))
    positive = classifier.predict_probability([2.0, 5.0, 0.0])
    negative = classifier.predict_probability([-2.0, 5.0, 0.0])
    assert 0.0 <= negative < positive <= 1.0
    assert classifier.classification_time >= 0.0


@pytest.mark.parametrize("boost_type", [BoostType.DISCRETE, BoostType.REAL, BoostType.LOGIT])
def test_opencv_backend_accepts_every_boost_type(boost_type):
    data, responses = build_training_matrix(_separable_samples(10))

    model = OpenCvBoostBackend().train(data, responses, BoostParams(boost_type=boost_type, weak_count=5))

    assert model.predict(data).shape == (20,)
    assert model.raw_votes(data).shape == (20,)


def test_missing_model_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        OpenCvBoostModel.load(str(tmp_path / "missing.boost"))
