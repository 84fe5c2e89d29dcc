# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

import numpy as np
import pytest

from ftpipe import (
    BoundingBox,
    BoostCharClassifier,
    BoostParams,
    ClassifierTrainer,
    FastPyramidDetector,
    FloodFillSegmenter,
    GreedyLineDetector,
    InstanceConfig,
    InvalidConfig,
    Keypoint,
    KeypointDetectorConfig,
    KeypointType,
    LetterCandidate,
    MaskFeatureExtractor,
    SegmenterConfig,
    TextLineType,
    TrainerConfig,
    TrainingSample,
)
from ftpipe.simple import FEATURE_NAMES, build_default_instance, resample_pyramid


def _candidate(x, y, width, height, keypoint_ids=(0,)):
    return LetterCandidate(
        bbox=BoundingBox(x=x, y=y, width=width, height=height),
        keypoint=Keypoint(x=float(x), y=float(y)),
        keypoint_ids=list(keypoint_ids),
    )


def test_uniform_image_has_no_keypoints(gray_image):
    detector = FastPyramidDetector()

    keypoints, pixel_index = detector.detect(gray_image)

    assert keypoints == []
    assert pixel_index == {}
    assert len(detector.image_pyramid) == 3
    assert detector.scales == pytest.approx([1.0, 1.6, 2.56])
    assert detector.image_pyramid[1].shape == (75, 100)


def test_text_image_keypoints_are_annotated(text_image):
    detector = FastPyramidDetector()

    keypoints, pixel_index = detector.detect(text_image)

    assert keypoints
    assert len(keypoints) <= detector.config.max_keypoints
    for idx, kp in enumerate(keypoints):
        assert kp.class_id == idx
        assert kp.type in (KeypointType.DARK.value, KeypointType.BRIGHT.value)
        assert 9 <= kp.count <= 16
        assert 0 <= kp.x < text_image.shape[1]
        assert 0 <= kp.y < text_image.shape[0]
    assert set(pixel_index) <= {kp.class_id for kp in keypoints}
    responses = [kp.response for kp in keypoints]
    assert responses == sorted(responses, reverse=True)


def test_keypoint_type_mask_filters_polarity(text_image):
    detector = FastPyramidDetector(KeypointDetectorConfig(keypoint_types=KeypointType.DARK.value))

    keypoints, _ = detector.detect(text_image)

    assert keypoints
    assert {kp.type for kp in keypoints} == {KeypointType.DARK.value}


def test_pixel_collection_can_be_disabled(text_image):
    detector = FastPyramidDetector(KeypointDetectorConfig(collect_pixels=False))

    keypoints, pixel_index = detector.detect(text_image)

    assert keypoints
    assert pixel_index == {}


@pytest.mark.parametrize(
    "config",
    [
        KeypointDetectorConfig(edge_threshold=0),
        KeypointDetectorConfig(scale_factor=1.0),
        KeypointDetectorConfig(k_min=12, k_max=10),
        KeypointDetectorConfig(keypoint_types=0),
        KeypointDetectorConfig(nlevels=0),
    ],
)
def test_detector_rejects_invalid_config(config):
    with pytest.raises(InvalidConfig):
        FastPyramidDetector(config)


@pytest.mark.parametrize(
    "config",
    [
        SegmenterConfig(min_comp_size=0),
        SegmenterConfig(min_comp_size=50, max_comp_size=10),
        SegmenterConfig(threshold_factor=0.0),
        SegmenterConfig(segm_delta_int=-1),
    ],
)
def test_segmenter_rejects_invalid_config(config):
    with pytest.raises(InvalidConfig):
        FloodFillSegmenter(config)


def test_flood_fill_segmenter_finds_letters(text_image):
    detector = FastPyramidDetector()
    segmenter = FloodFillSegmenter()
    keypoints, pixel_index = detector.detect(text_image)

    candidates = segmenter.get_letter_candidates(
        text_image, keypoints, pixel_index, 0, pyramid=detector.image_pyramid, scales=detector.scales
    )

    assert candidates
    for candidate in candidates:
        assert candidate.bbox.x >= 0 and candidate.bbox.y >= 0
        assert candidate.bbox.height >= 1
        assert np.count_nonzero(candidate.mask) >= segmenter.config.min_comp_size
        assert 0.0 <= candidate.quality <= 1.0
        assert candidate.feature_vector is None
        assert candidate.keypoint_ids
    assert segmenter.keypoint_strokes == {}


def test_flood_fill_segmenter_honours_min_height(text_image):
    detector = FastPyramidDetector()
    segmenter = FloodFillSegmenter()
    keypoints, pixel_index = detector.detect(text_image)

    too_tall = text_image.shape[0] + 1

    candidates = segmenter.get_letter_candidates(
        text_image, keypoints, pixel_index, too_tall, pyramid=detector.image_pyramid, scales=detector.scales
    )

    assert candidates == []


def test_gradient_strokes_are_collected(text_image):
    detector = FastPyramidDetector()
    segmenter = FloodFillSegmenter(SegmenterConfig(segment_grad=True))
    keypoints, pixel_index = detector.detect(text_image)

    segmenter.get_letter_candidates(
        text_image, keypoints, pixel_index, 0, pyramid=detector.image_pyramid, scales=detector.scales
    )

    assert set(segmenter.keypoint_strokes) == set(range(len(keypoints)))
    assert segmenter.strokes_time >= 0.0


def test_segmenter_without_pyramid_segments_the_given_image(text_image):
    detector = FastPyramidDetector()
    keypoints, pixel_index = detector.detect(text_image)
    blank = np.full_like(text_image, 255)

    on_text = FloodFillSegmenter().get_letter_candidates(
        text_image, keypoints, pixel_index, 0, scales=detector.scales
    )
    on_blank = FloodFillSegmenter().get_letter_candidates(
        blank, keypoints, pixel_index, 0, scales=detector.scales
    )

    assert on_text
    assert on_blank == []


def test_segmenter_rejects_pyramid_scale_mismatch(text_image):
    detector = FastPyramidDetector()
    keypoints, pixel_index = detector.detect(text_image)

    with pytest.raises(InvalidConfig):
        FloodFillSegmenter().get_letter_candidates(
            text_image, keypoints, pixel_index, 0, pyramid=detector.image_pyramid, scales=[1.0]
        )


def test_resample_pyramid_matches_detector_levels(gray_image):
    detector = FastPyramidDetector()
    detector.detect(gray_image)

    levels = resample_pyramid(gray_image, detector.scales)

    assert [level.shape for level in levels] == [level.shape for level in detector.image_pyramid]


def test_mask_features_for_solid_and_ring_masks():
    extractor = MaskFeatureExtractor()
    solid = np.full((10, 10), 255, dtype=np.uint8)
    ring = solid.copy()
    ring[3:7, 3:7] = 0

    solid_features = extractor.extract(solid, _candidate(0, 0, 10, 10, keypoint_ids=(0, 1)))
    ring_features = extractor.extract(ring, _candidate(0, 0, 10, 10))

    assert len(solid_features) == len(FEATURE_NAMES)
    assert solid_features[0] == pytest.approx(1.0)
    assert solid_features[1] == pytest.approx(1.0)
    assert solid_features[4] == 0.0
    assert solid_features[-1] == 2.0
    assert ring_features[4] == 1.0
    assert ring_features[1] == pytest.approx(0.84)


def test_mask_features_without_mask():
    features = MaskFeatureExtractor().extract(None, _candidate(0, 0, 5, 5, keypoint_ids=(1, 2, 3)))

    assert features == [0.0] * (len(FEATURE_NAMES) - 1) + [3.0]


def test_greedy_line_detector_chains_neighbours():
    candidates = [
        _candidate(30, 10, 10, 20),
        _candidate(0, 10, 10, 20),
        _candidate(300, 200, 10, 20),
        _candidate(15, 11, 10, 20),
    ]

    lines = GreedyLineDetector().find_text_lines(None, candidates, [1.0])

    assert len(lines) == 2
    first, second = lines
    assert first.is_segmentable
    assert first.candidate_ids == [1, 3, 0]
    assert first.type == TextLineType.HORIZONTAL.value
    assert first.bbox.as_tuple() == (0, 10, 40, 21)
    assert not second.is_segmentable
    assert [c.group_assigned for c in candidates] == [1, 1, 0, 1]


def test_greedy_line_detector_skips_duplicates():
    candidates = [_candidate(0, 10, 10, 20), _candidate(15, 10, 10, 20)]
    candidates[1].duplicate = 1

    lines = GreedyLineDetector().find_text_lines(None, candidates, [1.0])

    assert len(lines) == 1
    assert lines[0].candidate_ids == [0]
    assert not lines[0].is_segmentable


def test_default_instance_with_trained_classifier(text_image, tmp_path):
    rng = np.random.default_rng(0)
    samples = [
        TrainingSample(features=(rng.random(len(FEATURE_NAMES)) + offset).tolist(), label=label)
        for label, offset in [(1, 1.0), (0, 0.0)] * 15
    ]
    path = tmp_path / "char.boost"
    ClassifierTrainer(TrainerConfig(params=BoostParams(weak_count=5))).train(samples, path)

    config = InstanceConfig(segmenter=SegmenterConfig(classifier_path=str(path)))
    detector, segmenter = build_default_instance(config)
    keypoints, pixel_index = detector.detect(text_image)
    candidates = segmenter.get_letter_candidates(
        text_image, keypoints, pixel_index, 0, pyramid=detector.image_pyramid, scales=detector.scales
    )

    assert isinstance(segmenter.char_classifier, BoostCharClassifier)
    assert candidates
    for candidate in candidates:
        assert len(candidate.feature_vector) == len(FEATURE_NAMES)
        assert 0.0 <= candidate.quality <= 1.0
    assert segmenter.char_classifier.classification_time >= 0.0
