# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

import pytest

from ftpipe import (
    FastPyramidDetector,
    FloodFillSegmenter,
    InstanceConfig,
    InstanceRegistry,
    InvalidConfig,
    KeypointDetectorConfig,
    OutOfRange,
    SegmenterConfig,
    mock_instance_factory,
)


def test_create_instance_appends_without_id():
    registry = InstanceRegistry(mock_instance_factory)

    assert registry.create_instance() == 0
    assert registry.create_instance() == 1
    assert len(registry) == 2
    assert registry.instance_ids() == [0, 1]


def test_create_instance_grows_to_explicit_id():
    registry = InstanceRegistry(mock_instance_factory)

    assert registry.create_instance(instance_id=3) == 3
    assert len(registry) == 4
    assert 3 in registry
    assert 1 not in registry
    with pytest.raises(OutOfRange):
        registry.get(1)


def test_create_instance_replaces_existing_slot():
    registry = InstanceRegistry(mock_instance_factory)
    registry.create_instance(instance_id=0)
    first = registry.get(0)

    config = InstanceConfig(keypoints=KeypointDetectorConfig(collect_pixels=False))
    registry.create_instance(config, instance_id=0)
    second = registry.get(0)

    assert len(registry) == 1
    assert second is not first
    assert second.config.keypoints.collect_pixels is False


def test_negative_id_appends():
    registry = InstanceRegistry(mock_instance_factory)
    registry.create_instance(instance_id=2)

    assert registry.create_instance(instance_id=-1) == 3


@pytest.mark.parametrize("instance_id", [-1, 0, 5])
def test_get_out_of_range(instance_id):
    registry = InstanceRegistry(mock_instance_factory)

    with pytest.raises(OutOfRange) as excinfo:
        registry.get(instance_id)
    assert isinstance(excinfo.value, IndexError)


def test_default_factory_builds_opencv_components():
    registry = InstanceRegistry()
    registry.create_instance()
    instance = registry.get(0)

    assert isinstance(instance.detector, FastPyramidDetector)
    assert isinstance(instance.segmenter, FloodFillSegmenter)
    assert instance.segmenter.char_classifier is None


def test_invalid_config_leaves_registry_unchanged():
    registry = InstanceRegistry()
    bad_keypoints = InstanceConfig(keypoints=KeypointDetectorConfig(edge_threshold=0))
    bad_segmenter = InstanceConfig(segmenter=SegmenterConfig(min_comp_size=0))

    with pytest.raises(InvalidConfig):
        registry.create_instance(bad_keypoints, instance_id=0)
    with pytest.raises(InvalidConfig):
        registry.create_instance(bad_segmenter)
    assert len(registry) == 0
