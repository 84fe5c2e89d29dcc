# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Sparse, id-addressed registry of configured detector instances."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .errors import OutOfRange
from .interfaces import CharacterSegmenter, KeypointDetector
from .logging_utils import get_logger, log_event
from .models import InstanceConfig

logger = get_logger(__name__)

InstanceFactory = Callable[[InstanceConfig], Tuple[KeypointDetector, CharacterSegmenter]]


@dataclass
class DetectorInstance:
    """A keypoint detector and the segmenter built on top of it.

    The instance owns both collaborators; replacing the registry slot drops
    them without any teardown.
    """

    instance_id: int
    config: InstanceConfig
    detector: KeypointDetector
    segmenter: CharacterSegmenter


def _default_factory(config: InstanceConfig) -> Tuple[KeypointDetector, CharacterSegmenter]:
    from .simple import build_default_instance

    return build_default_instance(config)


class InstanceRegistry:
    def __init__(self, factory: Optional[InstanceFactory] = None) -> None:
        self.factory: InstanceFactory = factory or _default_factory
        self._slots: List[Optional[DetectorInstance]] = []

    def __len__(self) -> int:
        return len(self._slots)

    def create_instance(self, config: Optional[InstanceConfig] = None, instance_id: Optional[int] = None) -> int:
        """Build an instance and store it, returning the resolved id.

        With a non-negative ``instance_id`` the registry grows to hold it and
        any previous instance in that slot is replaced. Otherwise the instance
        is appended.
        """

        config = config or InstanceConfig()
        detector, segmenter = self.factory(config)

        if instance_id is not None and instance_id >= 0:
            if len(self._slots) < instance_id + 1:
                self._slots.extend([None] * (instance_id + 1 - len(self._slots)))
            replaced = self._slots[instance_id] is not None
            resolved = instance_id
            self._slots[resolved] = DetectorInstance(resolved, config, detector, segmenter)
        else:
            replaced = False
            resolved = len(self._slots)
            self._slots.append(DetectorInstance(resolved, config, detector, segmenter))

        log_event(
            logger,
            "instance.created",
            {
                "instance": resolved,
                "replaced": replaced,
                "edge_threshold": config.keypoints.edge_threshold,
                "keypoint_types": config.keypoints.keypoint_types,
                "segm_delta_int": config.segmenter.segm_delta_int,
            },
        )
        return resolved

    def get(self, instance_id: int) -> DetectorInstance:
        if instance_id < 0 or instance_id >= len(self._slots):
            raise OutOfRange("instance", instance_id, len(self._slots))
        instance = self._slots[instance_id]
        if instance is None:
            raise OutOfRange("instance", instance_id, len(self._slots), detail="slot is empty")
        return instance

    def __contains__(self, instance_id: object) -> bool:
        return (
            isinstance(instance_id, int)
            and 0 <= instance_id < len(self._slots)
            and self._slots[instance_id] is not None
        )

    def instance_ids(self) -> List[int]:
        return [idx for idx, slot in enumerate(self._slots) if slot is not None]


__all__ = ["DetectorInstance", "InstanceFactory", "InstanceRegistry"]
