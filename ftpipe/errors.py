# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Exception taxonomy shared by the detection pipeline and the trainer."""
from __future__ import annotations

from typing import Optional


class FtpipeError(RuntimeError):
    """Base class for every failure raised by :mod:`ftpipe`."""


class InvalidConfig(FtpipeError, ValueError):
    """Raised by a collaborator when a size bound or threshold is not usable."""

    def __init__(self, field: str, value: object, requirement: str = "must be positive") -> None:
        self.field = field
        self.value = value
        super().__init__(f"Invalid configuration: {field}={value!r} {requirement}")


class OutOfRange(FtpipeError, IndexError):
    """Raised when an instance, keypoint, segment or line id is outside current bounds."""

    def __init__(self, kind: str, index: int, size: int, detail: Optional[str] = None) -> None:
        self.kind = kind
        self.index = index
        self.size = size
        message = f"{kind} id {index} out of range (size {size})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class StaleGeneration(OutOfRange):
    """Raised when an index refers to a collection that has since been replaced."""

    def __init__(self, kind: str, index: int, size: int, requested: int, current: int) -> None:
        self.requested = requested
        self.current = current
        super().__init__(
            kind,
            index,
            size,
            detail=f"generation {requested} is stale (current generation {current})",
        )


class StageNotReady(FtpipeError):
    """Raised when a later pipeline stage is used before an earlier one produced state."""

    def __init__(self, stage: str, requires: str) -> None:
        self.stage = stage
        self.requires = requires
        super().__init__(f"{stage} requires {requires} to run first on the current image")


class EmptyTrainingSet(FtpipeError, ValueError):
    """Raised when training is triggered on a buffer without samples."""

    def __init__(self, name: str = "training set") -> None:
        super().__init__(f"Cannot train on an empty {name}")


class InconsistentFeatureLength(FtpipeError, ValueError):
    """Raised when the samples of a buffer do not share a feature-vector length."""

    def __init__(self, expected: int, found: int, row: int) -> None:
        self.expected = expected
        self.found = found
        self.row = row
        super().__init__(
            f"Sample {row} has {found} features but the first sample has {expected}"
        )


__all__ = [
    "EmptyTrainingSet",
    "FtpipeError",
    "InconsistentFeatureLength",
    "InvalidConfig",
    "OutOfRange",
    "StageNotReady",
    "StaleGeneration",
]
