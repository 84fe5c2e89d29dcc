# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Annotated rasters for debugging detection runs.

Rendering is a pure side effect: nothing here feeds back into session state.
"""
from __future__ import annotations

from pathlib import Path
from typing import Sequence

import numpy as np
from PIL import Image, ImageDraw

from .models import Keypoint, LetterCandidate, TextLine

__all__ = ["render_candidates", "render_lines", "to_rgb_image"]

_CANDIDATE_COLOR = (0, 0, 255)
_KEYPOINT_COLOR = (255, 0, 0)
_LINE_COLOR = (0, 0, 255)


def to_rgb_image(image: np.ndarray) -> Image.Image:
    arr = np.asarray(image)
    if arr.ndim == 2:
        return Image.fromarray(arr.astype(np.uint8)).convert("RGB")
    return Image.fromarray(np.ascontiguousarray(arr[:, :, :3]).astype(np.uint8))


def render_candidates(
    image: np.ndarray,
    candidates: Sequence[LetterCandidate],
    keypoints: Sequence[Keypoint],
    path: Path,
) -> Path:
    """Draw keypoints and the group-assigned candidates, write ``path``."""

    canvas = to_rgb_image(image)
    draw = ImageDraw.Draw(canvas)
    for kp in keypoints:
        draw.point((kp.x, kp.y), fill=_KEYPOINT_COLOR)
    for candidate in candidates:
        if not candidate.group_assigned:
            continue
        box = candidate.bbox
        draw.rectangle(
            [box.x, box.y, box.x + box.width - 1, box.y + box.height - 1],
            outline=_CANDIDATE_COLOR,
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    canvas.save(path)
    return path


def render_lines(image: np.ndarray, lines: Sequence[TextLine], path: Path) -> Path:
    canvas = to_rgb_image(image)
    draw = ImageDraw.Draw(canvas)
    for line in lines:
        points = line.min_rect.points()
        draw.line(points + [points[0]], fill=_LINE_COLOR, width=2)
    path.parent.mkdir(parents=True, exist_ok=True)
    canvas.save(path)
    return path
