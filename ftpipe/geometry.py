# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Oriented-rectangle helpers for text lines."""
from __future__ import annotations

from typing import List, Sequence

import cv2
import numpy as np

from .models import BoundingBox, LetterCandidate, RotatedRect, TextLine

__all__ = [
    "bbox_union",
    "line_candidates",
    "min_area_rect",
    "normalize_line",
]


def bbox_union(boxes: Sequence[BoundingBox]) -> BoundingBox:
    if not boxes:
        return BoundingBox(x=0, y=0, width=0, height=0)
    x0 = min(box.x for box in boxes)
    y0 = min(box.y for box in boxes)
    x1 = max(box.x + box.width for box in boxes)
    y1 = max(box.y + box.height for box in boxes)
    return BoundingBox(x=x0, y=y0, width=x1 - x0, height=y1 - y0)


def min_area_rect(boxes: Sequence[BoundingBox]) -> RotatedRect:
    """Minimum-area rectangle around the corners of ``boxes``."""

    if not boxes:
        return RotatedRect(center=(0.0, 0.0), size=(0.0, 0.0), angle=0.0)
    corners: List[List[float]] = []
    for box in boxes:
        x1 = box.x + box.width
        y1 = box.y + box.height
        corners.extend([[box.x, box.y], [x1, box.y], [x1, y1], [box.x, y1]])
    (cx, cy), (w, h), angle = cv2.minAreaRect(np.asarray(corners, dtype=np.float32))
    return RotatedRect(center=(float(cx), float(cy)), size=(float(w), float(h)), angle=float(angle))


def line_candidates(line: TextLine, candidates: Sequence[LetterCandidate]) -> List[LetterCandidate]:
    return [candidates[idx] for idx in line.candidate_ids if 0 <= idx < len(candidates)]


def normalize_line(
    image: np.ndarray,
    line: TextLine,
    candidates: Sequence[LetterCandidate],
    scale: float = 1.0,
    margin: float = 0.1,
) -> np.ndarray:
    """Cut the line out of ``image`` and rotate it to the horizontal.

    The rectangle is recomputed from the member candidates when they are
    available, otherwise the line's own ``min_rect`` is used.
    """

    members = line_candidates(line, candidates)
    rect = min_area_rect([c.bbox for c in members]) if members else line.min_rect

    (cx, cy), (w, h), angle = rect.center, rect.size, rect.angle
    if w < h:
        w, h = h, w
        angle += 90.0
    if angle > 90.0:
        angle -= 180.0
    elif angle <= -90.0:
        angle += 180.0

    pad = margin * max(h, 1.0)
    out_w = max(1, int(round(w + 2 * pad)))
    out_h = max(1, int(round(h + 2 * pad)))

    rows, cols = image.shape[:2]
    rotation = cv2.getRotationMatrix2D((float(cx), float(cy)), float(angle), 1.0)
    rotated = cv2.warpAffine(
        image,
        rotation,
        (cols, rows),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_REPLICATE,
    )
    crop = cv2.getRectSubPix(rotated, (out_w, out_h), (float(cx), float(cy)))

    if scale != 1.0:
        target = (max(1, int(round(out_w * scale))), max(1, int(round(out_h * scale))))
        crop = cv2.resize(crop, target, interpolation=cv2.INTER_AREA)
    return np.ascontiguousarray(crop)
