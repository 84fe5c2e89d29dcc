# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

import numpy as np
import pytest

from ftpipe import BoundingBox, RotatedRect, TextLine
from ftpipe.geometry import bbox_union, min_area_rect, normalize_line


def test_bbox_union_and_iou():
    a = BoundingBox(x=0, y=0, width=10, height=10)
    b = BoundingBox(x=5, y=5, width=10, height=10)

    union = bbox_union([a, b])

    assert union.as_tuple() == (0, 0, 15, 15)
    assert a.iou(b) == pytest.approx(25 / 175)
    assert a.iou(BoundingBox(x=20, y=20, width=5, height=5)) == 0.0
    assert bbox_union([]).area == 0


def test_min_area_rect_covers_boxes():
    boxes = [BoundingBox(x=0, y=0, width=10, height=10), BoundingBox(x=20, y=0, width=10, height=10)]

    rect = min_area_rect(boxes)

    assert rect.center == pytest.approx((15.0, 5.0))
    assert sorted(rect.size) == pytest.approx([10.0, 30.0])
    xs = [p[0] for p in rect.points()]
    ys = [p[1] for p in rect.points()]
    assert min(xs) == pytest.approx(0.0, abs=1e-3)
    assert max(xs) == pytest.approx(30.0, abs=1e-3)
    assert max(ys) - min(ys) == pytest.approx(10.0, abs=1e-3)


def test_rotated_rect_points_axis_aligned():
    rect = RotatedRect(center=(10.0, 5.0), size=(20.0, 10.0), angle=0.0)

    points = rect.points()

    assert sorted((round(x, 6), round(y, 6)) for x, y in points) == [(0.0, 0.0), (0.0, 10.0), (20.0, 0.0), (20.0, 10.0)]


def test_normalize_line_is_horizontal_crop():
    image = np.zeros((60, 100), dtype=np.uint8)
    image[20:30, 10:70] = 255
    line = TextLine(
        bbox=BoundingBox(x=10, y=20, width=60, height=10),
        min_rect=min_area_rect([BoundingBox(x=10, y=20, width=60, height=10)]),
    )

    crop = normalize_line(image, line, [])

    assert crop.shape == (12, 62)
    assert crop[6, 31] == 255


def test_normalize_line_rectifies_vertical_rect():
    image = np.zeros((100, 60), dtype=np.uint8)
    line = TextLine(
        bbox=BoundingBox(x=20, y=10, width=10, height=60),
        min_rect=RotatedRect(center=(25.0, 40.0), size=(10.0, 60.0), angle=0.0),
    )

    crop = normalize_line(image, line, [], scale=0.5)

    assert crop.shape[1] > crop.shape[0]
