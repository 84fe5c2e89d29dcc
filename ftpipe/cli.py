# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 ftpipe contributors

"""Command-line entry for detection runs and classifier training.

``detect`` runs the three stages over every image and emits JSON with the
per-image counts and line rows followed by the stat counters. ``train``
labels the candidates of every image from annotation boxes, accumulates the
samples and trains both boosted classifiers.
"""
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
from PIL import Image

from .engine import TextDetectionEngine
from .errors import FtpipeError
from .logging_utils import configure_logging
from .mocks import MockBoostBackend, MockLineDetector, mock_instance_factory
from .models import BoundingBox, InstanceConfig
from .settings import Settings
from .trainer import ClassifierTrainer, TrainerConfig

INSTANCE_ID = 0


def _load_image(path: str) -> np.ndarray:
    with Image.open(Path(path).as_posix()) as img:
        return np.asarray(img.convert("RGB"))


def _load_config(path: Optional[str]) -> InstanceConfig:
    if not path:
        return InstanceConfig()
    return InstanceConfig.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))


def build_engine(settings: Settings, *, use_mocks: bool = False, export_dataset: bool = False) -> TextDetectionEngine:
    trainer_config = TrainerConfig.from_settings(settings, export_dataset=export_dataset)
    if use_mocks:
        return TextDetectionEngine(
            factory=mock_instance_factory,
            line_detector=MockLineDetector(),
            trainer=ClassifierTrainer(trainer_config, backend=MockBoostBackend()),
        )
    return TextDetectionEngine(trainer_config=trainer_config)


def _emit(payload: Any, out: str) -> None:
    text = json.dumps(payload, ensure_ascii=False, indent=2)
    if out == "-":
        print(text)
    else:
        path = Path(out)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


def _common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--images", nargs="+", required=True, help="Image files to process in order")
    parser.add_argument("--config", help="JSON file with an instance configuration")
    parser.add_argument("--min-height", type=int, default=0, help="Minimum candidate height in pixels")
    parser.add_argument(
        "--use-mocks",
        action="store_true",
        help="Use mock components (no image processing) for fast smoke tests",
    )


def _parse_detect_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ftpipe detect", description="Detect text lines in images")
    _common_args(parser)
    parser.add_argument("--out-dir", help="Directory for annotated candidate and line rasters")
    parser.add_argument("--out", default="-", help="Output file path or '-' for stdout")
    return parser.parse_args(list(argv) if argv is not None else None)


def _parse_train_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ftpipe train", description="Train the character classifiers")
    _common_args(parser)
    parser.add_argument("--annotations", required=True, help="JSON mapping image names to labeled boxes")
    parser.add_argument("--model-dir", help="Directory for the trained models (overrides FTPIPE_MODEL_DIR)")
    parser.add_argument("--iou", type=float, default=0.5, help="Minimum IoU for a candidate to take a box label")
    parser.add_argument("--export-dataset", action="store_true", help="Also write the samples as .npz")
    parser.add_argument("--out", default="-", help="Output file path or '-' for stdout")
    return parser.parse_args(list(argv) if argv is not None else None)


def _settings(log_to_stdout: bool) -> Settings:
    settings = Settings.from_env()
    # JSON on stdout must stay parseable
    configure_logging(settings.log_level if not log_to_stdout else "WARNING", settings.log_format)
    return settings


def _run_stages(
    engine: TextDetectionEngine,
    image: np.ndarray,
    min_height: int,
    out_dir: Optional[Path],
    name: str,
) -> Dict[str, Any]:
    keypoints = engine.detect_keypoints(INSTANCE_ID, image)
    candidates = engine.segment_characters(
        INSTANCE_ID, min_height=min_height, output_dir=out_dir, image_name=name
    )
    lines = engine.find_text_lines(INSTANCE_ID, output_dir=out_dir, image_name=name)
    return {
        "image": name,
        "keypoints": keypoints,
        "candidates": candidates,
        "lines": lines,
        "line_rows": engine.query_lines().tolist(),
    }


def detect_main(argv: Sequence[str] | None = None) -> None:
    args = _parse_detect_args(argv)
    settings = _settings(args.out == "-")
    out_dir = Path(args.out_dir) if args.out_dir else settings.output_dir

    engine = build_engine(settings, use_mocks=args.use_mocks)
    try:
        engine.create_instance(_load_config(args.config), INSTANCE_ID)
        results = [
            _run_stages(engine, _load_image(path), args.min_height, out_dir, Path(path).stem)
            for path in args.images
        ]
    except FtpipeError as exc:
        raise SystemExit(str(exc))

    _emit({"images": results, "stats": engine.read_and_reset_stats().model_dump()}, args.out)


def _annotation_boxes(annotations: Dict[str, Any], path: str) -> List[Dict[str, Any]]:
    p = Path(path)
    for key in (p.name, p.stem, path):
        if key in annotations:
            return list(annotations[key])
    return []


def label_candidates(
    boxes: Iterable[Dict[str, Any]],
    candidates: Iterable[BoundingBox],
    iou_threshold: float,
) -> List[int]:
    """Label of the best-overlapping annotation box per candidate, 0 below ``iou_threshold``."""

    parsed = [
        (BoundingBox(x=b["x"], y=b["y"], width=b["width"], height=b["height"]), int(b.get("label", 1)))
        for b in boxes
    ]
    labels: List[int] = []
    for bbox in candidates:
        best_iou, best_label = 0.0, 0
        for box, label in parsed:
            iou = bbox.iou(box)
            if iou > best_iou:
                best_iou, best_label = iou, label
        labels.append(best_label if best_iou >= iou_threshold else 0)
    return labels


def train_main(argv: Sequence[str] | None = None) -> None:
    args = _parse_train_args(argv)
    settings = _settings(args.out == "-")
    if args.model_dir:
        settings = settings.model_copy(update={"model_dir": Path(args.model_dir)})
    annotations = json.loads(Path(args.annotations).read_text(encoding="utf-8"))

    engine = build_engine(settings, use_mocks=args.use_mocks, export_dataset=args.export_dataset)
    try:
        engine.create_instance(_load_config(args.config), INSTANCE_ID)
        for path in args.images:
            engine.detect_keypoints(INSTANCE_ID, _load_image(path))
            engine.segment_characters(INSTANCE_ID, min_height=args.min_height)
            generation = engine.generations[1]
            candidates = engine.session.candidates
            labels = label_candidates(
                _annotation_boxes(annotations, path), [c.bbox for c in candidates], args.iou
            )
            for segment_id, (candidate, label) in enumerate(zip(candidates, labels)):
                if candidate.duplicate:
                    continue
                engine.record_sample(label, segment_id, generation=generation)
        primary, derived = engine.train()
    except FtpipeError as exc:
        raise SystemExit(str(exc))

    _emit(
        {
            "primary": primary.model_dump(exclude={"evaluation"}),
            "derived": derived.model_dump(exclude={"evaluation"}) if derived is not None else None,
        },
        args.out,
    )


__all__ = ["build_engine", "detect_main", "label_candidates", "train_main"]
