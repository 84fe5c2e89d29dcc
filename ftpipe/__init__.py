"""Scene-text detection pipeline: keypoints, character candidates, text lines."""

from .engine import TextDetectionEngine, find_keypoints
from .errors import (
    EmptyTrainingSet,
    FtpipeError,
    InconsistentFeatureLength,
    InvalidConfig,
    OutOfRange,
    StageNotReady,
    StaleGeneration,
)
from .features import FeatureAccumulator
from .interfaces import (
    BoostBackend,
    BoostModel,
    CharacterSegmenter,
    CharClassifier,
    FeatureExtractor,
    KeypointDetector,
    LineDetector,
)
from .mocks import (
    MockBoostBackend,
    MockCharClassifier,
    MockFeatureExtractor,
    MockKeypointDetector,
    MockLineDetector,
    MockSegmenter,
    mock_instance_factory,
)
from .models import (
    BoostParams,
    BoostType,
    BoundingBox,
    DetectionStat,
    DirectionStrokes,
    InstanceConfig,
    Keypoint,
    KeypointDetectorConfig,
    KeypointType,
    LetterCandidate,
    PixelStrokes,
    RotatedRect,
    SegmenterConfig,
    StrokeDir,
    TextLine,
    TextLineType,
    TrainingReport,
    TrainingSample,
)
from .registry import DetectorInstance, InstanceRegistry
from .session import DetectionSession, SessionState
from .settings import Settings
from .simple import (
    BoostCharClassifier,
    FastPyramidDetector,
    FloodFillSegmenter,
    GreedyLineDetector,
    MaskFeatureExtractor,
)
from .stats import StatAccumulator
from .trainer import ClassifierTrainer, OpenCvBoostBackend, OpenCvBoostModel, TrainerConfig

__version__ = "0.1.0"

__all__ = [
    "BoostBackend",
    "BoostCharClassifier",
    "BoostModel",
    "BoostParams",
    "BoostType",
    "BoundingBox",
    "CharClassifier",
    "CharacterSegmenter",
    "ClassifierTrainer",
    "DetectionSession",
    "DetectionStat",
    "DetectorInstance",
    "DirectionStrokes",
    "EmptyTrainingSet",
    "FastPyramidDetector",
    "FeatureAccumulator",
    "FeatureExtractor",
    "FloodFillSegmenter",
    "FtpipeError",
    "GreedyLineDetector",
    "InconsistentFeatureLength",
    "InstanceConfig",
    "InstanceRegistry",
    "InvalidConfig",
    "Keypoint",
    "KeypointDetector",
    "KeypointDetectorConfig",
    "KeypointType",
    "LetterCandidate",
    "LineDetector",
    "MaskFeatureExtractor",
    "MockBoostBackend",
    "MockCharClassifier",
    "MockFeatureExtractor",
    "MockKeypointDetector",
    "MockLineDetector",
    "MockSegmenter",
    "OpenCvBoostBackend",
    "OpenCvBoostModel",
    "OutOfRange",
    "PixelStrokes",
    "RotatedRect",
    "SegmenterConfig",
    "SessionState",
    "Settings",
    "StaleGeneration",
    "StageNotReady",
    "StatAccumulator",
    "StrokeDir",
    "TextDetectionEngine",
    "TextLine",
    "TextLineType",
    "TrainerConfig",
    "TrainingReport",
    "TrainingSample",
    "find_keypoints",
    "mock_instance_factory",
]
