"""Row construction: features, MinMove, path labels and overlay features."""

from .rows import CausalRow, LabeledRow, FEATURE_NAMES, LABEL_DOWN, LABEL_FLAT, LABEL_UP
from .feature_engineer import FeatureEngineer
from .label_generator import LabelGenerator
from .min_move import MinMoveConfig, MinMoveEngine, MinMoveState
from .dataset_builder import build_labeled_rows

__all__ = [
    'CausalRow',
    'LabeledRow',
    'FEATURE_NAMES',
    'LABEL_DOWN',
    'LABEL_FLAT',
    'LABEL_UP',
    'FeatureEngineer',
    'LabelGenerator',
    'MinMoveConfig',
    'MinMoveEngine',
    'MinMoveState',
    'build_labeled_rows',
]
