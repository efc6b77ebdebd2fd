"""LightGBM classifier wrapper."""

from typing import Optional

import lightgbm as lgb
import numpy as np

from solsignal.models.base_model import BaseModel


class LightGBMModel(BaseModel):
    """LightGBM-based classifier (binary or multiclass)."""

    def __init__(
        self,
        name: str,
        n_classes: int = 2,
        n_estimators: int = 100,
        max_depth: int = 4,
        num_leaves: int = 15,
        learning_rate: float = 0.05,
        min_child_samples: int = 10,
        random_state: int = 42,
    ):
        """
        Initialize LightGBM model.

        Args:
            name: Model name
            n_classes: Number of label classes
            n_estimators: Number of boosting rounds
            max_depth: Maximum tree depth
            num_leaves: Maximum leaves per tree
            learning_rate: Learning rate
            min_child_samples: Minimum rows per leaf (small daily datasets)
            random_state: Seed
        """
        super().__init__(name=name, n_classes=n_classes, model_type="lightgbm", random_state=random_state)

        self.n_estimators = n_estimators
        self.max_depth = max_depth
        self.num_leaves = num_leaves
        self.learning_rate = learning_rate
        self.min_child_samples = min_child_samples
        self._model: Optional[lgb.LGBMClassifier] = None

    def _fit(self, X: np.ndarray, y_encoded: np.ndarray, n_present: int) -> None:
        self._model = lgb.LGBMClassifier(
            n_estimators=self.n_estimators,
            max_depth=self.max_depth,
            num_leaves=self.num_leaves,
            learning_rate=self.learning_rate,
            min_child_samples=self.min_child_samples,
            class_weight="balanced",
            random_state=self.random_state,
            deterministic=True,
            force_row_wise=True,
            n_jobs=1,
            verbose=-1,
        )
        self._model.fit(X, y_encoded)

    def _predict_raw(self, X: np.ndarray) -> np.ndarray:
        return self._model.predict_proba(X)
