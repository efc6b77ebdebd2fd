"""XGBoost classifier wrapper."""

from typing import Optional

import numpy as np
import xgboost as xgb

from solsignal.models.base_model import BaseModel


class XGBoostModel(BaseModel):
    """XGBoost-based classifier (binary or multiclass)."""

    def __init__(
        self,
        name: str,
        n_classes: int = 2,
        n_estimators: int = 100,
        max_depth: int = 4,
        learning_rate: float = 0.05,
        random_state: int = 42,
    ):
        """
        Initialize XGBoost model.

        Args:
            name: Model name
            n_classes: Number of label classes
            n_estimators: Number of boosting rounds
            max_depth: Maximum tree depth
            learning_rate: Learning rate
            random_state: Seed
        """
        super().__init__(name=name, n_classes=n_classes, model_type="xgboost", random_state=random_state)

        self.n_estimators = n_estimators
        self.max_depth = max_depth
        self.learning_rate = learning_rate
        self._model: Optional[xgb.XGBClassifier] = None

    def _fit(self, X: np.ndarray, y_encoded: np.ndarray, n_present: int) -> None:
        # Inverse-frequency weights, the same balancing as LightGBM's "balanced"
        counts = np.bincount(y_encoded, minlength=n_present)
        weights = len(y_encoded) / (n_present * counts[y_encoded])

        self._model = xgb.XGBClassifier(
            n_estimators=self.n_estimators,
            max_depth=self.max_depth,
            learning_rate=self.learning_rate,
            tree_method="hist",
            random_state=self.random_state,
            n_jobs=1,
            verbosity=0,
        )
        self._model.fit(X, y_encoded, sample_weight=weights)

    def _predict_raw(self, X: np.ndarray) -> np.ndarray:
        return self._model.predict_proba(X)
