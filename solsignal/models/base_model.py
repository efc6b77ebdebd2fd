"""Abstract base class for all classifiers used by the backtest."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import numpy as np
from loguru import logger


class BaseModel(ABC):
    """
    Abstract base class for all classifiers.

    All models must implement:
    - _fit(): Fit on labels encoded as 0..k-1 over the classes present
    - _predict_raw(): Probabilities over the encoded classes

    The base class handles:
    - Mapping present classes back onto the full 0..n_classes-1 range
    - Single-class training sets (constant prediction, no fit)
    - Training metadata (as-of instant, sample count, train accuracy)
    """

    def __init__(self, name: str, n_classes: int = 2, model_type: str = "base", random_state: int = 42):
        """
        Initialize base model.

        Args:
            name: Model name used in logs (e.g., "move", "sl")
            n_classes: Number of label classes (2 for binary)
            model_type: Type of model (lightgbm, xgboost)
            random_state: Seed for the underlying estimator
        """
        self.name = name
        self.n_classes = n_classes
        self.model_type = model_type
        self.random_state = random_state
        self.is_trained = False

        self._classes: Optional[np.ndarray] = None
        self._constant: Optional[np.ndarray] = None

        # Model metadata
        self.trained_as_of: Optional[datetime] = None
        self.training_samples: int = 0
        self.train_accuracy: float = 0.0

    @abstractmethod
    def _fit(self, X: np.ndarray, y_encoded: np.ndarray, n_present: int) -> None:
        """
        Fit the underlying estimator.

        Args:
            X: Training features (n_samples, n_features)
            y_encoded: Labels re-encoded as 0..n_present-1
            n_present: Number of distinct classes in the training set
        """
        pass

    @abstractmethod
    def _predict_raw(self, X: np.ndarray) -> np.ndarray:
        """Probabilities over the encoded classes, shape (n_samples, n_present)."""
        pass

    def train(self, X, y, as_of: Optional[datetime] = None) -> None:
        """
        Train the model on provided data.

        Args:
            X: Training features (n_samples, n_features)
            y: Integer labels in 0..n_classes-1
            as_of: Instant the training set is valid for
        """
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.int64)
        if len(X) == 0 or len(X) != len(y):
            raise ValueError(f"{self.name}: invalid training set (X={X.shape}, y={y.shape})")
        if y.min() < 0 or y.max() >= self.n_classes:
            raise ValueError(f"{self.name}: labels outside 0..{self.n_classes - 1}")

        self._classes = np.unique(y)
        self._constant = None

        if len(self._classes) == 1:
            self._constant = np.zeros(self.n_classes)
            self._constant[self._classes[0]] = 1.0
            logger.warning(f"{self.name}: single-class training set ({len(y)} rows), using constant prediction")
        else:
            y_encoded = np.searchsorted(self._classes, y)
            self._fit(X, y_encoded, len(self._classes))

        self.is_trained = True
        self.trained_as_of = as_of
        self.training_samples = len(y)
        self.train_accuracy = float(np.mean(self.predict(X) == y))
        logger.debug(
            f"{self.model_type} {self.name} trained on {len(y)} rows "
            f"(classes={self._classes.tolist()}, train_acc={self.train_accuracy:.2%})"
        )

    def predict_proba(self, X) -> np.ndarray:
        """
        Predict class probabilities.

        Args:
            X: Features (n_samples, n_features) or a single vector

        Returns:
            Array of shape (n_samples, n_classes); absent classes get 0
        """
        if not self.is_trained:
            raise ValueError(f"Model {self.name} not trained")

        X = np.atleast_2d(np.asarray(X, dtype=np.float64))
        if self._constant is not None:
            return np.tile(self._constant, (len(X), 1))

        raw = self._predict_raw(X)
        proba = np.zeros((len(X), self.n_classes))
        proba[:, self._classes] = raw
        return proba

    def predict(self, X) -> np.ndarray:
        """Most probable class per row."""
        return np.argmax(self.predict_proba(X), axis=1)

    def positive_proba(self, X) -> np.ndarray:
        """Probability of class 1 for binary models."""
        return self.predict_proba(X)[:, 1]
