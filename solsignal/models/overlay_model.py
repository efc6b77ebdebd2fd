"""Binary overlay classifier (SL risk, pullback A, small B)."""

from datetime import datetime
from typing import Optional, Sequence

import numpy as np
from loguru import logger

from solsignal.models import BaseModel, create_model
from solsignal.trainer.overlay_datasets import OverlaySample
from solsignal.utils.exceptions import LeakageBoundaryError
from solsignal.utils.time_contract import compute_baseline_exit, ensure_utc


class OverlayModel:
    """
    Wraps one binary classifier trained on OverlaySamples.

    A sample is usable at `as_of` only once its day has exited, since its
    label is read from the intraday path up to the baseline exit.
    """

    def __init__(self, name: str, model_type: str = "lightgbm", random_state: int = 42):
        self.name = name
        self.model_type = model_type
        self.random_state = random_state
        self._model: Optional[BaseModel] = None
        self.trained_as_of: Optional[datetime] = None
        self.training_samples = 0
        self.positive_rate = 0.0

    @property
    def is_trained(self) -> bool:
        return self._model is not None

    def train(self, samples: Sequence[OverlaySample], as_of) -> "OverlayModel":
        """
        Fit on samples whose days exited by `as_of`.

        Raises:
            ValueError: On empty samples
            LeakageBoundaryError: If a sample's day exits after as_of
        """
        as_of = ensure_utc(as_of)
        if not samples:
            raise ValueError(f"Overlay {self.name}: no samples to train on")
        for s in samples:
            exit_utc = compute_baseline_exit(s.entry).utc
            if exit_utc > as_of:
                raise LeakageBoundaryError(
                    f"Overlay {self.name}: sample {s.entry} exits at {exit_utc.isoformat()} "
                    f"after as_of {as_of.isoformat()}"
                )

        X = np.vstack([s.features for s in samples])
        y = np.array([s.label for s in samples], dtype=np.int64)

        model = create_model(self.model_type, self.name, n_classes=2, random_state=self.random_state)
        model.train(X, y, as_of=as_of)

        self._model = model
        self.trained_as_of = as_of
        self.training_samples = len(y)
        self.positive_rate = float(y.mean())
        logger.debug(
            f"Overlay {self.name} fitted as of {as_of:%Y-%m-%d}: "
            f"{len(y)} samples, positive rate {self.positive_rate:.1%}"
        )
        return self

    def predict_proba(self, features) -> float:
        """P(label = 1) for one feature vector."""
        if self._model is None:
            raise ValueError(f"Overlay {self.name} not trained")
        return float(self._model.positive_proba(np.asarray(features).reshape(1, -1))[0])
