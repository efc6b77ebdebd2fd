"""
Retrain gates for the overlay classifiers.

An overlay is not fitted until it has seen `min_train_samples` samples.
After the first fit it is refitted only once `retrain_every` new samples
have accumulated since the previous fit; between refits the last fitted
model keeps serving predictions.
"""

from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from solsignal.models.overlay_model import OverlayModel
from solsignal.trainer.overlay_datasets import OverlaySample


class OverlayState:
    """
    Owns one overlay classifier and its samples-since-last-fit counter.

    Args:
        name: Overlay name ("sl", "pullback", "small")
        min_train_samples: Samples needed before the first fit
        retrain_every: New samples needed between refits
        model_type: Classifier backend
        random_state: Seed
    """

    def __init__(
        self,
        name: str,
        min_train_samples: int = 80,
        retrain_every: int = 30,
        model_type: str = "lightgbm",
        random_state: int = 42,
    ):
        if min_train_samples < 1 or retrain_every < 1:
            raise ValueError(
                f"Overlay {name}: min_train_samples and retrain_every must be positive, "
                f"got {min_train_samples}, {retrain_every}"
            )
        self.name = name
        self.min_train_samples = min_train_samples
        self.retrain_every = retrain_every
        self.model_type = model_type
        self.random_state = random_state

        self.model: Optional[OverlayModel] = None
        self.samples_at_last_train = 0

        # Track fit events
        self.training_log: List[Dict[str, Any]] = []

    def should_retrain(self, n_samples: int) -> bool:
        """Whether a fit is due for a history of `n_samples` samples."""
        if n_samples < self.min_train_samples:
            return False
        if self.model is None:
            return True
        return n_samples - self.samples_at_last_train >= self.retrain_every

    def try_retrain(self, samples: Sequence[OverlaySample], as_of) -> bool:
        """
        Fit the overlay when the gate opens.

        Args:
            samples: Full causal history of overlay samples
            as_of: Instant the fit is valid from

        Returns:
            True if the model was (re)fitted
        """
        n = len(samples)
        if not self.should_retrain(n):
            if self.model is None:
                logger.debug(f"Overlay {self.name}: {n} < {self.min_train_samples} samples, not fitted")
            else:
                logger.debug(
                    f"Overlay {self.name}: {n - self.samples_at_last_train} new samples "
                    f"< {self.retrain_every}, keeping fit from {self.model.trained_as_of:%Y-%m-%d}"
                )
            return False

        model = OverlayModel(self.name, self.model_type, self.random_state)
        model.train(samples, as_of)

        self.model = model
        self.samples_at_last_train = n
        self.training_log.append(
            {
                "as_of": model.trained_as_of,
                "samples": n,
                "positive_rate": model.positive_rate,
            }
        )
        logger.info(f"Overlay {self.name} retrained on {n} samples (fit #{len(self.training_log)})")
        return True
