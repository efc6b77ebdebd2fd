"""
Two-stage daily predictor.

Stage 1 (move): P(the day moves at least MinMove in either direction).
Stage 2 (direction): P(up | move), with separate models for the normal and
the regime-down state when each has enough rows, and a pooled model as
fallback. A micro model disambiguates flat days: P(up | flat), trained only on
flat days that carry a micro fact.

The class triple is composed as
    (down, flat, up) = (p_move * (1 - p_up), 1 - p_move, p_move * p_up)
and the predicted class is its argmax.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from solsignal.models import BaseModel, create_model
from solsignal.processor.rows import LABEL_DOWN, LABEL_FLAT, LABEL_UP, CausalRow, LabeledRow
from solsignal.utils.exceptions import LeakageBoundaryError
from solsignal.utils.time_contract import ensure_utc


MIN_DIRECTION_ROWS = 40
MIN_MICRO_ROWS = 30


@dataclass(frozen=True)
class MicroForecast:
    """Micro-direction verdict on a flat day."""
    p_up: float
    confidence: float
    direction: Optional[int]  # LABEL_UP, LABEL_DOWN or None below min confidence


@dataclass(frozen=True)
class DailyForecast:
    predicted_class: int
    probs: Tuple[float, float, float]  # (down, flat, up)
    micro: Optional[MicroForecast] = None


def check_rows_before(rows: Sequence[LabeledRow], as_of: datetime, name: str) -> None:
    """Every training row must have exited by `as_of`."""
    for lr in rows:
        exit_utc = lr.row.baseline_exit.utc
        if exit_utc > as_of:
            raise LeakageBoundaryError(
                f"{name}: training row {lr.entry} exits at {exit_utc.isoformat()} after as_of {as_of.isoformat()}"
            )


class FittedDailyModel:
    """Immutable result of DailyModelTrainer.train. Prediction is a pure function of the row."""

    def __init__(
        self,
        move_model: BaseModel,
        direction_models: Dict[str, BaseModel],
        micro_model: Optional[BaseModel],
        micro_min_confidence: float,
        as_of: datetime,
    ):
        self.move_model = move_model
        self.direction_models = direction_models
        self.micro_model = micro_model
        self.micro_min_confidence = micro_min_confidence
        self.as_of = as_of

    def _direction_model(self, regime_down: bool) -> Optional[BaseModel]:
        key = "down" if regime_down else "normal"
        return self.direction_models.get(key) or self.direction_models.get("pooled")

    def predict(self, row: CausalRow) -> DailyForecast:
        """
        Predict the class triple for one row.

        Args:
            row: Causal feature snapshot

        Returns:
            DailyForecast with base probabilities and, for flat days, the micro verdict
        """
        x = row.features.reshape(1, -1)
        p_move = float(self.move_model.positive_proba(x)[0])

        direction_model = self._direction_model(row.regime_down)
        p_up = 0.5 if direction_model is None else float(direction_model.positive_proba(x)[0])

        probs = (p_move * (1.0 - p_up), 1.0 - p_move, p_move * p_up)
        predicted = int(np.argmax(probs))

        micro = None
        if predicted == LABEL_FLAT and self.micro_model is not None:
            micro_up = float(self.micro_model.positive_proba(x)[0])
            confidence = max(micro_up, 1.0 - micro_up)
            direction = None
            if confidence >= self.micro_min_confidence:
                direction = LABEL_UP if micro_up > 0.5 else LABEL_DOWN
            micro = MicroForecast(p_up=micro_up, confidence=confidence, direction=direction)

        return DailyForecast(predicted_class=predicted, probs=probs, micro=micro)

    def predict_classes(self, rows: Sequence[LabeledRow]) -> np.ndarray:
        """Predicted classes for a batch of rows."""
        return np.array([self.predict(lr.row).predicted_class for lr in rows], dtype=np.int64)


class DailyModelTrainer:
    """Fits the move, direction and micro models on a causal Train partition."""

    def __init__(
        self,
        model_type: str = "lightgbm",
        random_state: int = 42,
        min_direction_rows: int = MIN_DIRECTION_ROWS,
        min_micro_rows: int = MIN_MICRO_ROWS,
        micro_min_confidence: float = 0.60,
    ):
        self.model_type = model_type
        self.random_state = random_state
        self.min_direction_rows = min_direction_rows
        self.min_micro_rows = min_micro_rows
        self.micro_min_confidence = micro_min_confidence

    def _fit(self, name: str, rows: Sequence[LabeledRow], labels: np.ndarray, as_of: datetime) -> BaseModel:
        model = create_model(self.model_type, name, n_classes=2, random_state=self.random_state)
        X = np.vstack([lr.row.features for lr in rows])
        model.train(X, labels, as_of=as_of)
        return model

    def train(self, rows: Sequence[LabeledRow], as_of) -> FittedDailyModel:
        """
        Train all daily models.

        Args:
            rows: Train partition (every row exited by as_of)
            as_of: Instant the fitted model is valid from

        Returns:
            FittedDailyModel

        Raises:
            ValueError: On an empty training set
            LeakageBoundaryError: If a row exits after as_of
        """
        as_of = ensure_utc(as_of)
        if not rows:
            raise ValueError("Cannot train daily model on empty rows")
        check_rows_before(rows, as_of, "daily model")

        labels = np.array([lr.label for lr in rows])
        move_model = self._fit("move", rows, (labels != LABEL_FLAT).astype(int), as_of)

        direction_models: Dict[str, BaseModel] = {}
        moved = [lr for lr in rows if lr.label != LABEL_FLAT]
        if moved:
            up = np.array([int(lr.label == LABEL_UP) for lr in moved])
            direction_models["pooled"] = self._fit("dir_pooled", moved, up, as_of)
            for regime, flag in (("normal", False), ("down", True)):
                subset = [lr for lr in moved if lr.row.regime_down == flag]
                if len(subset) < self.min_direction_rows:
                    logger.debug(f"Direction model {regime}: {len(subset)} rows, using pooled model")
                    continue
                y = np.array([int(lr.label == LABEL_UP) for lr in subset])
                direction_models[regime] = self._fit(f"dir_{regime}", subset, y, as_of)

        micro_model = None
        micro_rows = [lr for lr in rows if lr.micro_direction is not None]
        n_up = sum(1 for lr in micro_rows if lr.fact_micro_up)
        n_down = len(micro_rows) - n_up
        if len(micro_rows) >= self.min_micro_rows and n_up > 0 and n_down > 0:
            y = np.array([int(lr.fact_micro_up) for lr in micro_rows])
            micro_model = self._fit("micro", micro_rows, y, as_of)
        else:
            logger.debug(f"Micro model skipped: {len(micro_rows)} rows (up={n_up}, down={n_down})")

        logger.info(
            f"Daily model trained as of {as_of:%Y-%m-%d}: rows={len(rows)}, moved={len(moved)}, "
            f"direction={sorted(direction_models)}, micro={'yes' if micro_model else 'no'}"
        )
        return FittedDailyModel(move_model, direction_models, micro_model, self.micro_min_confidence, as_of)
