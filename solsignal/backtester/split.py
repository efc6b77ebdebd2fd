"""
Train / out-of-sample partition by baseline-exit day.

A row is usable for training once its position has closed, so membership is
decided by ExitDayKey(row) <= cutoff, never by the entry day.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from loguru import logger

from solsignal.processor.rows import LabeledRow
from solsignal.utils.exceptions import DataQualityError, LeakageBoundaryError, TemporalContractError
from solsignal.utils.time_contract import ExitDayKey, try_compute_baseline_exit


@dataclass(frozen=True)
class TrainBoundary:
    """Exit-day cutoff. Rows exiting on or before `cutoff` are Train."""
    cutoff: ExitDayKey

    def __post_init__(self):
        if not isinstance(self.cutoff, ExitDayKey):
            raise TemporalContractError(
                f"TrainBoundary needs an ExitDayKey, got {type(self.cutoff).__name__}"
            )

    def admits(self, key: ExitDayKey) -> bool:
        return key <= self.cutoff

    def __str__(self) -> str:
        return f"TrainBoundary(<= {self.cutoff.day.isoformat()})"


@dataclass(frozen=True)
class SplitResult:
    train: Tuple[LabeledRow, ...]
    oos: Tuple[LabeledRow, ...]
    excluded: Tuple[LabeledRow, ...]
    boundary: TrainBoundary

    def __len__(self) -> int:
        return len(self.train) + len(self.oos) + len(self.excluded)


@dataclass(frozen=True)
class TrainOnly:
    """Train partition detached from its split, tagged for logging."""
    rows: Tuple[LabeledRow, ...]
    boundary: TrainBoundary
    tag: str

    @classmethod
    def from_split(cls, split: SplitResult, tag: str) -> "TrainOnly":
        return cls(rows=split.train, boundary=split.boundary, tag=tag)

    def __len__(self) -> int:
        return len(self.rows)


def _check_ascending(rows: Sequence[LabeledRow]) -> None:
    for prev, cur in zip(rows, rows[1:]):
        if not prev.entry < cur.entry:
            raise DataQualityError(
                f"Rows must be strictly ascending by entry: {prev.entry} followed by {cur.entry}"
            )


def split_by_train_boundary(rows: Sequence[LabeledRow], boundary: TrainBoundary) -> SplitResult:
    """
    Partition rows into Train, OOS and Excluded.

    Args:
        rows: Rows strictly ascending by entry instant
        boundary: Exit-day cutoff

    Returns:
        SplitResult whose parts sum to len(rows)

    Raises:
        DataQualityError: If rows are not strictly ascending
        LeakageBoundaryError: If a Train row exits after the cutoff
    """
    rows = list(rows)
    _check_ascending(rows)

    train: List[LabeledRow] = []
    oos: List[LabeledRow] = []
    excluded: List[LabeledRow] = []

    for lr in rows:
        baseline_exit = try_compute_baseline_exit(lr.entry.utc)
        if baseline_exit is None:
            excluded.append(lr)
            continue
        key = ExitDayKey.from_baseline_exit(baseline_exit)
        if boundary.admits(key):
            train.append(lr)
        else:
            oos.append(lr)

    for lr in train:
        key = lr.row.exit_day_key
        if key > boundary.cutoff:
            raise LeakageBoundaryError(
                f"Train row {lr.entry} exits on {key.day.isoformat()} after cutoff {boundary.cutoff.day.isoformat()}"
            )

    if excluded:
        logger.warning(f"{len(excluded)} rows excluded from split: baseline exit undefined")
    logger.debug(f"Split at {boundary}: train={len(train)}, oos={len(oos)}, excluded={len(excluded)}")
    return SplitResult(tuple(train), tuple(oos), tuple(excluded), boundary)
