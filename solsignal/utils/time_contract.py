"""
Temporal contract for the daily backtest.

Every decision happens at the New York trading morning (07:00 local in
standard time, 08:00 during daylight saving). A position opened at an entry
instant is closed by default at the next trading morning minus a small safety
offset. Weekends never produce entries.

Day identities come in two flavors, EntryDayKey and ExitDayKey. They cannot be
compared with each other: the train boundary is always expressed as an
ExitDayKey and rows are assigned by the day their baseline exit falls on.
"""

from datetime import date, datetime, time, timedelta
from functools import total_ordering
from typing import Optional

import pandas as pd
import pytz

from solsignal.utils.exceptions import TemporalContractError


NY_TZ = pytz.timezone("America/New_York")
UTC = pytz.UTC

MORNING_HOUR_STANDARD = 7
MORNING_HOUR_DST = 8
EXIT_SAFETY_OFFSET = timedelta(minutes=2)


def ensure_utc(instant) -> datetime:
    """
    Validate that an instant carries UTC semantics.

    Args:
        instant: Timezone-aware datetime or pandas Timestamp

    Returns:
        Python datetime with pytz.UTC tzinfo

    Raises:
        TemporalContractError: If the value is missing, naive or not UTC
    """
    if instant is None:
        raise TemporalContractError("Instant is None")
    if isinstance(instant, pd.Timestamp):
        if instant is pd.NaT:
            raise TemporalContractError("Instant is NaT")
        instant = instant.to_pydatetime()
    if not isinstance(instant, datetime):
        raise TemporalContractError(f"Expected datetime, got {type(instant).__name__}: {instant!r}")
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise TemporalContractError(f"Naive datetime is not allowed: {instant.isoformat()}")
    if instant.utcoffset() != timedelta(0):
        raise TemporalContractError(f"Instant must be UTC, got offset {instant.utcoffset()}: {instant.isoformat()}")
    return instant.astimezone(UTC)


def to_local(instant) -> datetime:
    """Convert a UTC instant to New York local time."""
    return ensure_utc(instant).astimezone(NY_TZ)


def is_trading_day(instant) -> bool:
    """
    Check whether a UTC instant falls on a weekday in New York.

    Note: Exchange holidays are not modelled, crypto trades every weekday.
    """
    return to_local(instant).weekday() < 5


def morning_hour(local_day: date) -> int:
    """
    Local decision hour for a New York calendar date.

    DST status is taken at local noon so the transition night itself never
    decides the answer.
    """
    noon = NY_TZ.localize(datetime.combine(local_day, time(12, 0)), is_dst=None)
    return MORNING_HOUR_DST if noon.dst() != timedelta(0) else MORNING_HOUR_STANDARD


def _morning_utc(local_day: date) -> datetime:
    local = NY_TZ.localize(
        datetime.combine(local_day, time(morning_hour(local_day), 0)),
        is_dst=None,
    )
    return local.astimezone(UTC)


def is_morning(instant) -> bool:
    """True if the instant is exactly the trading-morning decision point of a weekday."""
    local = to_local(instant)
    if local.weekday() >= 5:
        return False
    return (
        local.hour == morning_hour(local.date())
        and local.minute == 0
        and local.second == 0
        and local.microsecond == 0
    )


def day_key_of(instant) -> date:
    """UTC calendar date of an instant (the raw value behind both day-key flavors)."""
    return ensure_utc(instant).date()


@total_ordering
class EntryInstant:
    """UTC moment at which a daily decision is evaluated. Never on a weekend."""

    __slots__ = ("_utc",)

    def __init__(self, utc):
        value = ensure_utc(utc)
        if value.astimezone(NY_TZ).weekday() >= 5:
            raise TemporalContractError(
                f"Weekend entry is not allowed: utc={value.isoformat()}, "
                f"ny={value.astimezone(NY_TZ).isoformat()}"
            )
        self._utc = value

    @property
    def utc(self) -> datetime:
        return self._utc

    @property
    def local(self) -> datetime:
        return self._utc.astimezone(NY_TZ)

    def __eq__(self, other):
        if not isinstance(other, EntryInstant):
            return NotImplemented
        return self._utc == other._utc

    def __lt__(self, other):
        if not isinstance(other, EntryInstant):
            return NotImplemented
        return self._utc < other._utc

    def __hash__(self):
        return hash(("entry", self._utc))

    def __repr__(self):
        return f"EntryInstant({self._utc.isoformat()})"


class BaselineExit:
    """Default close-out instant of a position. Only compute_baseline_exit creates it."""

    __slots__ = ("_utc", "_entry")

    def __init__(self, utc: datetime, entry: EntryInstant):
        value = ensure_utc(utc)
        if value <= entry.utc:
            raise TemporalContractError(
                f"Baseline exit must be after entry: entry={entry.utc.isoformat()}, exit={value.isoformat()}"
            )
        self._utc = value
        self._entry = entry

    @property
    def utc(self) -> datetime:
        return self._utc

    @property
    def entry(self) -> EntryInstant:
        return self._entry

    def __eq__(self, other):
        if not isinstance(other, BaselineExit):
            return NotImplemented
        return self._utc == other._utc

    def __hash__(self):
        return hash(("exit", self._utc))

    def __repr__(self):
        return f"BaselineExit({self._utc.isoformat()})"


def try_make_entry_instant(utc) -> Optional[EntryInstant]:
    """
    Build an EntryInstant, or None when the instant falls on a New York weekend.

    Raises:
        TemporalContractError: For naive or non-UTC input
    """
    value = ensure_utc(utc)
    if value.astimezone(NY_TZ).weekday() >= 5:
        return None
    return EntryInstant(value)


def entry_for_trading_day(local_day: date) -> EntryInstant:
    """Entry instant of the trading morning on a New York weekday."""
    if local_day.weekday() >= 5:
        raise TemporalContractError(f"No trading morning on weekend date {local_day.isoformat()}")
    return EntryInstant(_morning_utc(local_day))


def compute_baseline_exit(entry: EntryInstant) -> BaselineExit:
    """
    Next trading morning minus the safety offset.

    Friday rolls over the weekend to Monday. The target morning is built in
    local time so the DST status of the target date applies.

    Args:
        entry: Entry instant

    Returns:
        BaselineExit strictly after the entry
    """
    if not isinstance(entry, EntryInstant):
        raise TemporalContractError(f"Expected EntryInstant, got {type(entry).__name__}")

    local_day = entry.local.date()
    days_ahead = 3 if local_day.weekday() == 4 else 1
    target_day = local_day + timedelta(days=days_ahead)

    exit_utc = _morning_utc(target_day) - EXIT_SAFETY_OFFSET
    return BaselineExit(exit_utc, entry)


def try_compute_baseline_exit(utc) -> Optional[BaselineExit]:
    """Baseline exit of a raw UTC instant, or None if the instant is not a valid entry."""
    entry = try_make_entry_instant(utc)
    if entry is None:
        return None
    return compute_baseline_exit(entry)


# Only the factory classmethods hold this; direct construction is refused
_FACTORY_TOKEN = object()


@total_ordering
class _TaggedDayKey:
    """
    UTC-midnight day identity. Comparisons only work within one flavor.

    Built only through the flavor factories (from_entry, from_baseline_exit,
    train_until); calling the class directly raises TemporalContractError.
    """

    __slots__ = ("_day",)
    _flavor = "day"

    def __init__(self, day: date, _token=None):
        if _token is not _FACTORY_TOKEN:
            raise TemporalContractError(
                f"{type(self).__name__} must be built through its factory methods, not from {day!r}"
            )
        if isinstance(day, datetime) or not isinstance(day, date):
            raise TemporalContractError(f"{type(self).__name__} needs a date, got {day!r}")
        self._day = day

    @property
    def day(self) -> date:
        return self._day

    @property
    def utc_midnight(self) -> datetime:
        return UTC.localize(datetime.combine(self._day, time(0, 0)))

    def _check_flavor(self, other) -> None:
        if type(other) is not type(self):
            raise TemporalContractError(
                f"Cannot compare {type(self).__name__}({self._day}) with "
                f"{type(other).__name__}({getattr(other, '_day', other)})"
            )

    def __eq__(self, other):
        if isinstance(other, _TaggedDayKey):
            self._check_flavor(other)
            return self._day == other._day
        return NotImplemented

    def __lt__(self, other):
        if isinstance(other, _TaggedDayKey):
            self._check_flavor(other)
            return self._day < other._day
        return NotImplemented

    def __hash__(self):
        return hash((self._flavor, self._day))

    def __repr__(self):
        return f"{type(self).__name__}({self._day.isoformat()})"


class EntryDayKey(_TaggedDayKey):
    """Day identity of an entry."""

    _flavor = "entry"

    @classmethod
    def from_entry(cls, entry: EntryInstant) -> "EntryDayKey":
        if not isinstance(entry, EntryInstant):
            raise TemporalContractError(f"EntryDayKey.from_entry needs EntryInstant, got {type(entry).__name__}")
        return cls(entry.utc.date(), _token=_FACTORY_TOKEN)


class ExitDayKey(_TaggedDayKey):
    """Day identity of a baseline exit. Train boundaries use this flavor."""

    _flavor = "exit"

    @classmethod
    def from_baseline_exit(cls, baseline_exit: BaselineExit) -> "ExitDayKey":
        if not isinstance(baseline_exit, BaselineExit):
            raise TemporalContractError(
                f"ExitDayKey.from_baseline_exit needs BaselineExit, got {type(baseline_exit).__name__}"
            )
        return cls(baseline_exit.utc.date(), _token=_FACTORY_TOKEN)

    @classmethod
    def train_until(cls, day: date) -> "ExitDayKey":
        """Cutoff key: exits on or before this UTC date are trainable."""
        return cls(day, _token=_FACTORY_TOKEN)
