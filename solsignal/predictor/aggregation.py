"""
Probability aggregation over the daily triple.

Triples are ordered (down, flat, up), matching the class labels.

- Micro overlay (base -> base+micro): moves up to MAX_MICRO_IMPACT of mass
  toward the micro side, 70% taken from the opposite side and the rest from
  flat. The shift scales with the micro strength between MICRO_MIN and
  MICRO_STRONG confidence and with (1 - day confidence).
- SL overlay (base+micro -> total): removes up to MAX_SL_IMPACT of mass from
  the risky side, 60% to flat and the rest to the opposite side. The base
  argmax is restored if the shift would flip it.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from solsignal.processor.rows import LABEL_DOWN, LABEL_FLAT, LABEL_UP


Triple = Tuple[float, float, float]

_EPS = 1e-9


@dataclass(frozen=True)
class AggregationConfig:
    max_micro_impact: float = 0.30
    micro_min_confidence: float = 0.55
    micro_strong_confidence: float = 0.70
    beta_micro: float = 1.0

    max_sl_impact: float = 0.30
    sl_min_confidence: float = 0.55
    sl_strong_confidence: float = 0.70
    gamma_sl: float = 1.0


DEFAULT_AGGREGATION = AggregationConfig()


def _validate(probs: Triple, tag: str) -> None:
    total = sum(probs)
    if not np.isfinite(total) or total <= 0.0 or min(probs) < 0.0:
        raise ValueError(f"{tag}: invalid distribution {probs}")


def _normalize(down: float, flat: float, up: float, tag: str) -> Triple:
    total = down + flat + up
    if total <= 0.0:
        raise ValueError(f"{tag}: non-positive sum after overlay")
    return (down / total, flat / total, up / total)


def argmax_label(probs: Triple) -> int:
    """Argmax with ties resolved up, then down, then flat."""
    down, flat, up = probs
    if up >= flat and up >= down:
        return LABEL_UP
    if down >= flat and down >= up:
        return LABEL_DOWN
    return LABEL_FLAT


def _strength(confidence: float, lo: float, hi: float) -> float:
    span = max(1e-6, hi - lo)
    return min(1.0, max(0.0, (confidence - lo) / span))


def apply_micro_overlay(
    probs: Triple,
    micro_p_up: Optional[float],
    micro_confidence: Optional[float],
    config: AggregationConfig = DEFAULT_AGGREGATION,
) -> Triple:
    """
    Shift mass toward the micro side.

    Args:
        probs: Base (down, flat, up)
        micro_p_up: P(up | flat), or None when there is no micro prediction
        micro_confidence: max(p, 1 - p) of the micro model

    Returns:
        Adjusted triple; the input unchanged when micro is absent or weak
    """
    _validate(probs, "micro overlay")
    if micro_p_up is None or micro_confidence is None:
        return probs
    if not np.isfinite(micro_p_up) or not 0.0 <= micro_confidence <= 1.0:
        raise ValueError(f"micro overlay: invalid micro p_up={micro_p_up}, confidence={micro_confidence}")
    if micro_confidence < config.micro_min_confidence or micro_p_up == 0.5:
        return probs

    strength = _strength(micro_confidence, config.micro_min_confidence, config.micro_strong_confidence)
    day_factor = 1.0 - min(1.0, max(0.0, max(probs)))
    impact = config.max_micro_impact * strength * day_factor * max(0.0, config.beta_micro)
    if impact <= 0.0:
        return probs

    down, flat, up = probs
    if micro_p_up > 0.5:
        take_opposite = min(max(0.0, down - _EPS), impact * 0.7)
        take_flat = min(max(0.0, flat - _EPS), impact - take_opposite)
        up += take_opposite + take_flat
        down -= take_opposite
    else:
        take_opposite = min(max(0.0, up - _EPS), impact * 0.7)
        take_flat = min(max(0.0, flat - _EPS), impact - take_opposite)
        down += take_opposite + take_flat
        up -= take_opposite
    flat -= take_flat

    if take_opposite + take_flat <= 0.0:
        return probs
    return _normalize(down, flat, up, "micro overlay")


def _restore_top(probs: Triple, top: int) -> Triple:
    """Lift `top` just above the other two classes, taking mass from them proportionally."""
    values = list(probs)
    others = [i for i in range(3) if i != top]
    max_other = max(values[i] for i in others)
    if values[top] > max_other:
        return probs

    delta = (max_other + 1e-6) - values[top]
    others_sum = sum(values[i] for i in others)
    if others_sum <= 0.0 or delta <= 0.0 or delta >= others_sum:
        return probs

    k = delta / others_sum
    for i in others:
        values[i] -= values[i] * k
    values[top] += delta
    return _normalize(values[0], values[1], values[2], "sl overlay")


def apply_sl_overlay(
    probs: Triple,
    sl_prob: Optional[float],
    go_long: Optional[bool],
    config: AggregationConfig = DEFAULT_AGGREGATION,
) -> Triple:
    """
    Reduce the risky side of the triple.

    Args:
        probs: (down, flat, up) after the micro overlay
        sl_prob: P(SL first) for the chosen direction, or None without a score
        go_long: Chosen direction, or None without a trade

    Returns:
        Adjusted triple with the original argmax preserved
    """
    _validate(probs, "sl overlay")
    if sl_prob is None or go_long is None or sl_prob < config.sl_min_confidence or sl_prob <= 0.0:
        return probs

    strength = _strength(sl_prob, config.sl_min_confidence, config.sl_strong_confidence)
    impact = config.gamma_sl * config.max_sl_impact * strength
    if impact <= 0.0:
        return probs

    base_top = argmax_label(probs)
    down, flat, up = probs
    if go_long and up > 0.0:
        reduce = min(impact, up)
        up -= reduce
        flat += reduce * 0.6
        down += reduce * 0.4
    elif not go_long and down > 0.0:
        reduce = min(impact, down)
        down -= reduce
        flat += reduce * 0.6
        up += reduce * 0.4
    else:
        return probs

    adjusted = _normalize(down, flat, up, "sl overlay")
    if argmax_label(adjusted) != base_top:
        adjusted = _restore_top(adjusted, base_top)
    return adjusted
