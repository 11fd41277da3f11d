"""Effective combat stat derivation.

Pure functions only: every reward and capture calculation builds on these,
so they must stay deterministic and free of I/O.
"""

from __future__ import annotations

from typing import Mapping

from .errors import ValidationError
from .models import STAT_NAMES, StatBlock

MAX_IV = 31
MAX_EV_PER_STAT = 255
MAX_EV_TOTAL = 510
MIN_LEVEL = 1
MAX_LEVEL = 100

# name -> (boosted stat, reduced stat); neutral natures map to (None, None)
NATURES: dict[str, tuple[str | None, str | None]] = {
    "hardy": (None, None),
    "lonely": ("attack", "defense"),
    "brave": ("attack", "speed"),
    "adamant": ("attack", "special_attack"),
    "naughty": ("attack", "special_defense"),
    "bold": ("defense", "attack"),
    "docile": (None, None),
    "relaxed": ("defense", "speed"),
    "impish": ("defense", "special_attack"),
    "lax": ("defense", "special_defense"),
    "timid": ("speed", "attack"),
    "hasty": ("speed", "defense"),
    "serious": (None, None),
    "jolly": ("speed", "special_attack"),
    "naive": ("speed", "special_defense"),
    "modest": ("special_attack", "attack"),
    "mild": ("special_attack", "defense"),
    "quiet": ("special_attack", "speed"),
    "bashful": (None, None),
    "rash": ("special_attack", "special_defense"),
    "calm": ("special_defense", "attack"),
    "gentle": ("special_defense", "defense"),
    "sassy": ("special_defense", "speed"),
    "careful": ("special_defense", "special_attack"),
    "quirky": (None, None),
}

NATURE_NAMES: tuple[str, ...] = tuple(NATURES)


def _nature_percent(nature: str, stat: str) -> int:
    boosted, reduced = NATURES.get(nature.lower(), (None, None))
    if stat == boosted:
        return 110
    if stat == reduced:
        return 90
    return 100


def nature_multiplier(nature: str, stat: str) -> float:
    """Return 1.1, 1.0 or 0.9 for ``stat`` under ``nature``."""
    return _nature_percent(nature, stat) / 100


def derive_stats(
    base_stats: StatBlock,
    level: int,
    ivs: StatBlock,
    evs: StatBlock,
    nature: str,
) -> StatBlock:
    """Convert genetic and trained values into effective stats at ``level``.

    Inputs are expected to be validated by the caller.
    """
    derived: dict[str, int] = {}
    for stat in STAT_NAMES:
        core = (2 * base_stats.get(stat) + ivs.get(stat) + evs.get(stat) // 4) * level // 100
        if stat == "hp":
            derived[stat] = core + level + 10
        else:
            # integer percent keeps the final floor exact
            derived[stat] = (core + 5) * _nature_percent(nature, stat) // 100
    return StatBlock(**derived)


def apply_ev_gain(evs: StatBlock, gains: Mapping[str, int]) -> StatBlock:
    """Add trained-value gains, clamping at the per-stat and total caps."""
    updated = evs.as_dict()
    remaining = MAX_EV_TOTAL - evs.total()
    for stat in STAT_NAMES:
        gain = int(gains.get(stat, 0))
        if gain < 0:
            raise ValidationError("EV gains cannot be negative", stat=stat, gain=gain)
        allowed = min(gain, MAX_EV_PER_STAT - updated[stat], max(remaining, 0))
        updated[stat] += allowed
        remaining -= allowed
    return StatBlock(**updated)


def validate_ivs(ivs: StatBlock) -> None:
    for stat, value in ivs.as_dict().items():
        if not 0 <= value <= MAX_IV:
            raise ValidationError("IV out of range", stat=stat, value=value)


def validate_evs(evs: StatBlock) -> None:
    for stat, value in evs.as_dict().items():
        if not 0 <= value <= MAX_EV_PER_STAT:
            raise ValidationError("EV out of range", stat=stat, value=value)
    if evs.total() > MAX_EV_TOTAL:
        raise ValidationError("EV total exceeds cap", total=evs.total())


def validate_level(level: int) -> None:
    if not MIN_LEVEL <= level <= MAX_LEVEL:
        raise ValidationError("level out of range", level=level)

