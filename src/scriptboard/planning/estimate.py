from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Union

from scriptboard.errors import ValidationError
from scriptboard.text.words import count_words


@dataclass(frozen=True)
class RatioPolicy:
    """One unit per ``words_per_unit`` words, rounded up."""

    words_per_unit: float = 12

    def __post_init__(self) -> None:
        if self.words_per_unit <= 0:
            raise ValidationError("words_per_unit must be > 0")

    def units_for_words(self, words: int) -> int:
        return max(1, math.ceil(words / self.words_per_unit))


@dataclass(frozen=True)
class DurationPolicy:
    """
    Units are fixed-length visual segments: the narration is first rounded up
    to whole minutes of speech, then cut into ``seconds_per_unit`` slices.
    """

    seconds_per_unit: float = 4
    words_per_minute: float = 150
    seconds_per_minute: float = 60

    def __post_init__(self) -> None:
        if self.seconds_per_unit <= 0:
            raise ValidationError("seconds_per_unit must be > 0")
        if self.words_per_minute <= 0:
            raise ValidationError("words_per_minute must be > 0")
        if self.seconds_per_minute <= 0:
            raise ValidationError("seconds_per_minute must be > 0")

    @property
    def words_per_unit(self) -> float:
        return self.words_per_minute * self.seconds_per_unit / self.seconds_per_minute

    def units_for_words(self, words: int) -> int:
        minutes = math.ceil(words / self.words_per_minute)
        # half-up, not banker's rounding
        units = math.floor(minutes * self.seconds_per_minute / self.seconds_per_unit + 0.5)
        return max(1, units)


UnitPolicy = Union[RatioPolicy, DurationPolicy]


def estimate_units(text: str, policy: UnitPolicy) -> int:
    if not text or not text.strip():
        raise ValidationError("input text is required")
    return policy.units_for_words(count_words(text))


def chunk_count(total_units: int, max_units_per_chunk: int) -> int:
    if max_units_per_chunk <= 0:
        raise ValidationError("max_units_per_chunk must be > 0")
    return math.ceil(total_units / max_units_per_chunk)


def policy_from_config(cfg: Dict[str, Any]) -> UnitPolicy:
    name = str(cfg.get("policy", "ratio")).lower()
    if name == "ratio":
        return RatioPolicy(words_per_unit=float(cfg.get("words_per_unit", 12)))
    if name == "duration":
        return DurationPolicy(
            seconds_per_unit=float(cfg.get("seconds_per_unit", 4)),
            words_per_minute=float(cfg.get("words_per_minute", 150)),
            seconds_per_minute=float(cfg.get("seconds_per_minute", 60)),
        )
    raise ValidationError(f"unknown estimate policy: {name!r} (expected 'ratio' or 'duration')")
