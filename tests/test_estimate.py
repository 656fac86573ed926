import pytest

from scriptboard.errors import ValidationError
from scriptboard.planning.estimate import (
    DurationPolicy,
    RatioPolicy,
    chunk_count,
    estimate_units,
    policy_from_config,
)

from fakes import SENTENCE_12


def test_single_word_never_estimates_zero_units():
    assert estimate_units("hello", RatioPolicy(words_per_unit=150)) == 1
    assert estimate_units("hello", DurationPolicy(seconds_per_unit=600)) == 1


def test_ratio_policy_rounds_up():
    assert RatioPolicy(12).units_for_words(12) == 1
    assert RatioPolicy(12).units_for_words(13) == 2


def test_long_script_plan():
    text = " ".join([SENTENCE_12] * 150)
    total = estimate_units(text, RatioPolicy(words_per_unit=12))
    assert total == 150
    assert chunk_count(total, 50) == 3


def test_duration_policy_goes_through_whole_minutes():
    policy = DurationPolicy(seconds_per_unit=4)
    assert policy.units_for_words(150) == 15
    assert policy.units_for_words(151) == 30
    assert policy.words_per_unit == pytest.approx(10.0)


def test_duration_policy_rounds_half_up():
    # one minute cut into 24 s units is 2.5, which must become 3
    assert DurationPolicy(seconds_per_unit=24).units_for_words(10) == 3


@pytest.mark.parametrize(
    "build",
    [
        lambda: RatioPolicy(words_per_unit=0),
        lambda: RatioPolicy(words_per_unit=-3),
        lambda: DurationPolicy(seconds_per_unit=0),
        lambda: DurationPolicy(seconds_per_unit=4, words_per_minute=0),
    ],
)
def test_non_positive_settings_rejected(build):
    with pytest.raises(ValidationError):
        build()


def test_empty_text_rejected():
    with pytest.raises(ValidationError):
        estimate_units("   \n", RatioPolicy(12))


def test_chunk_count_rejects_zero_ceiling():
    with pytest.raises(ValidationError):
        chunk_count(10, 0)


def test_policy_from_config():
    assert policy_from_config({}) == RatioPolicy(12)
    duration = policy_from_config({"policy": "duration", "seconds_per_unit": 5})
    assert duration == DurationPolicy(seconds_per_unit=5.0)
    with pytest.raises(ValidationError):
        policy_from_config({"policy": "syllables"})
