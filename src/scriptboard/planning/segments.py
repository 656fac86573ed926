from __future__ import annotations

from typing import List

from scriptboard.errors import ValidationError
from scriptboard.text.words import count_words, split_sentences


OVERFLOW_FACTOR = 1.5


def split_into_segments(text: str, words_per_segment: int) -> List[str]:
    """
    Group whole sentences into segments of roughly ``words_per_segment`` words.

    A segment is closed when the next sentence would push it past
    ``words_per_segment * 1.5`` (that sentence opens the next segment), or as
    soon as it reaches ``words_per_segment``.
    """
    if words_per_segment <= 0:
        raise ValidationError("words_per_segment must be > 0")

    limit = words_per_segment * OVERFLOW_FACTOR
    segments: List[str] = []
    current: List[str] = []
    current_words = 0

    for sentence in split_sentences(text):
        sentence_words = count_words(sentence)

        if current_words > 0 and current_words + sentence_words > limit:
            segments.append(" ".join(current))
            current = [sentence]
            current_words = sentence_words
        else:
            current.append(sentence)
            current_words += sentence_words

        if current_words >= words_per_segment:
            segments.append(" ".join(current))
            current = []
            current_words = 0

    if current:
        segments.append(" ".join(current))

    return [s for s in segments if s.strip()]
