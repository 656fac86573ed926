from __future__ import annotations

import re
from typing import List


SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")


def normalize_whitespace(text: str) -> str:
    return " ".join((text or "").split())


def count_words(text: str) -> int:
    normalized = normalize_whitespace(text)
    return len([w for w in normalized.split(" ") if w])


def split_sentences(text: str) -> List[str]:
    """
    Sentences as matched by ``SENTENCE_RE``, whitespace-normalized.

    Text without any terminator is a single sentence. A sentence only ends
    where whitespace follows the terminator, so ``$1,450.50`` or ``e.g.`` stay
    inside their sentence. Leading terminators are glued to the first sentence
    and an unterminated tail becomes a final sentence, so joining the result
    with spaces gives back the normalized text.
    """
    text = text or ""
    matches = list(SENTENCE_RE.finditer(text))
    if not matches:
        whole = normalize_whitespace(text)
        return [whole] if whole else []

    pieces = [text[: matches[0].start()]]
    pieces.extend(m.group(0) for m in matches)
    pieces.append(text[matches[-1].end() :])

    sentences: List[str] = []
    for piece in pieces:
        if not piece:
            continue
        if sentences and not piece[0].isspace():
            sentences[-1] += piece
        else:
            sentences.append(piece)

    cleaned = [normalize_whitespace(s) for s in sentences]
    return [s for s in cleaned if s]
