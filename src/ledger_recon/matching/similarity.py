"""
Description similarity heuristics.

Both measures are symmetric: ``similarity(a, b) == similarity(b, a)`` for all
inputs, which duplicate detection relies on.
"""

from difflib import SequenceMatcher
import re


def normalize_description(description: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    desc = (description or "").lower()
    desc = re.sub(r"[^a-z0-9\s]", " ", desc)
    return " ".join(desc.split())


def sequence_similarity(a: str, b: str) -> float:
    """
    SequenceMatcher ratio of the normalized descriptions.

    ``SequenceMatcher`` is not order-independent on its own, so the pair is
    sorted first.
    """
    first, second = sorted((normalize_description(a), normalize_description(b)))
    if not first and not second:
        return 1.0
    return SequenceMatcher(None, first, second, autojunk=False).ratio()


def token_similarity(a: str, b: str) -> float:
    """Jaccard overlap of the normalized description tokens."""
    tokens_a = set(normalize_description(a).split())
    tokens_b = set(normalize_description(b).split())
    if not tokens_a and not tokens_b:
        return 1.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


SIMILARITY_METHODS = {
    "sequence": sequence_similarity,
    "token": token_similarity,
}


def description_similarity(a: str, b: str, method: str = "sequence") -> float:
    """Similarity in ``[0.0, 1.0]`` using the named method."""
    try:
        func = SIMILARITY_METHODS[method]
    except KeyError:
        raise ValueError(f"Unknown similarity method: {method}") from None
    return func(a, b)
