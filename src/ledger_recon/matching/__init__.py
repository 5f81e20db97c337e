"""Matching engine and strategies."""

from .engine import MatchingEngine
from .similarity import description_similarity, sequence_similarity, token_similarity
from .strategies import (
    AmountDateStrategy,
    CandidateScore,
    MatchingStrategy,
    ReferenceNumberStrategy,
)

__all__ = [
    "MatchingEngine",
    "description_similarity",
    "sequence_similarity",
    "token_similarity",
    "AmountDateStrategy",
    "CandidateScore",
    "MatchingStrategy",
    "ReferenceNumberStrategy",
]
