"""
Scoring strategies for statement-to-ledger matching.
Each strategy scores one statement line against one ledger candidate.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from ..models.session import MatchDetails
from ..models.transaction import (
    REFERENCE_NORMALIZE_PATTERN,
    LedgerTransaction,
    StatementTransaction,
    normalize_reference,
)
from .similarity import sequence_similarity


@dataclass
class CandidateScore:
    """Score of one ledger candidate for one statement line."""

    transaction: LedgerTransaction
    score: float
    date_gap: int
    details: MatchDetails
    reason: str


def date_gap(line: StatementTransaction, candidate: LedgerTransaction) -> int:
    return abs((line.date - candidate.date).days)


class MatchingStrategy(ABC):
    """Abstract base class for matching strategies."""

    @abstractmethod
    def score(
        self, line: StatementTransaction, candidate: LedgerTransaction
    ) -> Optional[CandidateScore]:
        """
        Score a candidate for a statement line.

        Args:
            line: Statement line to match
            candidate: Ledger transaction being considered

        Returns:
            CandidateScore, or None if this strategy does not apply or the
            pair is ineligible
        """
        pass


class ReferenceNumberStrategy(MatchingStrategy):
    """
    Reference number match - both sides carry the same normalized reference.
    Highest confidence; amount and date are reported but not required.
    """

    def __init__(
        self,
        match_score: float = 100.0,
        normalize: bool = True,
        normalize_pattern: str = REFERENCE_NORMALIZE_PATTERN,
    ):
        self.match_score = match_score
        self.normalize = normalize
        self.normalize_pattern = normalize_pattern

    def _key(self, reference: Optional[str]) -> Optional[str]:
        if not reference:
            return None
        if not self.normalize:
            return reference.strip() or None
        return normalize_reference(reference, self.normalize_pattern)

    def score(
        self, line: StatementTransaction, candidate: LedgerTransaction
    ) -> Optional[CandidateScore]:
        line_key = self._key(line.reference_number)
        candidate_key = self._key(candidate.reference_number)
        if not line_key or not candidate_key or line_key != candidate_key:
            return None

        gap = date_gap(line, candidate)
        details = MatchDetails(
            amount_match=line.amount == candidate.amount,
            date_difference=gap,
            reference_match=True,
        )
        return CandidateScore(
            transaction=candidate,
            score=self.match_score,
            date_gap=gap,
            details=details,
            reason=f"Reference {line.reference_number} matches",
        )


class AmountDateStrategy(MatchingStrategy):
    """
    Exact amount with date proximity.

    Amounts must be equal to the cent (signed, no tolerance). The date score
    falls linearly with the day gap and the pair is ineligible once the gap
    exceeds ``slack_days``. Description similarity adds a small bonus.
    """

    def __init__(
        self,
        slack_days: int = 3,
        amount_score: float = 60.0,
        date_weight: float = 30.0,
        description_weight: float = 10.0,
        similarity: Callable[[str, str], float] = sequence_similarity,
    ):
        """
        Initialize with scoring weights.

        Args:
            slack_days: Maximum days difference allowed
            amount_score: Base score for an exact amount match
            date_weight: Score for a same-day match, decreasing with the gap
            description_weight: Score for identical descriptions
            similarity: Description similarity function
        """
        self.slack_days = slack_days
        self.amount_score = amount_score
        self.date_weight = date_weight
        self.description_weight = description_weight
        self.similarity = similarity

    def score(
        self, line: StatementTransaction, candidate: LedgerTransaction
    ) -> Optional[CandidateScore]:
        if line.amount != candidate.amount:
            return None

        gap = date_gap(line, candidate)
        if gap > self.slack_days:
            return None

        proximity = 1.0 - gap / (self.slack_days + 1)
        similarity = self.similarity(line.description, candidate.description)

        total = (
            self.amount_score
            + self.date_weight * proximity
            + self.description_weight * similarity
        )
        details = MatchDetails(
            amount_match=True,
            date_difference=gap,
            description_similarity=round(similarity, 4),
        )
        return CandidateScore(
            transaction=candidate,
            score=round(total, 2),
            date_gap=gap,
            details=details,
            reason=(
                f"Amount matches, {gap} day(s) date difference, "
                f"description similarity {similarity:.0%}"
            ),
        )
