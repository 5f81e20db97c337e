"""
Statement-to-ledger matching engine.
Scores candidates with the configured strategies and assigns pairs greedily.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional
import logging

from ..config import MatchingConfig
from ..models.session import (
    MatchConfidence,
    ReconciliationMatch,
    ReconciliationSession,
)
from ..models.transaction import LedgerTransaction, StatementTransaction
from ..utils.exceptions import (
    AccountMismatchError,
    AlreadyMatchedError,
    InvalidInputError,
)
from .strategies import (
    AmountDateStrategy,
    CandidateScore,
    MatchingStrategy,
    ReferenceNumberStrategy,
)

logger = logging.getLogger(__name__)


@dataclass
class _RankedLine:
    """A statement line with its eligible candidates, best first."""

    position: int
    line: StatementTransaction
    candidates: list[CandidateScore]

    @property
    def best(self) -> CandidateScore:
        return self.candidates[0]


class MatchingEngine:
    """
    Pairs statement lines with ledger transactions for one session.

    The engine is pure: it reads the lines and candidates it is given and
    returns proposed matches. Recording them is the session's job.
    """

    def __init__(
        self,
        config: Optional[MatchingConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the matching engine.

        Args:
            config: Matching configuration
            clock: Source of match timestamps
        """
        self.config = config or MatchingConfig()
        self.clock = clock
        self.reference_strategy = ReferenceNumberStrategy(
            match_score=self.config.reference_match_score,
            normalize=self.config.normalize_references,
            normalize_pattern=self.config.reference_normalize_pattern,
        )
        self.strategies: list[MatchingStrategy] = [
            self.reference_strategy,
            AmountDateStrategy(
                slack_days=self.config.date_slack_days,
                amount_score=self.config.amount_match_score,
                date_weight=self.config.date_proximity_weight,
                description_weight=self.config.description_weight,
            ),
        ]

    def candidate_window(self, start_date: date, end_date: date) -> tuple[date, date]:
        """Session date range widened by the posting-date slack."""
        slack = timedelta(days=self.config.date_slack_days)
        return start_date - slack, end_date + slack

    def score(
        self, line: StatementTransaction, candidate: LedgerTransaction
    ) -> Optional[CandidateScore]:
        """Score from the first strategy that applies, in priority order."""
        for strategy in self.strategies:
            result = strategy.score(line, candidate)
            if result is not None:
                return result
        return None

    def propose_matches(
        self,
        lines: list[StatementTransaction],
        candidates: list[LedgerTransaction],
    ) -> list[ReconciliationMatch]:
        """
        Propose automatic matches.

        Args:
            lines: Unmatched, non-excluded statement lines in upload order
            candidates: Unmatched ledger transactions in creation order

        Returns:
            Proposed matches, at most one per line and per candidate
        """
        creation_rank = {
            txn.id: rank
            for rank, txn in enumerate(sorted(candidates, key=lambda t: t.created_at))
        }

        def candidate_key(cs: CandidateScore) -> tuple:
            return (-cs.score, cs.date_gap, creation_rank[cs.transaction.id])

        ranked: list[_RankedLine] = []
        for position, line in enumerate(lines):
            eligible = []
            for candidate in candidates:
                result = self.score(line, candidate)
                if result is not None and result.score > self.config.auto_accept_threshold:
                    eligible.append(result)
            if eligible:
                eligible.sort(key=candidate_key)
                ranked.append(_RankedLine(position, line, eligible))

        assigned_lines: set[str] = set()
        assigned_txns: set[str] = set()
        proposals: list[ReconciliationMatch] = []

        def assign(entry: _RankedLine, chosen: CandidateScore) -> None:
            assigned_lines.add(entry.line.id)
            assigned_txns.add(chosen.transaction.id)
            proposals.append(self._to_match(entry.line, chosen))

        # A unique reference match is accepted outright
        for entry in ranked:
            reference_hits = [c for c in entry.candidates if c.details.reference_match]
            if len(reference_hits) != 1:
                continue
            chosen = reference_hits[0]
            if chosen.transaction.id in assigned_txns:
                continue
            assign(entry, chosen)

        remaining = [e for e in ranked if e.line.id not in assigned_lines]
        remaining.sort(key=lambda e: (-e.best.score, e.best.date_gap, e.position))

        for entry in remaining:
            chosen = next(
                (c for c in entry.candidates if c.transaction.id not in assigned_txns),
                None,
            )
            if chosen is not None:
                assign(entry, chosen)

        logger.debug(
            f"Proposed {len(proposals)} matches for {len(lines)} lines "
            f"against {len(candidates)} candidates"
        )
        return proposals

    def validate_manual_match(
        self,
        session: ReconciliationSession,
        line_id: str,
        transaction: LedgerTransaction,
    ) -> StatementTransaction:
        """
        Check that a manual pairing may be recorded.

        Returns:
            The statement line being matched

        Raises:
            NotFoundError: If the statement line is not part of the session
            InvalidInputError: If the line is excluded or the transaction merged
            AccountMismatchError: If the transaction is on another account
            AlreadyMatchedError: If either side already has a match
        """
        line = session.get_statement_line(line_id)

        if transaction.account_id != session.account_id:
            raise AccountMismatchError(
                f"Transaction {transaction.id} belongs to account {transaction.account_id}, "
                f"not {session.account_id}"
            )
        if transaction.is_merged:
            raise InvalidInputError(
                f"Transaction {transaction.id} is merged into {transaction.merged_into_id}; "
                "match the surviving transaction instead"
            )
        if line.excluded:
            raise InvalidInputError(f"Statement transaction {line_id} is excluded")

        existing = session.match_for_line(line_id)
        if existing is not None:
            raise AlreadyMatchedError(
                f"Statement transaction {line_id} is already matched to "
                f"{existing.transaction_id}"
            )
        existing = session.match_for_transaction(transaction.id)
        if existing is not None:
            raise AlreadyMatchedError(
                f"Transaction {transaction.id} is already matched to statement "
                f"transaction {existing.reconciliation_transaction_id}"
            )
        return line

    def build_manual_match(
        self,
        line: StatementTransaction,
        transaction: LedgerTransaction,
        is_manual: bool = True,
        notes: Optional[str] = None,
    ) -> ReconciliationMatch:
        """Record a caller-chosen pairing, keeping the computed details for audit."""
        scored = self.score(line, transaction)
        return ReconciliationMatch(
            reconciliation_transaction_id=line.id,
            transaction_id=transaction.id,
            is_manual=is_manual,
            notes=notes,
            confidence=MatchConfidence.MANUAL if is_manual else self._confidence(scored),
            score=scored.score if scored else 0.0,
            details=scored.details if scored else None,
            matched_at=self.clock(),
        )

    def _to_match(
        self, line: StatementTransaction, chosen: CandidateScore
    ) -> ReconciliationMatch:
        return ReconciliationMatch(
            reconciliation_transaction_id=line.id,
            transaction_id=chosen.transaction.id,
            is_manual=False,
            notes=chosen.reason,
            confidence=MatchConfidence.from_score(chosen.score),
            score=chosen.score,
            details=chosen.details,
            matched_at=self.clock(),
        )

    @staticmethod
    def _confidence(scored: Optional[CandidateScore]) -> MatchConfidence:
        if scored is None:
            return MatchConfidence.LOW
        return MatchConfidence.from_score(scored.score)
