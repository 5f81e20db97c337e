"""
Duplicate detection and merge of ledger transactions.

Duplicates come from overlapping import sources (CSV import, email parsing,
manual entry). A merge folds a duplicate into a surviving transaction but
keeps the duplicate's record for audit; it simply stops appearing in default
listings and balances.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional
import logging

from ..config import DuplicateConfig
from ..events import DomainEvent, EventBus, EventType
from ..matching.similarity import description_similarity
from ..models.transaction import LedgerTransaction, MergeFields
from ..stores.interface import LedgerStore
from ..utils.exceptions import (
    AlreadyMergedError,
    CrossAccountError,
    InvalidInputError,
    NotMergedError,
    SelfMergeError,
)

logger = logging.getLogger(__name__)


@dataclass
class DuplicateCandidate:
    """A transaction suspected to duplicate another one."""

    transaction: LedgerTransaction
    similarity: float
    date_gap: int
    confidence: float


@dataclass
class DuplicateGroup:
    """Transactions that all duplicate one another, with a suggested survivor."""

    primary_id: str
    transactions: list[LedgerTransaction]
    confidence: float
    pair_confidences: dict[tuple[str, str], float] = field(default_factory=dict)

    @property
    def duplicate_ids(self) -> list[str]:
        return [t.id for t in self.transactions if t.id != self.primary_id]


class MergeEngine:
    """Owns the merge-state fields of ledger transactions."""

    def __init__(
        self,
        ledger: LedgerStore,
        config: Optional[DuplicateConfig] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ledger = ledger
        self.config = config or DuplicateConfig()
        self.events = events or EventBus()
        self.clock = clock

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def compare(
        self, a: LedgerTransaction, b: LedgerTransaction
    ) -> Optional[DuplicateCandidate]:
        """
        Compare two transactions; ``b`` is returned as a candidate if it
        duplicates ``a``.

        Every condition is symmetric, so ``compare(a, b)`` and ``compare(b, a)``
        agree on whether the pair is a duplicate and on its confidence.
        """
        if a.id == b.id or a.account_id != b.account_id:
            return None
        if a.is_merged or b.is_merged:
            return None
        if a.excludes(b.id) or b.excludes(a.id):
            return None
        if a.amount != b.amount:
            return None

        gap = abs((a.date - b.date).days)
        if gap > self.config.date_window_days:
            return None

        similarity = description_similarity(
            a.description, b.description, self.config.similarity_method
        )
        if similarity < self.config.similarity_threshold:
            return None

        return DuplicateCandidate(
            transaction=b,
            similarity=round(similarity, 4),
            date_gap=gap,
            confidence=self._confidence(similarity, gap),
        )

    def find_duplicates(self, transaction_id: str) -> list[DuplicateCandidate]:
        """
        Suggested duplicates of one transaction, most likely first.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        subject = self.ledger.get_by_id(transaction_id)
        if subject.is_merged:
            return []

        window = timedelta(days=self.config.date_window_days)
        nearby = self.ledger.find_by_account_and_date_range(
            subject.account_id, subject.date - window, subject.date + window
        )
        candidates = [c for c in (self.compare(subject, other) for other in nearby) if c]
        candidates.sort(
            key=lambda c: (-c.confidence, c.date_gap, c.transaction.created_at, c.transaction.id)
        )
        return candidates

    def find_duplicate_groups(
        self,
        account_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[DuplicateGroup]:
        """
        Group an account's suspected duplicates.

        Groups grow from the earliest ungrouped transaction. A transaction
        joins only if it duplicates every member already in the group, so
        each pair in a group lies within ``date_window_days`` of each other and
        a run of similar daily purchases is never chained into one group.
        The group confidence is that of its weakest pair, and the suggested
        primary is a verified transaction if any, else the earliest created.
        """
        transactions = self.ledger.find_by_account_and_date_range(
            account_id, start or date.min, end or date.max
        )
        transactions.sort(key=lambda t: (t.date, t.created_at, t.id))
        by_id = {t.id: t for t in transactions}

        grouped: set[str] = set()
        groups: list[DuplicateGroup] = []
        for i, anchor in enumerate(transactions):
            if anchor.id in grouped:
                continue

            members = [anchor]
            group_pairs: dict[tuple[str, str], float] = {}
            for other in transactions[i + 1 :]:
                if (other.date - anchor.date).days > self.config.date_window_days:
                    break
                if other.id in grouped:
                    continue
                scores = self._scores_against(members, other)
                if scores is None:
                    continue
                members.append(other)
                group_pairs.update(scores)

            if len(members) < 2:
                continue
            grouped.update(t.id for t in members)
            primary = min(members, key=lambda t: (not t.is_verified, t.created_at, t.id))
            groups.append(
                DuplicateGroup(
                    primary_id=primary.id,
                    transactions=sorted(
                        members, key=lambda t: (t.id != primary.id, t.created_at, t.id)
                    ),
                    confidence=min(group_pairs.values()),
                    pair_confidences=group_pairs,
                )
            )

        groups.sort(key=lambda g: (-g.confidence, by_id[g.primary_id].date, g.primary_id))
        logger.debug(f"Found {len(groups)} duplicate groups for account {account_id}")
        return groups

    def get_merged(self, target_id: str) -> list[LedgerTransaction]:
        """
        Transactions folded into ``target_id``, oldest merge first.

        Raises:
            NotFoundError: If the transaction does not exist
        """
        self.ledger.get_by_id(target_id)
        merged = self.ledger.find_merged_into(target_id)
        merged.sort(key=lambda t: (t.merged_at or datetime.min, t.id))
        return merged

    # ------------------------------------------------------------------
    # Merge state
    # ------------------------------------------------------------------

    def merge(self, source_id: str, target_id: str) -> LedgerTransaction:
        """
        Fold ``source`` into ``target``.

        Transactions previously merged into the source are re-pointed at the
        target so that no merge chain forms.

        Returns:
            The merged source transaction

        Raises:
            SelfMergeError: If source and target are the same transaction
            NotFoundError: If either transaction does not exist
            AlreadyMergedError: If either side is already merged
            CrossAccountError: If they belong to different accounts
        """
        if source_id == target_id:
            raise SelfMergeError(f"Cannot merge transaction {source_id} into itself")

        with self.ledger.atomic():
            merged, repointed = self._merge_locked(source_id, target_id, self.clock())

        logger.info(f"Merged transaction {source_id} into {target_id}")
        self._publish(
            EventType.TRANSACTIONS_MERGED,
            source_id=source_id,
            target_id=target_id,
            repointed=",".join(repointed),
        )
        return merged

    def merge_many(self, primary_id: str, duplicate_ids: list[str]) -> list[LedgerTransaction]:
        """
        Merge several duplicates into one primary, all or nothing.

        Raises:
            InvalidInputError: If ``duplicate_ids`` is empty or repeats an id
            SelfMergeError: If the primary is listed among the duplicates
            NotFoundError, AlreadyMergedError, CrossAccountError: As for ``merge``
        """
        if not duplicate_ids:
            raise InvalidInputError("At least one duplicate id is required")
        if len(set(duplicate_ids)) != len(duplicate_ids):
            raise InvalidInputError("Duplicate ids must be distinct")
        if primary_id in duplicate_ids:
            raise SelfMergeError(f"Cannot merge transaction {primary_id} into itself")

        with self.ledger.atomic():
            primary = self.ledger.get_by_id(primary_id)
            sources = [self.ledger.get_by_id(d) for d in duplicate_ids]
            for source in sources:
                self._validate_pair(source, primary)

            now = self.clock()
            merged = [self._merge_locked(s.id, primary_id, now)[0] for s in sources]

        logger.info(f"Merged {len(merged)} transactions into {primary_id}")
        for source in merged:
            self._publish(
                EventType.TRANSACTIONS_MERGED, source_id=source.id, target_id=primary_id
            )
        return merged

    def unmerge(self, source_id: str) -> LedgerTransaction:
        """
        Reverse a merge by clearing the source's merge fields.

        Nothing that relied on the merge (such as a completed reconciliation)
        is revisited.

        Raises:
            NotFoundError: If the transaction does not exist
            NotMergedError: If it is not merged
        """
        with self.ledger.atomic():
            source = self.ledger.get_by_id(source_id)
            if not source.is_merged:
                raise NotMergedError(f"Transaction {source_id} is not merged")
            previous_target = source.merged_into_id
            restored = self.ledger.update_merge_fields(
                source_id, MergeFields.cleared(), expected_is_merged=True
            )

        logger.info(f"Unmerged transaction {source_id} from {previous_target}")
        self._publish(
            EventType.TRANSACTION_UNMERGED, source_id=source_id, target_id=previous_target
        )
        return restored

    def mark_not_duplicate(self, id_a: str, id_b: str) -> None:
        """
        Record that two transactions are not duplicates, in both directions.

        Raises:
            InvalidInputError: If both ids are the same
            NotFoundError: If either transaction does not exist
        """
        if id_a == id_b:
            raise InvalidInputError("A transaction cannot be compared with itself")

        with self.ledger.atomic():
            self.ledger.get_by_id(id_a)
            self.ledger.get_by_id(id_b)
            self.ledger.add_duplicate_exclusion(id_a, id_b)
            self.ledger.add_duplicate_exclusion(id_b, id_a)

        logger.info(f"Marked {id_a} and {id_b} as not duplicates")
        self._publish(EventType.MARKED_NOT_DUPLICATE, id_a=id_a, id_b=id_b)

    def auto_merge(
        self,
        account_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[DuplicateGroup]:
        """
        Merge every duplicate group at or above ``auto_merge_confidence``.

        A group that fails to merge (for example because a concurrent caller
        merged one of its members) is skipped and logged.

        Returns:
            The groups that were merged
        """
        merged_groups: list[DuplicateGroup] = []
        for group in self.find_duplicate_groups(account_id, start, end):
            if group.confidence < self.config.auto_merge_confidence:
                continue
            try:
                self.merge_many(group.primary_id, group.duplicate_ids)
            except AlreadyMergedError as e:
                logger.warning(f"Skipped duplicate group {group.primary_id}: {e}")
                continue
            merged_groups.append(group)

        logger.info(
            f"Auto-merged {len(merged_groups)} duplicate groups for account {account_id}"
        )
        return merged_groups

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _merge_locked(
        self, source_id: str, target_id: str, merged_at: datetime
    ) -> tuple[LedgerTransaction, list[str]]:
        """Validate and write a merge; caller holds ``ledger.atomic()``."""
        source = self.ledger.get_by_id(source_id)
        target = self.ledger.get_by_id(target_id)
        self._validate_pair(source, target)

        children = self.ledger.find_merged_into(source_id)
        merged = self.ledger.update_merge_fields(
            source_id,
            MergeFields(is_merged=True, merged_into_id=target_id, merged_at=merged_at),
            expected_is_merged=False,
        )
        for child in children:
            self.ledger.update_merge_fields(
                child.id,
                MergeFields(is_merged=True, merged_into_id=target_id, merged_at=child.merged_at),
                expected_is_merged=True,
            )
        return merged, [c.id for c in children]

    @staticmethod
    def _validate_pair(source: LedgerTransaction, target: LedgerTransaction) -> None:
        if source.is_merged:
            raise AlreadyMergedError(
                f"Transaction {source.id} is already merged into {source.merged_into_id}"
            )
        if target.is_merged:
            raise AlreadyMergedError(
                f"Transaction {target.id} is merged into {target.merged_into_id}; "
                "merge into that transaction instead"
            )
        if source.account_id != target.account_id:
            raise CrossAccountError(
                f"Transaction {source.id} ({source.account_id}) and {target.id} "
                f"({target.account_id}) belong to different accounts"
            )

    def _scores_against(
        self, members: list[LedgerTransaction], other: LedgerTransaction
    ) -> Optional[dict[tuple[str, str], float]]:
        """Pair confidences of ``other`` with each member, or None if any pair fails."""
        scores: dict[tuple[str, str], float] = {}
        for member in members:
            candidate = self.compare(member, other)
            if candidate is None:
                return None
            scores[(member.id, other.id)] = candidate.confidence
        return scores

    def _confidence(self, similarity: float, gap: int) -> float:
        """Duplicate confidence in [0, 100] from similarity and date gap."""
        proximity = 1.0 - gap / (self.config.date_window_days + 1)
        return round(100 * (0.7 * similarity + 0.3 * proximity), 2)

    def _publish(self, event_type: EventType, **payload) -> None:
        self.events.publish(DomainEvent(type=event_type, payload=payload, occurred_at=self.clock()))
