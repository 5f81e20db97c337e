"""
Reconciliation session service.

Drives a session through ``STARTED -> IN_PROGRESS -> COMPLETED | ABORTED``.
Every operation validates its input first, then reads, checks and writes the
session inside one ``SessionRepository.atomic()`` scope, so a failed call
leaves no partial effect and two concurrent transitions cannot both succeed.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, Union
import logging

from ..config import ReconConfig
from ..events import DomainEvent, EventBus, EventType
from ..matching.engine import MatchingEngine
from ..models.session import (
    AccountReconciliationStatus,
    Adjustment,
    ReconciliationMatch,
    ReconciliationSession,
    ReconciliationSummary,
    SessionStatus,
    parse_adjustments,
    parse_statement_balance,
)
from ..models.transaction import LedgerTransaction, StatementTransaction
from ..stores.interface import AccountStore, LedgerStore, SessionRepository
from ..utils.exceptions import (
    AlreadyMatchedError,
    InvalidInputError,
    NoMatchFoundError,
    UnresolvedTransactionsError,
)
from ..utils.money import (
    compute_balance,
    compute_variance,
    sum_amounts,
    to_date,
    to_decimal,
)

logger = logging.getLogger(__name__)

StatementInput = Union[StatementTransaction, dict[str, Any]]
AdjustmentInput = Union[Adjustment, dict[str, Any]]


class ReconciliationService:
    """Session lifecycle, matching operations and balance computation."""

    def __init__(
        self,
        sessions: SessionRepository,
        ledger: LedgerStore,
        accounts: AccountStore,
        config: Optional[ReconConfig] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.sessions = sessions
        self.ledger = ledger
        self.accounts = accounts
        self.config = config or ReconConfig()
        self.events = events or EventBus()
        self.clock = clock
        self.matcher = MatchingEngine(self.config.matching, clock=clock)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        account_id: str,
        start_date: Union[date, str],
        end_date: Union[date, str],
        statement_balance: Any,
        notes: Optional[str] = None,
    ) -> ReconciliationSession:
        """
        Open a reconciliation session for an account.

        Raises:
            InvalidInputError: If the account id, dates or balance are malformed
            NotFoundError: If the account does not exist
            ConflictingSessionError: If the account already has an open session
        """
        if not account_id or not str(account_id).strip():
            raise InvalidInputError("account_id is required")
        start = to_date(start_date, "start_date")
        end = to_date(end_date, "end_date")
        if start > end:
            raise InvalidInputError(f"start_date {start} is after end_date {end}")
        balance = parse_statement_balance(statement_balance)

        # Fails with NotFoundError for unknown accounts before anything is written
        self.accounts.get_opening_balance(account_id, start)

        session = ReconciliationSession(
            account_id=account_id,
            start_date=start,
            end_date=end,
            statement_balance=balance,
            notes=notes,
            created_at=self.clock(),
        )
        with self.sessions.atomic():
            created = self.sessions.create(session)

        self.accounts.set_reconciliation_status(
            account_id, AccountReconciliationStatus.IN_PROGRESS
        )
        logger.info(
            f"Started reconciliation {created.id} for account {account_id} "
            f"({start} to {end}, statement balance {balance})"
        )
        self._publish(
            EventType.SESSION_STARTED,
            session_id=created.id,
            account_id=account_id,
            start_date=start,
            end_date=end,
            statement_balance=balance,
        )
        return created

    def upload_statement(
        self, session_id: str, transactions: Iterable[StatementInput]
    ) -> ReconciliationSession:
        """
        Attach statement lines and run automatic matching.

        A repeated upload replaces the unmatched lines only. Matched lines and
        their matches are kept, and an uploaded line identical to a kept one
        is not added a second time. Exclusions and staged adjustments on a
        replaced line move to its identical counterpart in the new upload;
        adjustments whose line is gone are dropped.

        Raises:
            InvalidInputError: If any statement line is malformed
            InvalidSessionStateError: If the session is closed
        """
        lines = [self._parse_statement_line(t) for t in transactions]

        with self.sessions.atomic():
            session = self.sessions.get(session_id)
            session.ensure_open("upload statement")

            matched_ids = session.matched_line_ids
            kept = [l for l in session.statement_transactions if l.id in matched_ids]
            unclaimed = list(kept)
            incoming: list[StatementTransaction] = []
            for line in lines:
                twin = next((k for k in unclaimed if k.same_line_as(line)), None)
                if twin is not None:
                    unclaimed.remove(twin)
                    continue
                incoming.append(line)

            replaced_lines = [
                l for l in session.statement_transactions if l.id not in matched_ids
            ]
            replaced = len(replaced_lines)
            dropped = self._carry_over_resolutions(session, replaced_lines, incoming)
            session.statement_transactions = kept + incoming
            session.mark_in_progress()
            proposals = self._auto_match(session)
            saved = self.sessions.save(session)

        logger.info(
            f"Session {session_id}: uploaded {len(lines)} statement lines "
            f"({len(incoming)} new, {replaced} replaced), {len(proposals)} auto-matched"
        )
        for adjustment in dropped:
            logger.warning(
                f"Session {session_id}: dropped staged {adjustment.type} adjustment "
                f"{adjustment.amount} ({adjustment.reason}); its statement line is not "
                "in the new upload"
            )
        self._publish(
            EventType.STATEMENT_UPLOADED,
            session_id=session_id,
            uploaded=len(lines),
            added=len(incoming),
            replaced=replaced,
        )
        for match in proposals:
            self._publish_match(session_id, match)
        return saved

    def auto_match(self, session_id: str) -> list[ReconciliationMatch]:
        """
        Run automatic matching on demand for the session's open lines.

        Raises:
            InvalidSessionStateError: If the session is closed
        """
        with self.sessions.atomic():
            session = self.sessions.get(session_id)
            session.ensure_open("auto-match")
            session.mark_in_progress()
            proposals = self._auto_match(session)
            self.sessions.save(session)

        for match in proposals:
            self._publish_match(session_id, match)
        return proposals

    def complete(
        self,
        session_id: str,
        notes: Optional[str] = None,
        adjustments: Optional[list[AdjustmentInput]] = None,
        force: bool = False,
    ) -> ReconciliationSummary:
        """
        Close the session and compute its variance.

        Completion succeeds whatever the variance. Staged adjustments from
        ``adjust_balance`` are persisted together with ``adjustments``.

        Raises:
            InvalidInputError: If an adjustment is malformed
            InvalidSessionStateError: If the session is closed or changed concurrently
            UnresolvedTransactionsError: If statement lines are unresolved and
                ``force`` is not set
        """
        new_adjustments = parse_adjustments(adjustments)

        with self.sessions.atomic():
            session = self.sessions.get(session_id)
            session.ensure_open("complete")

            all_adjustments = session.pending_adjustments + new_adjustments
            for adjustment in all_adjustments:
                if adjustment.statement_line_id:
                    session.get_statement_line(adjustment.statement_line_id)

            live_matches, matched_sum = self._live_matches(session)
            unresolved = self._unresolved_lines(session, live_matches, all_adjustments)
            if unresolved and not force:
                raise UnresolvedTransactionsError(
                    f"{len(unresolved)} statement transaction(s) are neither matched, "
                    "excluded nor covered by an adjustment",
                    unresolved_ids=[line.id for line in unresolved],
                )

            opening = self.accounts.get_opening_balance(session.account_id, session.start_date)
            adjustment_sum = sum_amounts(a.amount for a in all_adjustments)
            computed = compute_balance(opening, matched_sum, adjustment_sum)
            variance = compute_variance(session.statement_balance, computed)

            session.notes = self._completion_notes(session.notes, notes, unresolved)
            session.adjustments = all_adjustments
            session.pending_adjustments = []
            session.opening_balance = opening
            session.matched_sum = matched_sum
            session.adjustment_sum = adjustment_sum
            session.computed_balance = computed
            session.variance = variance
            session.unresolved_ids = [line.id for line in unresolved]
            session.status = SessionStatus.COMPLETED
            session.completed_at = self.clock()
            saved = self.sessions.save(session)

        self.accounts.set_reconciliation_status(
            saved.account_id,
            AccountReconciliationStatus.RECONCILED,
            reconciled_at=saved.completed_at,
            reconciled_balance=computed,
        )
        logger.info(
            f"Completed reconciliation {session_id}: computed balance {computed}, "
            f"variance {variance}"
        )
        if unresolved:
            logger.warning(
                f"Session {session_id} was force-completed with "
                f"{len(unresolved)} unresolved statement transaction(s)"
            )
        self._publish(
            EventType.SESSION_COMPLETED,
            session_id=session_id,
            computed_balance=computed,
            variance=variance,
            forced=bool(unresolved),
        )
        return self._build_summary(
            saved, opening, matched_sum, adjustment_sum, saved.unresolved_ids
        )

    def abort(self, session_id: str, reason: Optional[str] = None) -> ReconciliationSession:
        """
        Abandon an open session.

        Unmatched statement lines and staged adjustments are discarded. No
        ledger transaction is read or written.

        Raises:
            InvalidSessionStateError: If the session is already closed
        """
        with self.sessions.atomic():
            session = self.sessions.get(session_id)
            session.ensure_open("abort")

            matched_ids = session.matched_line_ids
            session.statement_transactions = [
                l for l in session.statement_transactions if l.id in matched_ids
            ]
            session.pending_adjustments = []
            if reason:
                session.notes = _append_note(session.notes, f"Aborted: {reason}")
            session.status = SessionStatus.ABORTED
            saved = self.sessions.save(session)

        self.accounts.set_reconciliation_status(
            saved.account_id, AccountReconciliationStatus.NONE
        )
        logger.info(f"Aborted reconciliation {session_id}")
        self._publish(EventType.SESSION_ABORTED, session_id=session_id, reason=reason or "")
        return saved

    # ------------------------------------------------------------------
    # Manual resolution
    # ------------------------------------------------------------------

    def match_transaction(
        self,
        session_id: str,
        reconciliation_transaction_id: str,
        transaction_id: str,
        is_manual: bool = True,
        notes: Optional[str] = None,
    ) -> ReconciliationMatch:
        """
        Pair a statement line with a ledger transaction chosen by the caller.

        Raises:
            InvalidInputError: If an id is missing, the line is excluded or
                the transaction is merged
            NotFoundError: If the line or the transaction does not exist
            InvalidSessionStateError: If the session is closed
            AccountMismatchError: If the transaction is on another account
            AlreadyMatchedError: If either side is already matched
        """
        if not reconciliation_transaction_id or not transaction_id:
            raise InvalidInputError("Both statement and ledger transaction ids are required")

        with self.sessions.atomic():
            session = self.sessions.get(session_id)
            session.ensure_open("match transactions")
            transaction = self.ledger.get_by_id(transaction_id)
            line = self.matcher.validate_manual_match(
                session, reconciliation_transaction_id, transaction
            )
            match = self.matcher.build_manual_match(line, transaction, is_manual, notes)
            session.matches.append(match)
            session.mark_in_progress()
            self.sessions.save(session)

        self._publish_match(session_id, match)
        return match

    def unmatch_transaction(
        self, session_id: str, reconciliation_transaction_id: str
    ) -> ReconciliationMatch:
        """
        Remove the match of a statement line. The ledger is not touched.

        Raises:
            NotFoundError: If the line is not part of the session
            NoMatchFoundError: If the line has no match
            InvalidSessionStateError: If the session is closed
        """
        with self.sessions.atomic():
            session = self.sessions.get(session_id)
            session.ensure_open("unmatch transactions")
            session.get_statement_line(reconciliation_transaction_id)
            match = session.match_for_line(reconciliation_transaction_id)
            if match is None:
                raise NoMatchFoundError(
                    f"Statement transaction {reconciliation_transaction_id} has no match"
                )
            session.matches.remove(match)
            self.sessions.save(session)

        self._publish(
            EventType.TRANSACTION_UNMATCHED,
            session_id=session_id,
            reconciliation_transaction_id=reconciliation_transaction_id,
            transaction_id=match.transaction_id,
        )
        return match

    def exclude_statement_line(
        self, session_id: str, reconciliation_transaction_id: str, reason: str
    ) -> StatementTransaction:
        """
        Resolve a statement line without a ledger counterpart.

        Raises:
            InvalidInputError: If no reason is given
            AlreadyMatchedError: If the line is matched
        """
        if not reason or not reason.strip():
            raise InvalidInputError("An exclusion reason is required")

        with self.sessions.atomic():
            session = self.sessions.get(session_id)
            session.ensure_open("exclude statement transactions")
            line = session.get_statement_line(reconciliation_transaction_id)
            if session.match_for_line(line.id) is not None:
                raise AlreadyMatchedError(
                    f"Statement transaction {line.id} is matched; unmatch it first"
                )
            line.excluded = True
            line.exclusion_reason = reason.strip()
            session.mark_in_progress()
            self.sessions.save(session)

        self._publish(
            EventType.STATEMENT_LINE_EXCLUDED,
            session_id=session_id,
            reconciliation_transaction_id=line.id,
            reason=line.exclusion_reason,
        )
        return line

    def include_statement_line(
        self, session_id: str, reconciliation_transaction_id: str
    ) -> StatementTransaction:
        """Undo an exclusion so the line is pending again."""
        with self.sessions.atomic():
            session = self.sessions.get(session_id)
            session.ensure_open("include statement transactions")
            line = session.get_statement_line(reconciliation_transaction_id)
            if not line.excluded:
                raise InvalidInputError(f"Statement transaction {line.id} is not excluded")
            line.excluded = False
            line.exclusion_reason = None
            self.sessions.save(session)

        self._publish(
            EventType.STATEMENT_LINE_INCLUDED,
            session_id=session_id,
            reconciliation_transaction_id=line.id,
        )
        return line

    def adjust_balance(
        self,
        session_id: str,
        adjustment_type: str,
        amount: Any,
        reason: str,
        statement_line_id: Optional[str] = None,
    ) -> Adjustment:
        """
        Stage an adjustment; it is persisted when the session completes.

        Raises:
            InvalidInputError: If the adjustment is malformed
            NotFoundError: If ``statement_line_id`` is not part of the session
            InvalidSessionStateError: If the session is closed
        """
        adjustment = Adjustment.from_dict(
            {
                "type": adjustment_type,
                "amount": amount,
                "reason": reason,
                "statement_line_id": statement_line_id,
            }
        )
        adjustment.created_at = self.clock()

        with self.sessions.atomic():
            session = self.sessions.get(session_id)
            session.ensure_open("adjust balance")
            if adjustment.statement_line_id:
                session.get_statement_line(adjustment.statement_line_id)
            session.pending_adjustments.append(adjustment)
            session.mark_in_progress()
            self.sessions.save(session)

        self._publish(
            EventType.BALANCE_ADJUSTED,
            session_id=session_id,
            type=adjustment.type,
            amount=adjustment.amount,
            reason=adjustment.reason,
        )
        return adjustment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> ReconciliationSession:
        return self.sessions.get(session_id)

    def get_history(self, account_id: str) -> list[ReconciliationSession]:
        """All sessions of an account, newest first."""
        return self.sessions.list_for_account(account_id)

    def summarize(self, session_id: str) -> ReconciliationSummary:
        """
        Balance and match statistics.

        For an open session the figures are provisional: they use the current
        matches and staged adjustments and the opening balance as of now. A
        completed session reports the figures stored when it was completed.
        """
        session = self.sessions.get(session_id)

        if session.status == SessionStatus.COMPLETED:
            return self._build_summary(
                session,
                session.opening_balance,
                session.matched_sum,
                session.adjustment_sum,
                session.unresolved_ids,
            )

        live_matches, matched_sum = self._live_matches(session)
        adjustments = session.pending_adjustments
        unresolved = self._unresolved_lines(session, live_matches, adjustments)
        opening = self.accounts.get_opening_balance(session.account_id, session.start_date)
        return self._build_summary(
            session,
            opening,
            matched_sum,
            sum_amounts(a.amount for a in adjustments),
            [line.id for line in unresolved],
        )

    def unmatched_ledger_transactions(self, session_id: str) -> list[LedgerTransaction]:
        """Ledger transactions in the session window with no match."""
        session = self.sessions.get(session_id)
        start, end = self.matcher.candidate_window(session.start_date, session.end_date)
        matched = session.matched_transaction_ids
        return [
            t
            for t in self.ledger.find_by_account_and_date_range(session.account_id, start, end)
            if t.id not in matched
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _auto_match(self, session: ReconciliationSession) -> list[ReconciliationMatch]:
        start, end = self.matcher.candidate_window(session.start_date, session.end_date)
        taken = session.matched_transaction_ids
        candidates = [
            t
            for t in self.ledger.find_by_account_and_date_range(session.account_id, start, end)
            if t.id not in taken
        ]
        proposals = self.matcher.propose_matches(session.open_lines(), candidates)
        session.matches.extend(proposals)
        return proposals

    @staticmethod
    def _carry_over_resolutions(
        session: ReconciliationSession,
        replaced: list[StatementTransaction],
        incoming: list[StatementTransaction],
    ) -> list[Adjustment]:
        """
        Move exclusions and linked adjustments onto re-uploaded twin lines.

        Returns:
            Staged adjustments dropped because their line has no twin
        """
        unclaimed = list(incoming)
        twins: dict[str, StatementTransaction] = {}
        for old in replaced:
            twin = next((n for n in unclaimed if n.same_line_as(old)), None)
            if twin is None:
                continue
            unclaimed.remove(twin)
            twins[old.id] = twin
            if old.excluded:
                twin.excluded = True
                twin.exclusion_reason = old.exclusion_reason

        replaced_ids = {line.id for line in replaced}
        kept: list[Adjustment] = []
        dropped: list[Adjustment] = []
        for adjustment in session.pending_adjustments:
            line_id = adjustment.statement_line_id
            if line_id in replaced_ids:
                if line_id not in twins:
                    dropped.append(adjustment)
                    continue
                adjustment.statement_line_id = twins[line_id].id
            kept.append(adjustment)
        session.pending_adjustments = kept
        return dropped

    def _live_matches(
        self, session: ReconciliationSession
    ) -> tuple[list[ReconciliationMatch], Decimal]:
        """
        Matches whose ledger transaction still counts towards balances.

        A transaction merged away after it was matched no longer counts, and
        its statement line is unresolved again.
        """
        live: list[ReconciliationMatch] = []
        amounts: list[Decimal] = []
        for match in session.matches:
            transaction = self.ledger.get_by_id(match.transaction_id)
            if transaction.is_merged:
                logger.warning(
                    f"Session {session.id}: matched transaction {transaction.id} has been "
                    f"merged into {transaction.merged_into_id}"
                )
                continue
            live.append(match)
            amounts.append(transaction.amount)
        return live, sum_amounts(amounts)

    @staticmethod
    def _unresolved_lines(
        session: ReconciliationSession,
        live_matches: list[ReconciliationMatch],
        adjustments: list[Adjustment],
    ) -> list[StatementTransaction]:
        """
        Lines neither matched, excluded nor covered by an adjustment.

        An adjustment linked to a line covers it. Unlinked adjustments each
        cover one remaining line of exactly the same amount, in upload order.
        """
        matched = {m.reconciliation_transaction_id for m in live_matches}
        linked = {a.statement_line_id for a in adjustments if a.statement_line_id}
        unlinked = [a for a in adjustments if not a.statement_line_id]

        unresolved: list[StatementTransaction] = []
        for line in session.statement_transactions:
            if line.id in matched or line.excluded or line.id in linked:
                continue
            cover = next((a for a in unlinked if a.amount == line.amount), None)
            if cover is not None:
                unlinked.remove(cover)
                continue
            unresolved.append(line)
        return unresolved

    @staticmethod
    def _completion_notes(
        current: Optional[str],
        notes: Optional[str],
        unresolved: list[StatementTransaction],
    ) -> Optional[str]:
        result = notes if notes else current
        if unresolved:
            items = "; ".join(
                f"{line.date} {line.amount} {line.description} [{line.id}]"
                for line in unresolved
            )
            result = _append_note(
                result,
                f"Forced completion with {len(unresolved)} unresolved statement "
                f"transaction(s): {items}",
            )
        return result

    def _build_summary(
        self,
        session: ReconciliationSession,
        opening: Decimal,
        matched_sum: Decimal,
        adjustment_sum: Decimal,
        unresolved_ids: list[str],
    ) -> ReconciliationSummary:
        computed = compute_balance(opening, matched_sum, adjustment_sum)
        by_confidence: dict[str, int] = {}
        for match in session.matches:
            key = match.confidence.value if match.confidence else "unknown"
            by_confidence[key] = by_confidence.get(key, 0) + 1

        return ReconciliationSummary(
            session_id=session.id,
            account_id=session.account_id,
            status=session.status,
            start_date=session.start_date,
            end_date=session.end_date,
            statement_balance=session.statement_balance,
            opening_balance=opening,
            matched_sum=matched_sum,
            adjustment_sum=adjustment_sum,
            computed_balance=computed,
            variance=compute_variance(session.statement_balance, computed),
            statement_transaction_count=session.statement_transaction_count,
            matched_count=session.matched_count,
            excluded_count=session.excluded_count,
            unmatched_count=session.unmatched_count,
            matches_by_confidence=by_confidence,
            unresolved_ids=list(unresolved_ids),
            completed_at=session.completed_at,
        )

    @staticmethod
    def _parse_statement_line(item: StatementInput) -> StatementTransaction:
        if isinstance(item, StatementTransaction):
            return StatementTransaction(
                amount=to_decimal(item.amount),
                date=to_date(item.date),
                description=item.description,
                reference_number=item.reference_number,
            )
        return StatementTransaction.from_dict(item)

    def _publish_match(self, session_id: str, match: ReconciliationMatch) -> None:
        self._publish(
            EventType.TRANSACTION_MATCHED,
            session_id=session_id,
            reconciliation_transaction_id=match.reconciliation_transaction_id,
            transaction_id=match.transaction_id,
            is_manual=match.is_manual,
            confidence=match.confidence.value if match.confidence else "",
        )

    def _publish(self, event_type: EventType, **payload: Any) -> None:
        self.events.publish(DomainEvent(type=event_type, payload=payload, occurred_at=self.clock()))


def _append_note(existing: Optional[str], note: str) -> str:
    return f"{existing}\n{note}" if existing else note
