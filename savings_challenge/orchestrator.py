"""
Main Orchestrator for Savings Challenge

This module ties the pure core to the shared document store and defines
the end-to-end flows the UI layer calls:
1. Create (target + days -> calendar -> unique code -> store)
2. Join (code -> add participant)
3. Pay (cell -> challenge write -> payer xp write)
4. Withdraw (amount -> balance check -> challenge write)
5. Resync (recompute a user's xp from every paid cell)

DESIGN DECISION: The store is last-writer-wins with no transactions.
Every mutation is a read-modify-write against the freshest snapshot:
- the pure operation re-checks its invariants on that snapshot
- the commit re-reads the document and refuses to write if its revision
  moved since our read (ConflictError)
- conflicts are retried from scratch, so a concurrent payment of the
  same cell surfaces as AlreadyPaidError rather than a silent overwrite

A payment touches two documents (challenge, then user). If the second
write fails the payment stands and the xp is repaired later by
resync_progress, which is idempotent.
"""

from collections.abc import Callable
from typing import Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from savings_challenge.audit import AuditLogger, create_correlation_id
from savings_challenge.config import ChallengeSettings, get_settings
from savings_challenge.core import (
    InsufficientBalanceError,
    InvalidScheduleError,
    add_participant,
    add_withdrawal,
    apply_xp,
    generate_code,
    level_for,
    mark_cell_paid,
    new_challenge,
    recompute_xp,
)
from savings_challenge.models.challenge import (
    Challenge,
    PaymentResult,
    UserProgress,
)
from savings_challenge.services.storage import (
    ConflictError,
    DocumentStore,
    GoogleSheetsDocumentStore,
    IdCollisionError,
    InMemoryDocumentStore,
    NotFoundError,
    StorageError,
)

T = TypeVar("T")

logger = structlog.get_logger()


class ChallengeService:
    """
    Store-backed operations on challenges.

    The store is injected; nothing here reaches for a global client.
    """

    def __init__(
        self,
        store: DocumentStore,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[ChallengeSettings] = None,
        code_factory: Callable[[int], str] = generate_code,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().challenge
        self._code_factory = code_factory

    @property
    def _challenges(self) -> str:
        return self._settings.challenges_collection

    @property
    def _users(self) -> str:
        return self._settings.users_collection

    # -- reads -----------------------------------------------------------

    async def get_challenge(self, code: str) -> Challenge:
        """
        Look a challenge up by its shareable code (case-insensitive).

        Raises:
            NotFoundError: If no challenge has this code
        """
        code = code.strip().upper()
        document = await self._store.get(self._challenges, code)
        if document is None:
            raise NotFoundError(f"Challenge not found: {code}")
        return Challenge.from_document(document)

    async def list_challenges_for(self, user_id: str) -> list[Challenge]:
        """Challenges the user takes part in, oldest first."""
        challenges = [
            c for c in await self._all_challenges() if user_id in c.participants
        ]
        challenges.sort(key=lambda c: c.created_at)
        return challenges

    async def get_progress(self, user_id: str) -> UserProgress:
        """The user's xp and level (a fresh record if the user has none yet)."""
        document = await self._store.get(self._users, user_id)
        if document is None:
            return UserProgress(id=user_id)
        return UserProgress.from_document(document)

    # -- flows -----------------------------------------------------------

    async def create_challenge(
        self,
        name: str,
        target_amount: int,
        days: int,
        creator: str,
        payment_qr: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Challenge:
        """
        Create a challenge under a fresh shareable code.

        A code that is already taken is rejected and a new one is drawn,
        up to code_max_attempts times.

        Raises:
            InvalidScheduleError: If no calendar exists for target and days
            IdCollisionError: If every code drawn was taken
        """
        correlation_id = correlation_id or create_correlation_id()

        if days > self._settings.max_days:
            raise InvalidScheduleError(
                target_amount,
                days,
                f"A challenge can last at most {self._settings.max_days} days",
            )

        challenge = new_challenge(
            name,
            target_amount,
            days,
            creator,
            code=self._code_factory(self._settings.code_length),
            minimum_days=self._settings.min_days,
            payment_qr=payment_qr,
        )

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(IdCollisionError),
            stop=stop_after_attempt(self._settings.code_max_attempts),
            reraise=True,
        ):
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                if attempt_number > 1:
                    code = self._code_factory(self._settings.code_length).upper()
                    challenge = challenge.model_copy(update={"id": code})
                if await self._store.get(self._challenges, challenge.id) is not None:
                    if self._audit_logger:
                        await self._audit_logger.log_code_collision(
                            challenge_id=challenge.id,
                            attempt=attempt_number,
                            correlation_id=correlation_id,
                        )
                    raise IdCollisionError(self._challenges, challenge.id)
                await self._store.put(self._challenges, challenge.id, challenge.to_document())

        if self._audit_logger:
            await self._audit_logger.log_challenge_created(
                challenge_id=challenge.id,
                name=challenge.name,
                target_amount=challenge.target_amount,
                days=challenge.days,
                creator=creator,
                correlation_id=correlation_id,
            )
        return challenge

    async def join_challenge(
        self,
        code: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Challenge:
        """
        Add the user to a challenge's participants.

        Joining twice is a no-op. A concurrent join by someone else is
        kept: the write is retried against the snapshot that has it.
        """
        correlation_id = correlation_id or create_correlation_id()

        def join(challenge: Challenge) -> tuple[Challenge, bool]:
            return add_participant(challenge, user_id), user_id not in challenge.participants

        challenge, joined = await self._read_modify_write(
            code, "join_challenge", join, correlation_id
        )
        if joined and self._audit_logger:
            await self._audit_logger.log_participant_joined(
                challenge_id=challenge.id,
                user_id=user_id,
                correlation_id=correlation_id,
            )
        return challenge

    async def mark_cell_paid(
        self,
        code: str,
        cell_id: int,
        payer: str,
        receipt_url: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> PaymentResult:
        """
        Pay one cell and credit its amount to the payer's xp.

        Raises:
            NotFoundError: If the challenge does not exist
            CellNotFoundError: If the cell does not exist
            AlreadyPaidError: If the cell is (or concurrently became) paid
            ConflictError: If the challenge kept changing under us
        """
        correlation_id = correlation_id or create_correlation_id()

        def pay(challenge: Challenge):
            payment = mark_cell_paid(challenge, cell_id, payer, receipt_url)
            return payment.challenge, payment

        challenge, payment = await self._read_modify_write(
            code, "mark_cell_paid", pay, correlation_id
        )

        if self._audit_logger:
            await self._audit_logger.log_cell_paid(
                challenge_id=challenge.id,
                cell_id=cell_id,
                amount=payment.amount,
                payer=payer,
                has_receipt=bool(receipt_url),
                correlation_id=correlation_id,
            )
            for milestone in payment.crossed_milestones:
                await self._audit_logger.log_milestone_reached(
                    challenge_id=challenge.id,
                    milestone=milestone,
                    paid_total=challenge.paid_total,
                    correlation_id=correlation_id,
                )

        result = PaymentResult(
            challenge=challenge,
            cell=payment.cell,
            amount=payment.amount,
            milestones=payment.crossed_milestones,
        )

        # Second, independent write. The payment above already stands, so
        # neither a failed write nor a corrupt user document may undo it.
        try:
            progress = await self.get_progress(payer)
            updated, leveled_up = apply_xp(progress, payment.amount)
            await self._store.put(self._users, payer, updated.to_document())
        except (StorageError, ValidationError) as e:
            if self._audit_logger:
                await self._audit_logger.log_progress_sync_failed(
                    user_id=payer,
                    challenge_id=challenge.id,
                    amount=payment.amount,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return result.model_copy(update={"progress_synced": False})

        if leveled_up and self._audit_logger:
            await self._audit_logger.log_level_up(
                user_id=payer,
                old_level=progress.level,
                new_level=updated.level,
                title=level_for(updated.xp).title,
                correlation_id=correlation_id,
            )
        return result.model_copy(update={"progress": updated, "leveled_up": leveled_up})

    async def add_withdrawal(
        self,
        code: str,
        amount: int,
        reason: str,
        author: str,
        correlation_id: Optional[UUID] = None,
    ) -> Challenge:
        """
        Take money out of the group's savings.

        The balance is checked against the freshest snapshot, so two
        members cannot both spend the same savings.

        Raises:
            InsufficientBalanceError: If amount exceeds the available balance
            ConflictError: If the challenge kept changing under us
        """
        correlation_id = correlation_id or create_correlation_id()

        def withdraw(challenge: Challenge) -> tuple[Challenge, None]:
            return add_withdrawal(challenge, amount, reason, author), None

        try:
            challenge, _ = await self._read_modify_write(
                code, "add_withdrawal", withdraw, correlation_id
            )
        except InsufficientBalanceError as e:
            if self._audit_logger:
                await self._audit_logger.log_withdrawal_rejected(
                    challenge_id=e.challenge_id,
                    requested=e.requested,
                    available=e.available,
                    author=author,
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            withdrawal = challenge.withdrawals[-1]
            await self._audit_logger.log_withdrawal_added(
                challenge_id=challenge.id,
                withdrawal_id=withdrawal.id,
                amount=withdrawal.amount,
                author=author,
                correlation_id=correlation_id,
            )
        return challenge

    async def resync_progress(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> UserProgress:
        """
        Recompute a user's xp from every cell they paid and store it.

        Repairs a payment whose xp write failed. Safe to run any time.
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            xp = recompute_xp(user_id, await self._all_challenges())
            progress = await self.get_progress(user_id)
            updated = progress.model_copy(update={"xp": xp, "level": level_for(xp).level})
            await self._store.put(self._users, user_id, updated.to_document())
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="progress_resync_failed",
                    error_message=str(e),
                    details={"user_id": user_id},
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_progress_resynced(
                user_id=user_id,
                old_xp=progress.xp,
                new_xp=xp,
                correlation_id=correlation_id,
            )
        return updated

    # -- helpers ---------------------------------------------------------

    async def _all_challenges(self) -> list[Challenge]:
        challenges = []
        for document in await self._store.list_documents(self._challenges):
            try:
                challenges.append(Challenge.from_document(document))
            except ValidationError as e:
                # One corrupt document must not hide every other challenge
                logger.warning(
                    "challenge_document_invalid",
                    challenge_id=document.get("id"),
                    error=str(e),
                )
        return challenges

    async def _read_modify_write(
        self,
        code: str,
        operation: str,
        mutate: Callable[[Challenge], tuple[Challenge, T]],
        correlation_id: UUID,
    ) -> tuple[Challenge, T]:
        """
        Apply `mutate` to the freshest snapshot and commit it.

        Retries on ConflictError; any other error from `mutate` (an
        invariant failing on the fresh snapshot) is raised at once.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ConflictError),
            stop=stop_after_attempt(self._settings.conflict_max_attempts),
            wait=wait_random(min=0, max=0.05),
            reraise=True,
        ):
            with attempt:
                base = await self.get_challenge(code)
                updated, extra = mutate(base)
                try:
                    committed = await self._commit(base, updated)
                except ConflictError:
                    if self._audit_logger:
                        await self._audit_logger.log_write_conflict(
                            challenge_id=base.id,
                            operation=operation,
                            attempt=attempt.retry_state.attempt_number,
                            correlation_id=correlation_id,
                        )
                    raise
        return committed, extra

    async def _commit(self, base: Challenge, updated: Challenge) -> Challenge:
        """
        Write `updated` unless the stored document moved past `base`.

        An unchanged snapshot is not written at all.
        """
        if updated == base:
            return base

        current = await self._store.get(self._challenges, base.id)
        if current is None:
            raise NotFoundError(f"Challenge not found: {base.id}")
        found_revision = current.get("revision", 0)
        if found_revision != base.revision:
            raise ConflictError(self._challenges, base.id, base.revision, found_revision)

        committed = updated.model_copy(update={"revision": base.revision + 1})
        await self._store.put(self._challenges, committed.id, committed.to_document())
        return committed


def create_store() -> DocumentStore:
    """Build the document store selected by configuration."""
    backend = get_settings().app.storage_backend
    if backend == "google_sheets":
        return GoogleSheetsDocumentStore()
    return InMemoryDocumentStore()


def create_app_components(
    store: Optional[DocumentStore] = None,
) -> tuple[ChallengeService, AuditLogger]:
    """
    Factory function to create all application components.

    Args:
        store: Store to use. Defaults to the configured backend.

    Returns:
        (challenge_service, audit_logger)
    """
    settings = get_settings().challenge
    store = store or create_store()
    audit_logger = AuditLogger(store, collection=settings.audit_collection)

    logger.info(
        "app_components_created",
        store=type(store).__name__,
        min_days=settings.min_days,
    )

    service = ChallengeService(
        store=store,
        audit_logger=audit_logger,
        settings=settings,
    )
    return service, audit_logger
