"""
Audit Logger

DESIGN DECISION: Every accepted change to a shared challenge is logged.
This provides:
1. Traceability of who paid, joined and withdrew
2. Debugging capability when concurrent writers collide
3. A record of partial failures that need a resync

The audit logger:
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from savings_challenge.models.audit import AuditEvent, AuditEventBuilder
from savings_challenge.services.storage import DocumentStore


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The document store's audit collection (for the group's history)
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        collection: str = "audit",
    ):
        """
        Initialize audit logger.

        Args:
            store: Document store for persistence.
                   If None, only logs locally.
            collection: Collection receiving the events
        """
        self._store = store
        self._collection = collection
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to the store if available.

        Returns True if the store write succeeded (or no store configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._store:
            try:
                await self._store.put(
                    self._collection, str(event.event_id), event.to_document()
                )
                return True
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_challenge_created(
        self,
        challenge_id: str,
        name: str,
        target_amount: int,
        days: int,
        creator: str,
        correlation_id: UUID,
    ) -> None:
        """Log challenge creation."""
        await self.log(AuditEventBuilder.challenge_created(
            challenge_id=challenge_id,
            name=name,
            target_amount=target_amount,
            days=days,
            creator=creator,
            correlation_id=correlation_id,
        ))

    async def log_code_collision(
        self,
        challenge_id: str,
        attempt: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.code_collision(
            challenge_id=challenge_id,
            attempt=attempt,
            correlation_id=correlation_id,
        ))

    async def log_participant_joined(
        self,
        challenge_id: str,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.participant_joined(
            challenge_id=challenge_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_cell_paid(
        self,
        challenge_id: str,
        cell_id: int,
        amount: int,
        payer: str,
        has_receipt: bool,
        correlation_id: UUID,
    ) -> None:
        """Log a cell payment."""
        await self.log(AuditEventBuilder.cell_paid(
            challenge_id=challenge_id,
            cell_id=cell_id,
            amount=amount,
            payer=payer,
            has_receipt=has_receipt,
            correlation_id=correlation_id,
        ))

    async def log_milestone_reached(
        self,
        challenge_id: str,
        milestone: float,
        paid_total: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.milestone_reached(
            challenge_id=challenge_id,
            milestone=milestone,
            paid_total=paid_total,
            correlation_id=correlation_id,
        ))

    async def log_withdrawal_added(
        self,
        challenge_id: str,
        withdrawal_id: str,
        amount: int,
        author: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.withdrawal_added(
            challenge_id=challenge_id,
            withdrawal_id=withdrawal_id,
            amount=amount,
            author=author,
            correlation_id=correlation_id,
        ))

    async def log_withdrawal_rejected(
        self,
        challenge_id: str,
        requested: int,
        available: int,
        author: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.withdrawal_rejected(
            challenge_id=challenge_id,
            requested=requested,
            available=available,
            author=author,
            correlation_id=correlation_id,
        ))

    async def log_level_up(
        self,
        user_id: str,
        old_level: int,
        new_level: int,
        title: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.level_up(
            user_id=user_id,
            old_level=old_level,
            new_level=new_level,
            title=title,
            correlation_id=correlation_id,
        ))

    async def log_progress_sync_failed(
        self,
        user_id: str,
        challenge_id: str,
        amount: int,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a payment whose xp write was lost."""
        await self.log(AuditEventBuilder.progress_sync_failed(
            user_id=user_id,
            challenge_id=challenge_id,
            amount=amount,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_progress_resynced(
        self,
        user_id: str,
        old_xp: int,
        new_xp: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.progress_resynced(
            user_id=user_id,
            old_xp=old_xp,
            new_xp=new_xp,
            correlation_id=correlation_id,
        ))

    async def log_write_conflict(
        self,
        challenge_id: str,
        operation: str,
        attempt: int,
        correlation_id: UUID,
    ) -> None:
        """Log a stale write that will be retried."""
        await self.log(AuditEventBuilder.write_conflict(
            challenge_id=challenge_id,
            operation=operation,
            attempt=attempt,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., paying a cell).
    Pass it through all subsequent operations.
    """
    return uuid4()
