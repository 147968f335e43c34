"""
Audit Models for Savings Challenge

Every change to a shared challenge is logged for audit purposes.
This provides:
1. Traceability of who paid, joined or withdrew
2. Debugging information when concurrent writers collide
3. A record of partial failures that need repair

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Challenge lifecycle
    CHALLENGE_CREATED = "challenge_created"
    CODE_COLLISION = "code_collision"
    PARTICIPANT_JOINED = "participant_joined"

    # Ledger
    CELL_PAID = "cell_paid"
    MILESTONE_REACHED = "milestone_reached"
    WITHDRAWAL_ADDED = "withdrawal_added"
    WITHDRAWAL_REJECTED = "withdrawal_rejected"

    # Progression
    LEVEL_UP = "level_up"
    PROGRESS_SYNC_FAILED = "progress_sync_failed"
    PROGRESS_RESYNCED = "progress_resynced"

    # Concurrency and system events
    WRITE_CONFLICT = "write_conflict"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every accepted mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'challenge', 'user')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Who triggered it
    actor_id: Optional[str] = Field(
        default=None,
        description="User ID of the participant behind the action"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., payment and xp update)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_document(self) -> dict:
        """Shape written to the audit collection."""
        return self.model_dump(mode="json")


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.cell_paid(challenge_id, cell_id, amount, payer, cid)
        event = AuditEventBuilder.write_conflict(challenge_id, "mark_cell_paid", 2, cid)
    """

    @staticmethod
    def challenge_created(
        challenge_id: str,
        name: str,
        target_amount: int,
        days: int,
        creator: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHALLENGE_CREATED,
            entity_type="challenge",
            entity_id=challenge_id,
            actor_id=creator,
            correlation_id=correlation_id,
            description=f"Challenge created: {name}",
            details={
                "target_amount": target_amount,
                "days": days,
            },
        )

    @staticmethod
    def code_collision(
        challenge_id: str,
        attempt: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CODE_COLLISION,
            severity=AuditSeverity.WARNING,
            entity_type="challenge",
            entity_id=challenge_id,
            correlation_id=correlation_id,
            description=f"Challenge code {challenge_id} already taken",
            details={"attempt": attempt},
        )

    @staticmethod
    def participant_joined(
        challenge_id: str,
        user_id: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARTICIPANT_JOINED,
            entity_type="challenge",
            entity_id=challenge_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"{user_id} joined challenge {challenge_id}",
        )

    @staticmethod
    def cell_paid(
        challenge_id: str,
        cell_id: int,
        amount: int,
        payer: str,
        correlation_id: UUID,
        has_receipt: bool = False
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CELL_PAID,
            entity_type="challenge",
            entity_id=challenge_id,
            actor_id=payer,
            correlation_id=correlation_id,
            description=f"Cell {cell_id} paid: {amount}",
            details={
                "cell_id": cell_id,
                "amount": amount,
                "has_receipt": has_receipt,
            },
        )

    @staticmethod
    def milestone_reached(
        challenge_id: str,
        milestone: float,
        paid_total: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MILESTONE_REACHED,
            entity_type="challenge",
            entity_id=challenge_id,
            correlation_id=correlation_id,
            description=f"Milestone reached: {milestone:.0%}",
            details={
                "milestone": milestone,
                "paid_total": paid_total,
            },
        )

    @staticmethod
    def withdrawal_added(
        challenge_id: str,
        withdrawal_id: str,
        amount: int,
        author: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WITHDRAWAL_ADDED,
            entity_type="challenge",
            entity_id=challenge_id,
            actor_id=author,
            correlation_id=correlation_id,
            description=f"Withdrawal of {amount}",
            details={
                "withdrawal_id": withdrawal_id,
                "amount": amount,
            },
        )

    @staticmethod
    def withdrawal_rejected(
        challenge_id: str,
        requested: int,
        available: int,
        author: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WITHDRAWAL_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="challenge",
            entity_id=challenge_id,
            actor_id=author,
            correlation_id=correlation_id,
            description=f"Withdrawal of {requested} rejected, only {available} available",
            details={
                "requested": requested,
                "available": available,
            },
        )

    @staticmethod
    def level_up(
        user_id: str,
        old_level: int,
        new_level: int,
        title: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEVEL_UP,
            entity_type="user",
            entity_id=user_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"Level up: {old_level} -> {new_level} ({title})",
            details={
                "old_level": old_level,
                "new_level": new_level,
                "title": title,
            },
        )

    @staticmethod
    def progress_sync_failed(
        user_id: str,
        challenge_id: str,
        amount: int,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROGRESS_SYNC_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description="Payment saved but xp update failed; resync required",
            details={
                "challenge_id": challenge_id,
                "amount": amount,
            },
            error_message=error_message,
        )

    @staticmethod
    def progress_resynced(
        user_id: str,
        old_xp: int,
        new_xp: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROGRESS_RESYNCED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Progress recomputed: {old_xp} -> {new_xp} xp",
            details={
                "old_xp": old_xp,
                "new_xp": new_xp,
            },
        )

    @staticmethod
    def write_conflict(
        challenge_id: str,
        operation: str,
        attempt: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WRITE_CONFLICT,
            severity=AuditSeverity.WARNING,
            entity_type="challenge",
            entity_id=challenge_id,
            correlation_id=correlation_id,
            description=f"Stale write detected during {operation}",
            details={
                "operation": operation,
                "attempt": attempt,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
