"""
Core Data Models for Savings Challenge

These models define the strict schemas for every record shared through
the document store. They are designed to:
1. Enforce type safety at runtime
2. Reject malformed documents at the storage boundary
3. Be serializable back to the document shape other clients expect
4. Keep derived totals derived (never stored as ground truth)

DESIGN DECISION: Documents in the store use camelCase keys (targetAmount,
isPaid, paidBy...). Python code uses snake_case attributes. The alias
generator bridges the two so both directions go through validation.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


# Banknotes usable in a schedule, largest first
DENOMINATIONS: tuple[int, ...] = (200, 100, 50, 20, 10)
SMALLEST_DENOMINATION = DENOMINATIONS[-1]
LARGEST_DENOMINATION = DENOMINATIONS[0]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_DOCUMENT_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    str_strip_whitespace=True,
)


class DocumentModel(BaseModel):
    """Base for records that round-trip through the document store."""

    model_config = _DOCUMENT_CONFIG

    @classmethod
    def from_document(cls, document: dict[str, Any]):
        """Validate a raw store document."""
        return cls.model_validate(document)

    def to_document(self) -> dict[str, Any]:
        """Dump to the JSON-safe, camelCase shape written to the store."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class Cell(DocumentModel):
    """
    One deposit slot on the challenge calendar.

    A cell goes from unpaid to paid exactly once. The payment fields
    are either all empty (unpaid) or carry who paid and when.
    """

    id: int = Field(
        ...,
        ge=0,
        description="Calendar position, 0..days-1"
    )
    amount: int = Field(
        ...,
        description="Required deposit, one of the denominations"
    )
    is_paid: bool = False
    paid_by: Optional[str] = Field(
        default=None,
        description="User ID of the participant who paid"
    )
    paid_at: Optional[datetime] = None
    receipt_url: Optional[str] = Field(
        default=None,
        description="Opaque proof-of-payment reference, never verified"
    )

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v: int) -> int:
        if v not in DENOMINATIONS:
            raise ValueError(
                f"Cell amount {v} is not a denomination. Allowed: {DENOMINATIONS}"
            )
        return v

    @model_validator(mode='after')
    def validate_payment_fields(self) -> 'Cell':
        if self.is_paid:
            if not self.paid_by or self.paid_at is None:
                raise ValueError(f"Paid cell {self.id} must record paid_by and paid_at")
        elif self.paid_by or self.paid_at or self.receipt_url:
            raise ValueError(f"Unpaid cell {self.id} cannot carry payment details")
        return self


class Withdrawal(DocumentModel):
    """
    One debit against the accumulated savings.

    Immutable once created - there is no edit or delete.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=lambda: uuid4().hex,
        min_length=1
    )
    amount: int = Field(
        ...,
        gt=0,
        description="Amount taken out"
    )
    reason: str = Field(
        default="",
        max_length=500,
        description="Free text reason shown to the group"
    )
    withdrawn_by: str = Field(
        ...,
        min_length=1,
        description="User ID of the author"
    )
    withdrawn_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# CHALLENGE AGGREGATE
# =============================================================================

class Challenge(DocumentModel):
    """
    The aggregate root for one savings goal.

    Owns its cells and withdrawals. Participants are referenced by user
    ID only. Every total is derived from cells and withdrawals on access.
    """

    id: str = Field(
        ...,
        pattern=r"^[A-Z0-9]{1,12}$",
        description="Short shareable code"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100
    )
    target_amount: int = Field(..., gt=0)
    days: int = Field(..., ge=1)
    created_at: datetime = Field(default_factory=utcnow)

    cells: list[Cell]
    participants: list[str] = Field(default_factory=list)
    withdrawals: list[Withdrawal] = Field(default_factory=list)

    # Payments counter: bumped on every accepted payment, never decays
    streak: int = Field(default=0, ge=0)
    last_payment_date: Optional[datetime] = None
    payment_qr: Optional[str] = Field(
        default=None,
        description="Opaque reference to the group's payment QR image"
    )

    # Incremented by every accepted write; used to detect stale writes
    revision: int = Field(default=0, ge=0)

    @field_validator('target_amount')
    @classmethod
    def validate_target_amount(cls, v: int) -> int:
        if v % SMALLEST_DENOMINATION:
            raise ValueError(
                f"Target amount must be a multiple of {SMALLEST_DENOMINATION}"
            )
        return v

    @model_validator(mode='after')
    def validate_ledger(self) -> 'Challenge':
        if len(self.cells) != self.days:
            raise ValueError(
                f"Challenge has {len(self.cells)} cells but {self.days} days"
            )
        if [cell.id for cell in self.cells] != list(range(self.days)):
            raise ValueError("Cell ids must run 0..days-1 in calendar order")

        scheduled = sum(cell.amount for cell in self.cells)
        if scheduled != self.target_amount:
            raise ValueError(
                f"Cells sum to {scheduled}, expected {self.target_amount}"
            )

        if len(set(self.participants)) != len(self.participants):
            raise ValueError("Participants must be unique")

        withdrawal_ids = [w.id for w in self.withdrawals]
        if len(set(withdrawal_ids)) != len(withdrawal_ids):
            raise ValueError("Withdrawal ids must be unique")

        return self

    def evolve(self, **changes: Any) -> 'Challenge':
        """Return a validated copy with the given fields replaced."""
        return type(self).model_validate({**self.model_dump(), **changes})

    # -- read accessors --------------------------------------------------

    def find_cell(self, cell_id: int) -> Optional[Cell]:
        for cell in self.cells:
            if cell.id == cell_id:
                return cell
        return None

    @property
    def paid_total(self) -> int:
        return sum(cell.amount for cell in self.cells if cell.is_paid)

    @property
    def withdrawn_total(self) -> int:
        return sum(w.amount for w in self.withdrawals)

    @property
    def available_balance(self) -> int:
        """Paid cells minus withdrawals, recomputed on every access."""
        return self.paid_total - self.withdrawn_total

    @property
    def paid_count(self) -> int:
        return sum(1 for cell in self.cells if cell.is_paid)

    @property
    def remaining_amount(self) -> int:
        """What is still scheduled but not yet deposited."""
        return self.target_amount - self.paid_total

    @property
    def progress(self) -> float:
        """Fraction of the target deposited so far (0..1)."""
        return self.paid_total / self.target_amount

    @property
    def is_complete(self) -> bool:
        return self.paid_count == self.days


# =============================================================================
# PROGRESSION
# =============================================================================

class UserProgress(DocumentModel):
    """
    The progression slice of a user document.

    User documents carry profile fields this package does not own
    (name, avatar, skins). Those are kept as extra fields so a write
    never drops them.
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    xp: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)


class LevelInfo(BaseModel):
    """Where an xp total sits in the level table."""

    model_config = ConfigDict(frozen=True)

    level: int
    title: str
    xp_required: int
    next_level: int
    next_title: str
    xp_into_level: int
    xp_for_level: int

    @property
    def is_max_level(self) -> bool:
        return self.level == self.next_level


# =============================================================================
# OPERATION OUTCOMES
# =============================================================================

class CellPayment(BaseModel):
    """Result of marking one cell paid on an in-memory challenge."""

    challenge: Challenge
    cell: Cell
    amount: int
    crossed_milestones: tuple[float, ...] = ()


class PaymentResult(BaseModel):
    """
    Result of the stored payment flow.

    progress_synced is False when the challenge write went through but
    the payer's xp write did not. The payment still stands; the xp can
    be repaired with a resync.
    """

    challenge: Challenge
    cell: Cell
    amount: int
    milestones: tuple[float, ...] = ()
    progress: Optional[UserProgress] = None
    leveled_up: bool = False
    progress_synced: bool = True
