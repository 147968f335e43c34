"""
Ledger Reconciler

Pure operations over a Challenge: mark a cell paid, add a withdrawal,
add a participant, and the merge policy used when two clients wrote
different snapshots of the same challenge.

DESIGN DECISION: Every operation takes a snapshot and returns a new,
validated Challenge. Nothing here touches the store. The caller reads
the freshest snapshot, applies the operation (which re-checks its
invariants against that snapshot) and writes the result back.

The available balance is always recomputed from cells and
withdrawals. There is no running counter that could drift.

The merge functions serve clients that hold a snapshot for a while
(offline edits, UI caches) and must fold it into the stored one.
ChallengeService never merges: on a stale write it reruns the whole
operation on the fresh snapshot, so a lost race surfaces as the
operation's own error instead of a merged result.
"""

from datetime import datetime
from typing import Optional

from savings_challenge.core.errors import (
    AlreadyPaidError,
    CellNotFoundError,
    InsufficientBalanceError,
)
from savings_challenge.core.progression import crossed_milestones
from savings_challenge.models.challenge import (
    Cell,
    CellPayment,
    Challenge,
    Withdrawal,
    utcnow,
)


def available_balance(challenge: Challenge) -> int:
    """Sum of paid cells minus sum of withdrawals."""
    return challenge.available_balance


def mark_cell_paid(
    challenge: Challenge,
    cell_id: int,
    payer: str,
    receipt_url: Optional[str] = None,
    paid_at: Optional[datetime] = None,
) -> CellPayment:
    """
    Record the payment of one cell.

    Args:
        challenge: Snapshot to apply the payment to
        cell_id: Calendar position of the cell
        payer: User ID of the participant paying
        receipt_url: Optional proof-of-payment reference
        paid_at: Payment time, defaults to now (UTC)

    Returns:
        CellPayment with the updated challenge, the paid cell, the amount
        (to credit as xp) and the milestones this payment crossed

    Raises:
        CellNotFoundError: If the cell does not exist
        AlreadyPaidError: If the cell is already paid
    """
    cell = challenge.find_cell(cell_id)
    if cell is None:
        raise CellNotFoundError(challenge.id, cell_id)
    if cell.is_paid:
        raise AlreadyPaidError(challenge.id, cell_id, cell.paid_by)

    paid_at = paid_at or utcnow()
    paid_cell = Cell(
        id=cell.id,
        amount=cell.amount,
        is_paid=True,
        paid_by=payer,
        paid_at=paid_at,
        receipt_url=receipt_url or None,
    )
    updated = challenge.evolve(
        cells=[paid_cell if c.id == cell_id else c for c in challenge.cells],
        streak=challenge.streak + 1,
        last_payment_date=paid_at,
    )

    return CellPayment(
        challenge=updated,
        cell=paid_cell,
        amount=paid_cell.amount,
        crossed_milestones=crossed_milestones(
            challenge.paid_total,
            updated.paid_total,
            challenge.target_amount,
        ),
    )


def add_withdrawal(
    challenge: Challenge,
    amount: int,
    reason: str,
    author: str,
    withdrawn_at: Optional[datetime] = None,
    withdrawal_id: Optional[str] = None,
) -> Challenge:
    """
    Append a withdrawal if the savings cover it.

    Raises:
        InsufficientBalanceError: If amount exceeds the available balance
        ValidationError: If amount is not positive
    """
    withdrawal = Withdrawal(
        amount=amount,
        reason=reason,
        withdrawn_by=author,
        withdrawn_at=withdrawn_at or utcnow(),
        **({"id": withdrawal_id} if withdrawal_id else {}),
    )

    balance = available_balance(challenge)
    if withdrawal.amount > balance:
        raise InsufficientBalanceError(challenge.id, withdrawal.amount, balance)

    return challenge.evolve(withdrawals=[*challenge.withdrawals, withdrawal])


def add_participant(challenge: Challenge, user_id: str) -> Challenge:
    """Add a member. Adding someone already in is a no-op."""
    if user_id in challenge.participants:
        return challenge
    return challenge.evolve(participants=[*challenge.participants, user_id])


# =============================================================================
# MERGE POLICY
# =============================================================================

def merge_participants(latest: Challenge, local: Challenge) -> list[str]:
    """Set union, keeping the order people joined in."""
    merged = list(latest.participants)
    merged.extend(p for p in local.participants if p not in latest.participants)
    return merged


def merge_withdrawals(latest: Challenge, local: Challenge) -> list[Withdrawal]:
    """Latest list plus local-only entries, matched by id."""
    known = {w.id for w in latest.withdrawals}
    return [*latest.withdrawals, *(w for w in local.withdrawals if w.id not in known)]


def merge_cells(latest: Challenge, local: Challenge) -> list[Cell]:
    """
    A cell paid on either side stays paid.

    When both sides paid the same cell, the payment already in the
    store wins, so a recorded payment is never rewritten.
    """
    if [(c.id, c.amount) for c in latest.cells] != [(c.id, c.amount) for c in local.cells]:
        raise ValueError(f"Snapshots of {latest.id} have different calendars")

    return [
        theirs if theirs.is_paid or not ours.is_paid else ours
        for theirs, ours in zip(latest.cells, local.cells)
    ]


def merge_challenge(latest: Challenge, local: Challenge) -> Challenge:
    """
    Merge a locally modified snapshot into the latest stored one.

    The result keeps the latest revision; the writer bumps it on commit.
    """
    if latest.id != local.id:
        raise ValueError(f"Cannot merge challenge {local.id} into {latest.id}")

    cells = merge_cells(latest, local)
    newly_paid = sum(
        1 for before, after in zip(latest.cells, cells)
        if after.is_paid and not before.is_paid
    )
    paid_dates = [c.paid_at for c in cells if c.is_paid]
    merged = latest.evolve(
        cells=cells,
        participants=merge_participants(latest, local),
        withdrawals=merge_withdrawals(latest, local),
        streak=latest.streak + newly_paid,
        last_payment_date=max(paid_dates) if paid_dates else None,
    )

    # Two writers may each have spent the same savings
    if merged.available_balance < 0:
        raise InsufficientBalanceError(
            latest.id, merged.withdrawn_total, merged.paid_total
        )
    return merged
