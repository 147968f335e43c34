"""
Challenge core: schedule generation, progression and the ledger.

Everything in this package is synchronous and free of I/O.
"""

from savings_challenge.core.aggregate import generate_code, new_challenge
from savings_challenge.core.errors import (
    AlreadyPaidError,
    CellNotFoundError,
    ChallengeError,
    InsufficientBalanceError,
    InvalidScheduleError,
)
from savings_challenge.core.ledger import (
    add_participant,
    add_withdrawal,
    available_balance,
    mark_cell_paid,
    merge_cells,
    merge_challenge,
    merge_participants,
    merge_withdrawals,
)
from savings_challenge.core.partitioner import denomination_breakdown, generate
from savings_challenge.core.progression import (
    LEVELS,
    MILESTONES,
    apply_xp,
    crossed_milestones,
    level_for,
    recompute_xp,
)

__all__ = [
    # Aggregate
    "generate_code",
    "new_challenge",
    # Errors
    "AlreadyPaidError",
    "CellNotFoundError",
    "ChallengeError",
    "InsufficientBalanceError",
    "InvalidScheduleError",
    # Partitioner
    "denomination_breakdown",
    "generate",
    # Progression
    "LEVELS",
    "MILESTONES",
    "apply_xp",
    "crossed_milestones",
    "level_for",
    "recompute_xp",
    # Ledger
    "add_participant",
    "add_withdrawal",
    "available_balance",
    "mark_cell_paid",
    "merge_cells",
    "merge_challenge",
    "merge_participants",
    "merge_withdrawals",
]
