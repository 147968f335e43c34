"""Level thresholds, xp bookkeeping and milestone detection.

XP is earned one-to-one from the amounts of cells a user pays. The level
is always derived from xp through LEVELS and never trusted on its own.
"""

from collections.abc import Iterable

from savings_challenge.models.challenge import Challenge, LevelInfo, UserProgress

LEVELS: list[dict] = [
    {"level": 1, "title": "Novato", "xp_required": 0},
    {"level": 2, "title": "Aprendiz", "xp_required": 500},
    {"level": 3, "title": "Ahorrador Pro", "xp_required": 1500},
    {"level": 4, "title": "Estratega", "xp_required": 4000},
    {"level": 5, "title": "Inversionista", "xp_required": 8000},
    {"level": 6, "title": "Magnate", "xp_required": 15000},
    {"level": 7, "title": "Misionero Financiero", "xp_required": 30000},
    {"level": 8, "title": "Élite del Ahorro", "xp_required": 60000},
    {"level": 9, "title": "Maestro de la Fortuna", "xp_required": 100000},
    {"level": 10, "title": "Leyenda Financiera", "xp_required": 200000},
]

# Fractions of the target that open a celebration chest
MILESTONES: tuple[float, ...] = (0.25, 0.5, 0.75, 1.0)


def level_for(xp: int) -> LevelInfo:
    """Compute level info from total xp.

    Picks the highest tier whose threshold is reached; xp between two
    tiers stays on the lower one.
    """
    if xp < 0:
        raise ValueError(f"xp cannot be negative: {xp}")

    index = 0
    for i, tier in enumerate(LEVELS):
        if xp >= tier["xp_required"]:
            index = i
        else:
            break

    current = LEVELS[index]
    next_tier = LEVELS[min(index + 1, len(LEVELS) - 1)]

    xp_into_level = xp - current["xp_required"]
    xp_for_level = next_tier["xp_required"] - current["xp_required"]

    # At max level, avoid division by zero in progress bars
    if xp_for_level == 0:
        xp_for_level = 1

    return LevelInfo(
        level=current["level"],
        title=current["title"],
        xp_required=current["xp_required"],
        next_level=next_tier["level"],
        next_title=next_tier["title"],
        xp_into_level=xp_into_level,
        xp_for_level=xp_for_level,
    )


def apply_xp(progress: UserProgress, amount: int) -> tuple[UserProgress, bool]:
    """Add xp for a payment. Returns the new progress and whether the level rose."""
    if amount < 0:
        raise ValueError(f"xp amount cannot be negative: {amount}")
    xp = progress.xp + amount
    level = level_for(xp).level
    return progress.model_copy(update={"xp": xp, "level": level}), level > progress.level


def recompute_xp(user_id: str, challenges: Iterable[Challenge]) -> int:
    """Sum every cell the user paid across challenges.

    Idempotent repair path for a payment whose xp write was lost.
    """
    return sum(
        cell.amount
        for challenge in challenges
        for cell in challenge.cells
        if cell.is_paid and cell.paid_by == user_id
    )


def crossed_milestones(
    previous_paid: int,
    current_paid: int,
    target_amount: int,
) -> tuple[float, ...]:
    """Milestones crossed while the paid total moved from previous to current.

    The paid total of a challenge only grows, so each milestone is
    reported by exactly one payment.
    """
    if target_amount <= 0:
        raise ValueError("target_amount must be positive")
    return tuple(
        m for m in MILESTONES
        if previous_paid < m * target_amount <= current_paid
    )
