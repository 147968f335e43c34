"""
Denomination Partitioner

Builds the deposit calendar of a challenge: one cell per day, every
amount a banknote from DENOMINATIONS, all amounts adding up to the
target exactly.

HOW IT WORKS:
1. Every day starts at the smallest note. That alone reaches
   days x smallest, the floor of any valid schedule.
2. The rest of the target (the surplus) is absorbed by upgrading days
   to bigger notes, biggest upgrade first. Upgrading a day from 10 to
   200 absorbs 190, to 100 absorbs 90, and so on. Every step is a
   multiple of 10, so greedy change-making always lands on zero.
3. Greedy can use more upgrades than there are days (e.g. 330 over 3
   days). Then the fewest-upgrades combination is searched exactly; if
   even that does not fit, no schedule exists.
4. A few count-and-sum preserving splits (200+10+10 -> 100+100+20, ...)
   mix in mid-sized notes so the plan is not just "big or tiny".
5. The notes are shuffled across the calendar.

The shuffle is seeded from (target_amount, days), so the same request
always yields the same calendar.
"""

import random
from collections import Counter
from typing import Optional

from savings_challenge.core.errors import InvalidScheduleError
from savings_challenge.models.challenge import (
    DENOMINATIONS,
    LARGEST_DENOMINATION,
    SMALLEST_DENOMINATION,
    Cell,
)


# (note, surplus it absorbs in units of the smallest note), biggest first
_UPGRADES: tuple[tuple[int, int], ...] = tuple(
    (note, (note - SMALLEST_DENOMINATION) // SMALLEST_DENOMINATION)
    for note in DENOMINATIONS
    if note != SMALLEST_DENOMINATION
)

# Rewrites that keep both the number of notes and their sum
_SPLITS: tuple[tuple[tuple[int, ...], tuple[int, ...]], ...] = (
    ((200, 10, 10), (100, 100, 20)),
    ((100, 10, 10), (50, 50, 20)),
    ((50, 10, 10, 10), (20, 20, 20, 20)),
)

MINIMUM_DAYS = 1


def generate(
    target_amount: int,
    days: int,
    *,
    minimum_days: int = MINIMUM_DAYS,
    seed: Optional[int] = None,
) -> list[Cell]:
    """
    Generate the deposit calendar for a challenge.

    Args:
        target_amount: Total to save; a multiple of the smallest note
        days: Number of cells
        minimum_days: Shortest calendar accepted
        seed: Overrides the default (target_amount, days) seed

    Returns:
        Unpaid cells with ids 0..days-1 whose amounts sum to target_amount

    Raises:
        InvalidScheduleError: If no such calendar exists
    """
    _check_request(target_amount, days, minimum_days)

    rng = random.Random(f"{target_amount}:{days}" if seed is None else seed)

    surplus_units = (target_amount - days * SMALLEST_DENOMINATION) // SMALLEST_DENOMINATION
    upgrades = _greedy_upgrades(surplus_units)
    if sum(upgrades.values()) > days:
        upgrades = _fewest_upgrades(surplus_units)
    used = sum(upgrades.values())
    if used > days:
        raise InvalidScheduleError(
            target_amount,
            days,
            f"{target_amount} cannot be split into exactly {days} notes "
            f"of {DENOMINATIONS}",
        )

    notes = Counter(upgrades)
    notes[SMALLEST_DENOMINATION] += days - used
    _diversify(notes, rng, rounds=days // 4)

    amounts = sorted(notes.elements(), reverse=True)
    rng.shuffle(amounts)

    cells = [Cell(id=day, amount=amount) for day, amount in enumerate(amounts)]

    scheduled = sum(cell.amount for cell in cells)
    if scheduled != target_amount:
        raise RuntimeError(
            f"Schedule for {target_amount} over {days} days sums to {scheduled}"
        )
    return cells


def denomination_breakdown(cells: list[Cell]) -> dict[int, int]:
    """Count how many cells use each note, biggest note first."""
    counts = Counter(cell.amount for cell in cells)
    return {note: counts[note] for note in DENOMINATIONS if counts[note]}


def _check_request(target_amount: int, days: int, minimum_days: int) -> None:
    if days < minimum_days:
        raise InvalidScheduleError(
            target_amount, days, f"A challenge needs at least {minimum_days} days"
        )
    if target_amount <= 0 or target_amount % SMALLEST_DENOMINATION:
        raise InvalidScheduleError(
            target_amount,
            days,
            f"Target must be a positive multiple of {SMALLEST_DENOMINATION}",
        )
    floor = days * SMALLEST_DENOMINATION
    if target_amount < floor:
        raise InvalidScheduleError(
            target_amount,
            days,
            f"Target for {days} days must be at least {floor}",
        )
    ceiling = days * LARGEST_DENOMINATION
    if target_amount > ceiling:
        raise InvalidScheduleError(
            target_amount,
            days,
            f"Target for {days} days cannot exceed {ceiling}",
        )


def _greedy_upgrades(units: int) -> dict[int, int]:
    """Largest-upgrade-first change-making. Always reaches zero."""
    counts = {}
    remaining = units
    for note, step in _UPGRADES:
        counts[note], remaining = divmod(remaining, step)
    return counts


def _fewest_upgrades(units: int) -> dict[int, int]:
    """Exact minimum number of upgrades absorbing `units`."""
    fewest = [0] + [units + 1] * units
    last_note = [0] * (units + 1)
    for total in range(1, units + 1):
        for note, step in _UPGRADES:
            if step <= total and fewest[total - step] + 1 < fewest[total]:
                fewest[total] = fewest[total - step] + 1
                last_note[total] = note

    counts = {note: 0 for note, _ in _UPGRADES}
    steps = dict(_UPGRADES)
    total = units
    while total:
        note = last_note[total]
        counts[note] += 1
        total -= steps[note]
    return counts


def _diversify(notes: Counter, rng: random.Random, rounds: int) -> None:
    for _ in range(rounds):
        options = [
            (before, after)
            for before, after in _SPLITS
            if all(notes[n] >= k for n, k in Counter(before).items())
        ]
        if not options:
            return
        before, after = rng.choice(options)
        notes.subtract(before)
        notes.update(after)
