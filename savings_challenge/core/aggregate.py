"""Building a new Challenge aggregate."""

import secrets
import string
from typing import Optional

from savings_challenge.core.partitioner import MINIMUM_DAYS, generate
from savings_challenge.models.challenge import Challenge

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_code(length: int = 6) -> str:
    """Random shareable code, e.g. 'K3P9QX'. Unlikely, not guaranteed, to be unique."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def new_challenge(
    name: str,
    target_amount: int,
    days: int,
    creator: str,
    *,
    code: str,
    minimum_days: int = MINIMUM_DAYS,
    payment_qr: Optional[str] = None,
) -> Challenge:
    """
    Create a challenge with its deposit calendar.

    The creator is the first participant.

    Raises:
        InvalidScheduleError: If no calendar exists for target and days
        ValidationError: If name or code are malformed
    """
    cells = generate(target_amount, days, minimum_days=minimum_days)
    return Challenge(
        id=code.upper(),
        name=name,
        target_amount=target_amount,
        days=days,
        cells=cells,
        participants=[creator],
        payment_qr=payment_qr,
    )
