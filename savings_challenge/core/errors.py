"""Domain exceptions raised by the challenge core."""


class ChallengeError(Exception):
    """Base exception for rejected challenge operations."""
    pass


class InvalidScheduleError(ChallengeError):
    """No deposit schedule exists for the requested target and days."""

    def __init__(self, target_amount: int, days: int, message: str):
        self.target_amount = target_amount
        self.days = days
        super().__init__(message)


class CellNotFoundError(ChallengeError):
    """The challenge has no cell with this id."""

    def __init__(self, challenge_id: str, cell_id: int):
        self.challenge_id = challenge_id
        self.cell_id = cell_id
        super().__init__(f"Challenge {challenge_id} has no cell {cell_id}")


class AlreadyPaidError(ChallengeError):
    """The cell was already paid; paying it again would double count."""

    def __init__(self, challenge_id: str, cell_id: int, paid_by: str):
        self.challenge_id = challenge_id
        self.cell_id = cell_id
        self.paid_by = paid_by
        super().__init__(
            f"Cell {cell_id} of challenge {challenge_id} was already paid by {paid_by}"
        )


class InsufficientBalanceError(ChallengeError):
    """Withdrawal exceeds the money currently saved."""

    def __init__(self, challenge_id: str, requested: int, available: int):
        self.challenge_id = challenge_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot withdraw {requested} from challenge {challenge_id}: "
            f"only {available} available"
        )
