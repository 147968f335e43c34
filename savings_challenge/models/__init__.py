"""
Data Models Package

This package contains all Pydantic models used in the Savings Challenge system.
All data flowing through the document store must conform to these schemas.
"""

from savings_challenge.models.challenge import (
    DENOMINATIONS,
    LARGEST_DENOMINATION,
    SMALLEST_DENOMINATION,
    Cell,
    CellPayment,
    Challenge,
    LevelInfo,
    PaymentResult,
    UserProgress,
    Withdrawal,
)
from savings_challenge.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Challenge models
    "DENOMINATIONS",
    "LARGEST_DENOMINATION",
    "SMALLEST_DENOMINATION",
    "Cell",
    "CellPayment",
    "Challenge",
    "LevelInfo",
    "PaymentResult",
    "UserProgress",
    "Withdrawal",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
