"""
Savings Challenge - Source Package

Core of a collaborative savings game: a group fills a calendar of
banknote-sized deposits until it reaches a target, and can withdraw
from what it has saved.

DESIGN PRINCIPLES:
1. The calendar always adds up to the target, exactly
2. Totals are derived from the ledger, never cached
3. Every shared write is read-modify-write against the freshest snapshot
4. Every change is auditable
5. Storage layer is swappable and injected
"""

__version__ = "1.0.0"
__author__ = "Savings Challenge Team"
