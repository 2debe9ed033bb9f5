"""Domain models and computations for the treasury accounting core.

This package contains in-memory (Pydantic) models describing ledger
transactions, classification rules, cost-basis summaries and reconciliation
windows, together with the pure computations over them. They are independent
from persistence models so that business logic and testing can evolve without
DB coupling.
"""

__all__ = [
    "base_types",
    "inventory",
    "ledger",
    "reconciliation",
    "rules",
]
