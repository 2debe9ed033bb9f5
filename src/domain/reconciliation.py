from __future__ import annotations

from datetime import datetime
from typing import Iterable

from pydantic import Field, computed_field, model_validator

from .base_types import DomainModel, OrganizationId, ReconciliationId, ReconciliationStatus, TransactionStatus
from .ledger import LedgerTransaction, ensure_utc, make_id, utc_now

AUTO_RUN_NOTE = "Auto-run reconciliation generated by API workflow"


class ReconciliationWindow(DomainModel):
    """Transaction counts for one period; a transaction is matched when CONFIRMED."""

    period_start: datetime
    period_end: datetime
    total_count: int = 0
    matched_count: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def unmatched_count(self) -> int:
        return max(0, self.total_count - self.matched_count)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def discrepancy_count(self) -> int:
        return self.unmatched_count


class ReconciliationRun(DomainModel):
    id: ReconciliationId = Field(default_factory=lambda: ReconciliationId(make_id("rec")))
    organization_id: OrganizationId
    period_start: datetime
    period_end: datetime
    status: ReconciliationStatus = ReconciliationStatus.DRAFT
    matched_count: int = 0
    unmatched_count: int = 0
    discrepancy_count: int = 0
    notes: str | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _validate_counts(self) -> ReconciliationRun:
        if min(self.matched_count, self.unmatched_count, self.discrepancy_count) < 0:
            raise ValueError("reconciliation counts must be >= 0")
        return self

    @classmethod
    def completed(
        cls, organization_id: OrganizationId, window: ReconciliationWindow, *, notes: str = AUTO_RUN_NOTE
    ) -> ReconciliationRun:
        return cls(
            organization_id=organization_id,
            period_start=window.period_start,
            period_end=window.period_end,
            status=ReconciliationStatus.COMPLETED,
            matched_count=window.matched_count,
            unmatched_count=window.unmatched_count,
            discrepancy_count=window.discrepancy_count,
            notes=notes,
        )


def aggregate_window(
    transactions: Iterable[LedgerTransaction], *, period_start: datetime, period_end: datetime
) -> ReconciliationWindow:
    """Count transactions inside ``[period_start, period_end]`` by confirmation status.

    Transactions outside the window are ignored, so callers may pass a wider
    slice than the period itself.
    """
    start = ensure_utc(period_start)
    end = ensure_utc(period_end)
    total = 0
    matched = 0
    for tx in transactions:
        if not start <= tx.occurred_at <= end:
            continue
        total += 1
        if tx.status == TransactionStatus.CONFIRMED:
            matched += 1
    return ReconciliationWindow(period_start=start, period_end=end, total_count=total, matched_count=matched)
