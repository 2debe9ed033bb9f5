from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, Iterator, Sequence

from utils.numeric import is_effectively_zero, round_quantity, round_unit_cost, round_usd

from .base_types import CostBasisMethod, Direction, DomainModel, FixedDecimal, OrganizationId
from .ledger import LedgerTransaction

logger = logging.getLogger(__name__)

ZERO = Decimal(0)


@dataclass
class _OpenLot:
    quantity: Decimal
    total_cost: Decimal

    @property
    def unit_cost(self) -> Decimal:
        if self.quantity <= 0:
            return ZERO
        return self.total_cost / self.quantity


LotSelector = Callable[[Sequence[_OpenLot]], int]


def _select_oldest(lots: Sequence[_OpenLot]) -> int:
    return 0


def _select_newest(lots: Sequence[_OpenLot]) -> int:
    return len(lots) - 1


def _select_cheapest(lots: Sequence[_OpenLot]) -> int:
    best_idx = 0
    for idx in range(1, len(lots)):
        # Strict comparison keeps the first lot found on ties.
        if lots[idx].unit_cost < lots[best_idx].unit_cost:
            best_idx = idx
    return best_idx


def _select_dearest(lots: Sequence[_OpenLot]) -> int:
    best_idx = 0
    for idx in range(1, len(lots)):
        if lots[idx].unit_cost > lots[best_idx].unit_cost:
            best_idx = idx
    return best_idx


LOT_SELECTORS: dict[CostBasisMethod, LotSelector] = {
    CostBasisMethod.FIFO: _select_oldest,
    CostBasisMethod.LIFO: _select_newest,
    CostBasisMethod.SPECIFIC_MAX_GAIN: _select_cheapest,
    CostBasisMethod.SPECIFIC_MAX_LOSS: _select_dearest,
}


class OpenLotSnapshot(DomainModel):
    quantity: FixedDecimal
    total_cost_usd: FixedDecimal
    unit_cost_usd: FixedDecimal


class CostBasisSummary(DomainModel):
    organization_id: OrganizationId
    token_symbol: str
    method: CostBasisMethod
    in_quantity: FixedDecimal
    out_quantity: FixedDecimal
    remaining_quantity: FixedDecimal
    remaining_cost_usd: FixedDecimal
    realized_gain_loss_usd: FixedDecimal
    average_cost_per_unit_usd: FixedDecimal
    sample_size: int
    open_lots: list[OpenLotSnapshot] = []


class CostBasisEngine:
    """Replay a token's transaction history into remaining inventory and realized gain/loss.

    Every call is an independent fold over the history it is given: no lot
    outlives the call, so the same history and method always produce the same
    summary. IN and INTERNAL transactions add inventory at their cost reference,
    OUT transactions dispose of it at their fiat value.
    """

    def compute(
        self,
        transactions: Iterable[LedgerTransaction],
        *,
        organization_id: OrganizationId,
        token_symbol: str,
        method: CostBasisMethod | str | None = CostBasisMethod.FIFO,
    ) -> CostBasisSummary:
        method = CostBasisMethod.normalize(method)
        # Stable sort: callers normally pass chronological history already.
        history = sorted(transactions, key=lambda tx: tx.occurred_at)

        lots: list[_OpenLot] = []
        inventory_quantity = ZERO
        inventory_cost = ZERO
        in_quantity = ZERO
        out_quantity = ZERO
        realized = ZERO

        for tx in history:
            quantity = abs(tx.amount_decimal)
            if quantity <= 0:
                continue

            if tx.direction in (Direction.IN, Direction.INTERNAL):
                cost = tx.cost_reference
                in_quantity += quantity
                inventory_quantity += quantity
                inventory_cost += cost
                if method != CostBasisMethod.WAC:
                    lots.append(_OpenLot(quantity=quantity, total_cost=cost))
                continue

            if tx.direction != Direction.OUT:
                continue

            out_quantity += quantity
            if method == CostBasisMethod.WAC:
                average = inventory_cost / inventory_quantity if inventory_quantity > 0 else ZERO
                consumed_cost = quantity * average
            else:
                consumed_cost = sum(
                    (taken * unit_cost for taken, unit_cost in self._consume(lots, quantity, LOT_SELECTORS[method])),
                    start=ZERO,
                )

            inventory_quantity = max(ZERO, inventory_quantity - quantity)
            inventory_cost = max(ZERO, inventory_cost - consumed_cost)
            realized += tx.proceeds - consumed_cost

        average_cost = inventory_cost / inventory_quantity if inventory_quantity > 0 else ZERO
        summary = CostBasisSummary(
            organization_id=organization_id,
            token_symbol=token_symbol.strip().upper(),
            method=method,
            in_quantity=round_quantity(in_quantity),
            out_quantity=round_quantity(out_quantity),
            remaining_quantity=round_quantity(inventory_quantity),
            remaining_cost_usd=round_usd(inventory_cost),
            realized_gain_loss_usd=round_usd(realized),
            average_cost_per_unit_usd=round_unit_cost(average_cost),
            sample_size=len(history),
            open_lots=self._snapshot(method, lots, inventory_quantity, inventory_cost),
        )
        logger.debug(
            "Cost basis %s/%s via %s over %d rows: remaining=%s realized=%s",
            organization_id,
            summary.token_symbol,
            method,
            summary.sample_size,
            summary.remaining_quantity,
            summary.realized_gain_loss_usd,
        )
        return summary

    @staticmethod
    def _consume(lots: list[_OpenLot], quantity: Decimal, select: LotSelector) -> Iterator[tuple[Decimal, Decimal]]:
        """Take ``quantity`` units out of ``lots`` in place, yielding (taken, unit_cost) per step.

        Demand left over once the lots run out is not yielded; it is disposed
        of at zero cost.
        """
        remaining = quantity
        while lots and not is_effectively_zero(remaining):
            idx = select(lots)
            lot = lots[idx]
            if lot.quantity <= 0:
                del lots[idx]
                continue

            unit_cost = lot.unit_cost
            taken = min(remaining, lot.quantity)
            lot.quantity -= taken
            lot.total_cost -= taken * unit_cost
            remaining -= taken
            if is_effectively_zero(lot.quantity):
                del lots[idx]
            yield taken, unit_cost

    @staticmethod
    def _snapshot(
        method: CostBasisMethod,
        lots: list[_OpenLot],
        inventory_quantity: Decimal,
        inventory_cost: Decimal,
    ) -> list[OpenLotSnapshot]:
        if method == CostBasisMethod.WAC:
            if inventory_quantity <= 0:
                return []
            pooled = [_OpenLot(quantity=inventory_quantity, total_cost=inventory_cost)]
        else:
            pooled = lots
        return [
            OpenLotSnapshot(
                quantity=round_quantity(lot.quantity),
                total_cost_usd=round_usd(lot.total_cost),
                unit_cost_usd=round_unit_cost(lot.unit_cost),
            )
            for lot in pooled
        ]
