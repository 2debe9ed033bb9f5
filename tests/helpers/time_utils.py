from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from random import Random
from typing import Any, Callable

from domain.base_types import Direction, OrganizationId, TransactionStatus, WalletId
from domain.ledger import LedgerTransaction
from tests.constants import ETHEREUM, ORG, TREASURY_WALLET, USDC


@dataclass
class TimeGenerator:
    """Deterministic timestamp generator with random-ish gaps."""

    _current: datetime | None = None
    _rng: Random = field(default_factory=lambda: Random(0))
    _seed: int = 0

    def __call__(self) -> datetime:
        return self.next()

    def next(self) -> datetime:
        if self._current is None:
            self._current = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._current += timedelta(seconds=self._rng.randint(5, 60))
        return self._current

    def reset(self) -> None:
        self._current = None
        self._rng = Random(self._seed)


DEFAULT_TIME_GEN = TimeGenerator()
_TX_COUNTER = count()


def make_transaction(
    *,
    direction: Direction,
    amount: Decimal | str | int,
    fiat_value_usd: Decimal | str | int | None = None,
    cost_basis_usd: Decimal | str | int | None = None,
    token_symbol: str | None = USDC,
    status: TransactionStatus = TransactionStatus.CONFIRMED,
    occurred_at: datetime | None = None,
    ts_gen: Callable[[], datetime] | None = None,
    organization_id: OrganizationId = ORG,
    wallet_id: WalletId = TREASURY_WALLET,
    tx_hash: str | None = None,
    **extra: Any,
) -> LedgerTransaction:
    """Helper to create a LedgerTransaction with an auto-generated timestamp and hash."""
    if occurred_at is None:
        if ts_gen is None:
            ts_gen = DEFAULT_TIME_GEN
        occurred_at = ts_gen()

    return LedgerTransaction(
        organization_id=organization_id,
        wallet_id=wallet_id,
        tx_hash=tx_hash or f"0xtest{next(_TX_COUNTER):06d}",
        chain=extra.pop("chain", ETHEREUM),
        amount_decimal=Decimal(amount),
        direction=direction,
        status=status,
        token_symbol=token_symbol,
        fiat_value_usd=None if fiat_value_usd is None else Decimal(fiat_value_usd),
        cost_basis_usd=None if cost_basis_usd is None else Decimal(cost_basis_usd),
        occurred_at=occurred_at,
        **extra,
    )


def buy(amount: Decimal | str | int, cost: Decimal | str | int, **kwargs: Any) -> LedgerTransaction:
    return make_transaction(direction=Direction.IN, amount=amount, cost_basis_usd=cost, **kwargs)


def sell(amount: Decimal | str | int, proceeds: Decimal | str | int | None = None, **kwargs: Any) -> LedgerTransaction:
    return make_transaction(direction=Direction.OUT, amount=amount, fiat_value_usd=proceeds, **kwargs)
