from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from pydantic import ConfigDict, Field, computed_field, field_validator

from .base_types import (
    UNKNOWN_TOKEN,
    Direction,
    DomainModel,
    FixedDecimal,
    OrganizationId,
    TransactionId,
    TransactionStatus,
    WalletId,
)


def make_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_token_symbol(value: str | None) -> str:
    if value is None or not value.strip():
        return UNKNOWN_TOKEN
    return value.strip().upper()


class Organization(DomainModel):
    id: OrganizationId = Field(default_factory=lambda: OrganizationId(make_id("org")))
    name: str
    base_currency: str = "USD"
    status: str = "ACTIVE"
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must be non-empty")
        return value

    @field_validator("base_currency", "status")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.strip().upper()


class Wallet(DomainModel):
    id: WalletId = Field(default_factory=lambda: WalletId(make_id("wal")))
    organization_id: OrganizationId
    chain: str
    address: str
    label: str | None = None
    source_type: str = "ONCHAIN"
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("chain", "address")
    @classmethod
    def _lower(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("chain and address must be non-empty")
        return value

    @field_validator("source_type")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.strip().upper() or "ONCHAIN"


class TransactionDetails(DomainModel):
    """Wallet-level fields of a transaction as submitted for ingestion.

    ``amount_decimal`` is a magnitude; the sign lives in ``direction``. A
    negative amount is folded into its absolute value.
    """

    tx_hash: str
    chain: str
    amount_decimal: FixedDecimal
    direction: Direction
    occurred_at: datetime
    status: TransactionStatus = TransactionStatus.CONFIRMED
    token_symbol: str | None = None
    token_address: str | None = None
    fiat_value_usd: FixedDecimal | None = None
    cost_basis_usd: FixedDecimal | None = None
    classification: str | None = None
    counterparty: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("direction", "status", mode="before")
    @classmethod
    def _upper_enum(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("chain")
    @classmethod
    def _lower_chain(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("token_address")
    @classmethod
    def _lower_address(cls, value: str | None) -> str | None:
        return value.strip().lower() if value else None

    @field_validator("token_symbol")
    @classmethod
    def _upper_token(cls, value: str | None) -> str | None:
        return value.strip().upper() if value and value.strip() else None

    @field_validator("amount_decimal")
    @classmethod
    def _magnitude(cls, value: Decimal) -> Decimal:
        if not value.is_finite():
            raise ValueError("amount_decimal must be a finite decimal")
        return abs(value)

    @field_validator("fiat_value_usd", "cost_basis_usd")
    @classmethod
    def _finite_usd(cls, value: Decimal | None) -> Decimal | None:
        if value is not None and not value.is_finite():
            raise ValueError("USD values must be finite decimals")
        return value

    @field_validator("occurred_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("classification")
    @classmethod
    def _trim_classification(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class NewTransaction(TransactionDetails):
    organization_id: OrganizationId
    wallet_id: WalletId


class LedgerTransaction(NewTransaction):
    """A persisted ledger transaction. Immutable once stored."""

    model_config = ConfigDict(frozen=True)

    id: TransactionId = Field(default_factory=lambda: TransactionId(make_id("tx")))
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def token_key(self) -> str:
        return normalize_token_symbol(self.token_symbol)

    @property
    def cost_reference(self) -> Decimal:
        """Explicit cost basis if supplied, otherwise the fiat value, otherwise zero."""
        if self.cost_basis_usd is not None:
            return self.cost_basis_usd
        if self.fiat_value_usd is not None:
            return self.fiat_value_usd
        return Decimal(0)

    @property
    def proceeds(self) -> Decimal:
        return self.fiat_value_usd if self.fiat_value_usd is not None else Decimal(0)


class BulkIngestResult(DomainModel):
    inserted: list[TransactionId] = []
    skipped: list[str] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def inserted_count(self) -> int:
        return len(self.inserted)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


DEFAULT_TRANSACTION_PAGE = 200
MAX_TRANSACTION_PAGE = 500


class TransactionQuery(DomainModel):
    """Filters for reading an organization's ledger back, newest first.

    Unset filters place no constraint. The USD bounds compare against
    ``fiat_value_usd`` with a missing value counting as zero.
    """

    wallet_id: WalletId | None = None
    chain: str | None = None
    token_symbol: str | None = None
    direction: str | None = None
    status: str | None = None
    occurred_from: datetime | None = None
    occurred_to: datetime | None = None
    min_usd: FixedDecimal | None = None
    max_usd: FixedDecimal | None = None
    search: str | None = None
    limit: int = Field(default=DEFAULT_TRANSACTION_PAGE, ge=1, le=MAX_TRANSACTION_PAGE)

    @field_validator("wallet_id", "chain", "token_symbol", "direction", "status", "search", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("chain")
    @classmethod
    def _lower_chain(cls, value: str | None) -> str | None:
        return value.lower() if value else None

    @field_validator("token_symbol", "direction", "status")
    @classmethod
    def _upper(cls, value: str | None) -> str | None:
        return value.upper() if value else None

    @field_validator("occurred_from", "occurred_to")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @property
    def filters_on_usd(self) -> bool:
        return self.min_usd is not None or self.max_usd is not None

    def accepts_fiat_value(self, value: Decimal | None) -> bool:
        amount = value if value is not None else Decimal(0)
        if self.min_usd is not None and amount < self.min_usd:
            return False
        if self.max_usd is not None and amount > self.max_usd:
            return False
        return True
