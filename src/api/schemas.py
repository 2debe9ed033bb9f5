from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from domain.base_types import DomainModel, OrganizationId, WalletId
from domain.ledger import TransactionDetails


class CreateOrganizationRequest(DomainModel):
    name: str
    base_currency: str = "USD"


class CreateWalletRequest(DomainModel):
    organization_id: OrganizationId
    chain: str
    address: str
    label: str | None = None
    source_type: str = "ONCHAIN"


class BulkTransactionsRequest(DomainModel):
    organization_id: OrganizationId
    wallet_id: WalletId
    items: list[TransactionDetails] = Field(default_factory=list)


class CostBasisRequest(DomainModel):
    organization_id: OrganizationId
    token_symbol: str
    method: str | None = None


class AutoRunRequest(DomainModel):
    organization_id: OrganizationId
    period_start: datetime | None = None
    period_end: datetime | None = None


class CreateRuleRequest(DomainModel):
    organization_id: OrganizationId
    name: str
    rule_type: str
    conditions: dict[str, Any] = Field(default_factory=dict)
    actions: dict[str, Any] = Field(default_factory=dict)
    priority: int = 100
    is_active: bool = True
