from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import AppSettings, config
from db.repositories import (
    AutomationRuleRepository,
    LedgerTransactionRepository,
    OrganizationRepository,
    ReconciliationRunRepository,
    WalletRepository,
)
from domain.base_types import CostBasisMethod, OrganizationId, WalletId
from domain.inventory import CostBasisEngine, CostBasisSummary
from domain.ledger import (
    BulkIngestResult,
    LedgerTransaction,
    NewTransaction,
    Organization,
    TransactionDetails,
    TransactionQuery,
    Wallet,
    ensure_utc,
    utc_now,
)
from domain.reconciliation import ReconciliationRun, ReconciliationWindow, aggregate_window
from domain.rules import ClassificationCandidate, ClassificationRule, RuleMatcher

from .errors import DuplicateTransactionError, InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)


def _require(**values: object) -> None:
    missing = tuple(
        name for name, value in values.items() if value is None or (isinstance(value, str) and not value.strip())
    )
    if missing:
        raise InvalidInputError(f"{', '.join(missing)} are required", fields=missing)


class AccountingCore:
    """Entry point of the accounting core for the API and CLI layers.

    Classification happens at ingest; cost basis and reconciliation are
    recomputed from persisted transactions on every call. Nothing is cached
    between calls.
    """

    def __init__(self, session: Session, *, settings: AppSettings | None = None) -> None:
        self._settings = settings or config()
        self._organizations = OrganizationRepository(session)
        self._wallets = WalletRepository(session)
        self._transactions = LedgerTransactionRepository(session)
        self._rules = AutomationRuleRepository(session)
        self._reconciliations = ReconciliationRunRepository(session)
        self._matcher = RuleMatcher(self._rules)
        self._cost_basis_engine = CostBasisEngine()

    # Classification

    def classify(self, organization_id: OrganizationId, candidate: ClassificationCandidate) -> str | None:
        return self._matcher.classify(organization_id, candidate)

    def ingest_transaction(self, payload: NewTransaction) -> LedgerTransaction:
        _require(
            organization_id=payload.organization_id,
            wallet_id=payload.wallet_id,
            tx_hash=payload.tx_hash,
            chain=payload.chain,
        )
        self._ensure_organization(payload.organization_id)
        self._ensure_wallet(payload.wallet_id)

        if self._transactions.exists_by_hash(payload.organization_id, payload.tx_hash):
            raise DuplicateTransactionError(organization_id=payload.organization_id, tx_hash=payload.tx_hash)

        transaction = self._prepare(payload)
        try:
            self._transactions.create(transaction)
        except IntegrityError as err:
            raise DuplicateTransactionError(
                organization_id=payload.organization_id, tx_hash=payload.tx_hash
            ) from err

        logger.info(
            "Ingested %s %s %s for %s (classification=%s)",
            transaction.direction,
            transaction.amount_decimal,
            transaction.token_key,
            transaction.organization_id,
            transaction.classification,
        )
        return transaction

    def ingest_bulk(
        self, organization_id: OrganizationId, wallet_id: WalletId, items: Iterable[TransactionDetails]
    ) -> BulkIngestResult:
        """Ingest many transactions into one wallet, skipping duplicates instead of failing."""
        items = list(items)
        _require(organization_id=organization_id, wallet_id=wallet_id)
        if not items:
            raise InvalidInputError("items are required", fields=("items",))
        self._ensure_organization(organization_id)
        self._ensure_wallet(wallet_id)

        result = BulkIngestResult()
        for item in items:
            payload = NewTransaction(organization_id=organization_id, wallet_id=wallet_id, **dict(item))
            if not payload.tx_hash.strip() or self._transactions.exists_by_hash(organization_id, payload.tx_hash):
                result.skipped.append(payload.tx_hash)
                continue
            transaction = self._prepare(payload)
            try:
                self._transactions.create(transaction)
            except IntegrityError:
                result.skipped.append(payload.tx_hash)
                continue
            result.inserted.append(transaction.id)

        logger.info(
            "Bulk ingest for %s/%s: %d inserted, %d skipped",
            organization_id,
            wallet_id,
            result.inserted_count,
            result.skipped_count,
        )
        return result

    def list_transactions(
        self, organization_id: OrganizationId, query: TransactionQuery | None = None
    ) -> list[LedgerTransaction]:
        _require(organization_id=organization_id)
        return self._transactions.list(organization_id, query or TransactionQuery())

    def _prepare(self, payload: NewTransaction) -> LedgerTransaction:
        classification = payload.classification
        if classification is None:
            candidate = ClassificationCandidate.build(
                wallet_id=payload.wallet_id,
                chain=payload.chain,
                direction=payload.direction,
                token_symbol=payload.token_symbol,
                counterparty=payload.counterparty,
                fiat_value_usd=payload.fiat_value_usd,
            )
            classification = self.classify(payload.organization_id, candidate)
        return LedgerTransaction(**{**dict(payload), "classification": classification})

    # Cost basis

    def compute_cost_basis(
        self, organization_id: OrganizationId, token_symbol: str, method: CostBasisMethod | str | None = None
    ) -> CostBasisSummary:
        _require(organization_id=organization_id, token_symbol=token_symbol)
        self._ensure_organization(organization_id)

        if method is None:
            method = self._settings.default_cost_basis_method
        resolved_method = CostBasisMethod.normalize(method)
        history = self._transactions.list_chronological(organization_id, token_symbol)
        return self._cost_basis_engine.compute(
            history,
            organization_id=organization_id,
            token_symbol=token_symbol,
            method=resolved_method,
        )

    # Reconciliation

    def reconcile_window(
        self, organization_id: OrganizationId, period_start: datetime, period_end: datetime
    ) -> ReconciliationWindow:
        transactions = self._transactions.list_in_window(organization_id, period_start, period_end)
        return aggregate_window(transactions, period_start=period_start, period_end=period_end)

    def auto_run(
        self,
        organization_id: OrganizationId,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> tuple[ReconciliationRun, ReconciliationWindow]:
        """Count the window, store the result as a COMPLETED run and return both."""
        _require(organization_id=organization_id)
        self._ensure_organization(organization_id)

        end = ensure_utc(period_end) if period_end is not None else utc_now()
        if period_start is not None:
            start = ensure_utc(period_start)
        else:
            start = end - timedelta(days=self._settings.reconciliation_default_days)
        if start > end:
            raise InvalidInputError("periodStart must not be after periodEnd", fields=("period_start", "period_end"))

        window = self.reconcile_window(organization_id, start, end)
        run = self._reconciliations.create(ReconciliationRun.completed(organization_id, window))
        logger.info(
            "Reconciliation %s for %s [%s, %s]: total=%d matched=%d unmatched=%d",
            run.id,
            organization_id,
            start.isoformat(),
            end.isoformat(),
            window.total_count,
            window.matched_count,
            window.unmatched_count,
        )
        return run, window

    def list_reconciliations(self, organization_id: OrganizationId, *, limit: int = 100) -> list[ReconciliationRun]:
        _require(organization_id=organization_id)
        return self._reconciliations.list(organization_id, limit=limit)

    # Organizations, wallets and rules

    def create_organization(self, organization: Organization) -> Organization:
        return self._organizations.create(organization)

    def list_organizations(self) -> list[Organization]:
        return self._organizations.list()

    def create_wallet(self, wallet: Wallet) -> Wallet:
        self._ensure_organization(wallet.organization_id)
        try:
            return self._wallets.create(wallet)
        except IntegrityError as err:
            raise InvalidInputError(
                f"wallet already exists: {wallet.chain}/{wallet.address}", fields=("chain", "address")
            ) from err

    def list_wallets(self, organization_id: OrganizationId) -> list[Wallet]:
        _require(organization_id=organization_id)
        return self._wallets.list(organization_id)

    def create_rule(self, rule: ClassificationRule) -> ClassificationRule:
        _require(name=rule.name, rule_type=rule.rule_type)
        self._ensure_organization(rule.organization_id)
        return self._rules.create(rule)

    def list_rules(self, organization_id: OrganizationId, *, limit: int = 100) -> list[ClassificationRule]:
        _require(organization_id=organization_id)
        return self._rules.list(organization_id, limit=limit)

    def _ensure_organization(self, organization_id: OrganizationId) -> None:
        if not self._organizations.exists(organization_id):
            raise NotFoundError("organization", organization_id)

    def _ensure_wallet(self, wallet_id: WalletId) -> None:
        if self._wallets.get(wallet_id) is None:
            raise NotFoundError("wallet", wallet_id)
