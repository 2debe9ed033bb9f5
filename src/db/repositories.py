from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from db import models
from domain.base_types import (
    CLASSIFICATION_RULE_TYPES,
    UNKNOWN_TOKEN,
    OrganizationId,
    ReconciliationId,
    RuleId,
    TransactionId,
    TransactionStatus,
    WalletId,
)
from domain.ledger import LedgerTransaction, Organization, TransactionQuery, Wallet, ensure_utc
from domain.reconciliation import ReconciliationRun
from domain.rules import ClassificationRule

MAX_ACTIVE_CLASSIFICATION_RULES = 200


class OrganizationRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, organization: Organization) -> Organization:
        orm_organization = models.OrganizationOrm(
            id=organization.id,
            name=organization.name,
            base_currency=organization.base_currency,
            status=organization.status,
            created_at=ensure_utc(organization.created_at),
        )
        self._session.add(orm_organization)
        self._session.commit()
        return organization

    def get(self, organization_id: OrganizationId) -> Organization | None:
        orm_organization = self._session.get(models.OrganizationOrm, organization_id)
        if orm_organization is None:
            return None
        return self._to_domain(orm_organization)

    def exists(self, organization_id: OrganizationId) -> bool:
        return self._session.get(models.OrganizationOrm, organization_id) is not None

    def list(self) -> list[Organization]:
        orm_organizations = (
            self._session.query(models.OrganizationOrm).order_by(models.OrganizationOrm.created_at.desc()).all()
        )
        return [self._to_domain(organization) for organization in orm_organizations]

    @staticmethod
    def _to_domain(orm_organization: models.OrganizationOrm) -> Organization:
        return Organization(
            id=OrganizationId(orm_organization.id),
            name=orm_organization.name,
            base_currency=orm_organization.base_currency,
            status=orm_organization.status,
            created_at=ensure_utc(orm_organization.created_at),
        )


class WalletRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, wallet: Wallet) -> Wallet:
        orm_wallet = models.WalletOrm(
            id=wallet.id,
            organization_id=wallet.organization_id,
            chain=wallet.chain,
            address=wallet.address,
            label=wallet.label,
            source_type=wallet.source_type,
            is_active=wallet.is_active,
            created_at=ensure_utc(wallet.created_at),
        )
        self._session.add(orm_wallet)
        try:
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            raise
        return wallet

    def get(self, wallet_id: WalletId) -> Wallet | None:
        orm_wallet = self._session.get(models.WalletOrm, wallet_id)
        if orm_wallet is None:
            return None
        return self._to_domain(orm_wallet)

    def list(self, organization_id: OrganizationId) -> list[Wallet]:
        orm_wallets = (
            self._session.query(models.WalletOrm)
            .filter(models.WalletOrm.organization_id == organization_id)
            .order_by(models.WalletOrm.created_at.desc())
            .all()
        )
        return [self._to_domain(wallet) for wallet in orm_wallets]

    @staticmethod
    def _to_domain(orm_wallet: models.WalletOrm) -> Wallet:
        return Wallet(
            id=WalletId(orm_wallet.id),
            organization_id=OrganizationId(orm_wallet.organization_id),
            chain=orm_wallet.chain,
            address=orm_wallet.address,
            label=orm_wallet.label,
            source_type=orm_wallet.source_type,
            is_active=orm_wallet.is_active,
            created_at=ensure_utc(orm_wallet.created_at),
        )


class LedgerTransactionRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, transaction: LedgerTransaction) -> LedgerTransaction:
        """Persist one transaction; a duplicate tx_hash raises IntegrityError after rollback."""
        self._session.add(self._to_orm(transaction))
        try:
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            raise
        return transaction

    def get(self, transaction_id: TransactionId) -> LedgerTransaction | None:
        orm_transaction = self._session.get(models.LedgerTransactionOrm, transaction_id)
        if orm_transaction is None:
            return None
        return self._to_domain(orm_transaction)

    def exists_by_hash(self, organization_id: OrganizationId, tx_hash: str) -> bool:
        found = (
            self._session.query(models.LedgerTransactionOrm.id)
            .filter(
                models.LedgerTransactionOrm.organization_id == organization_id,
                models.LedgerTransactionOrm.tx_hash == tx_hash,
            )
            .first()
        )
        return found is not None

    def list_chronological(self, organization_id: OrganizationId, token_symbol: str) -> list[LedgerTransaction]:
        """Full history of one token for an organization, oldest first.

        The token match is case-insensitive and transactions stored without a
        token symbol are found under ``UNKNOWN``.
        """
        token_column = func.upper(func.coalesce(models.LedgerTransactionOrm.token_symbol, UNKNOWN_TOKEN))
        orm_transactions = (
            self._session.query(models.LedgerTransactionOrm)
            .filter(
                models.LedgerTransactionOrm.organization_id == organization_id,
                token_column == token_symbol.strip().upper(),
            )
            .order_by(
                models.LedgerTransactionOrm.occurred_at.asc(),
                models.LedgerTransactionOrm.created_at.asc(),
                models.LedgerTransactionOrm.tx_hash.asc(),
            )
            .all()
        )
        return [self._to_domain(transaction) for transaction in orm_transactions]

    def list_in_window(
        self, organization_id: OrganizationId, period_start: datetime, period_end: datetime
    ) -> list[LedgerTransaction]:
        orm_transactions = (
            self._window_query(organization_id, period_start, period_end)
            .order_by(models.LedgerTransactionOrm.occurred_at.asc())
            .all()
        )
        return [self._to_domain(transaction) for transaction in orm_transactions]

    def count_in_window(
        self, organization_id: OrganizationId, period_start: datetime, period_end: datetime
    ) -> tuple[int, int]:
        """Return ``(total, confirmed)`` counts without loading the rows."""
        confirmed = case((models.LedgerTransactionOrm.status == TransactionStatus.CONFIRMED.value, 1), else_=0)
        total, matched = (
            self._window_query(organization_id, period_start, period_end)
            .with_entities(func.count(models.LedgerTransactionOrm.id), func.coalesce(func.sum(confirmed), 0))
            .one()
        )
        return int(total), int(matched)

    def list(self, organization_id: OrganizationId, query: TransactionQuery) -> list[LedgerTransaction]:
        """Transactions matching ``query``, newest first, at most ``query.limit`` of them."""
        orm = models.LedgerTransactionOrm
        db_query = self._session.query(orm).filter(orm.organization_id == organization_id)
        if query.wallet_id is not None:
            db_query = db_query.filter(orm.wallet_id == query.wallet_id)
        if query.chain is not None:
            db_query = db_query.filter(orm.chain == query.chain)
        if query.token_symbol is not None:
            db_query = db_query.filter(func.upper(func.coalesce(orm.token_symbol, UNKNOWN_TOKEN)) == query.token_symbol)
        if query.direction is not None:
            db_query = db_query.filter(orm.direction == query.direction)
        if query.status is not None:
            db_query = db_query.filter(orm.status == query.status)
        if query.occurred_from is not None:
            db_query = db_query.filter(orm.occurred_at >= query.occurred_from)
        if query.occurred_to is not None:
            db_query = db_query.filter(orm.occurred_at <= query.occurred_to)
        if query.search is not None:
            db_query = db_query.filter(
                or_(
                    orm.tx_hash.contains(query.search, autoescape=True),
                    func.coalesce(orm.token_symbol, "").contains(query.search, autoescape=True),
                    func.coalesce(orm.counterparty, "").contains(query.search, autoescape=True),
                )
            )
        db_query = db_query.order_by(orm.occurred_at.desc(), orm.created_at.desc())

        if not query.filters_on_usd:
            return [self._to_domain(transaction) for transaction in db_query.limit(query.limit)]

        # USD amounts are stored as text, so the bounds are applied to the decoded Decimals.
        transactions: list[LedgerTransaction] = []
        for orm_transaction in db_query:
            if not query.accepts_fiat_value(orm_transaction.fiat_value_usd):
                continue
            transactions.append(self._to_domain(orm_transaction))
            if len(transactions) >= query.limit:
                break
        return transactions

    def _window_query(
        self, organization_id: OrganizationId, period_start: datetime, period_end: datetime
    ) -> Query[models.LedgerTransactionOrm]:
        return self._session.query(models.LedgerTransactionOrm).filter(
            models.LedgerTransactionOrm.organization_id == organization_id,
            models.LedgerTransactionOrm.occurred_at >= ensure_utc(period_start),
            models.LedgerTransactionOrm.occurred_at <= ensure_utc(period_end),
        )

    @staticmethod
    def _to_orm(transaction: LedgerTransaction) -> models.LedgerTransactionOrm:
        return models.LedgerTransactionOrm(
            id=transaction.id,
            organization_id=transaction.organization_id,
            wallet_id=transaction.wallet_id,
            tx_hash=transaction.tx_hash,
            chain=transaction.chain,
            token_symbol=transaction.token_symbol,
            token_address=transaction.token_address,
            amount_decimal=transaction.amount_decimal,
            fiat_value_usd=transaction.fiat_value_usd,
            cost_basis_usd=transaction.cost_basis_usd,
            direction=transaction.direction.value,
            status=transaction.status.value,
            classification=transaction.classification,
            counterparty=transaction.counterparty,
            metadata_json=transaction.metadata,
            occurred_at=ensure_utc(transaction.occurred_at),
            created_at=ensure_utc(transaction.created_at),
        )

    @staticmethod
    def _to_domain(orm_transaction: models.LedgerTransactionOrm) -> LedgerTransaction:
        metadata = json.loads(orm_transaction.metadata_json) if orm_transaction.metadata_json else {}
        return LedgerTransaction(
            id=TransactionId(orm_transaction.id),
            organization_id=OrganizationId(orm_transaction.organization_id),
            wallet_id=WalletId(orm_transaction.wallet_id),
            tx_hash=orm_transaction.tx_hash,
            chain=orm_transaction.chain,
            token_symbol=orm_transaction.token_symbol,
            token_address=orm_transaction.token_address,
            amount_decimal=orm_transaction.amount_decimal,
            fiat_value_usd=orm_transaction.fiat_value_usd,
            cost_basis_usd=orm_transaction.cost_basis_usd,
            direction=orm_transaction.direction,
            status=orm_transaction.status,
            classification=orm_transaction.classification,
            counterparty=orm_transaction.counterparty,
            metadata=metadata if isinstance(metadata, dict) else {},
            occurred_at=ensure_utc(orm_transaction.occurred_at),
            created_at=ensure_utc(orm_transaction.created_at),
        )


class AutomationRuleRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, rule: ClassificationRule) -> ClassificationRule:
        orm_rule = models.AutomationRuleOrm(
            id=rule.id,
            organization_id=rule.organization_id,
            name=rule.name,
            rule_type=rule.rule_type,
            conditions_json=rule.conditions.to_payload(),
            actions_json=rule.actions.to_payload(),
            priority=rule.priority,
            is_active=rule.is_active,
            created_at=ensure_utc(rule.created_at),
        )
        self._session.add(orm_rule)
        self._session.commit()
        return rule

    def get(self, rule_id: RuleId) -> ClassificationRule | None:
        orm_rule = self._session.get(models.AutomationRuleOrm, rule_id)
        if orm_rule is None:
            return None
        return self._to_domain(orm_rule)

    def list(self, organization_id: OrganizationId, *, limit: int = 100) -> list[ClassificationRule]:
        orm_rules = (
            self._session.query(models.AutomationRuleOrm)
            .filter(models.AutomationRuleOrm.organization_id == organization_id)
            .order_by(models.AutomationRuleOrm.priority.asc(), models.AutomationRuleOrm.created_at.desc())
            .limit(limit)
            .all()
        )
        return [self._to_domain(rule) for rule in orm_rules]

    def list_active_classification_rules(self, organization_id: OrganizationId) -> list[ClassificationRule]:
        """Active classification rules in evaluation order, capped at ``MAX_ACTIVE_CLASSIFICATION_RULES``."""
        orm_rules = (
            self._session.query(models.AutomationRuleOrm)
            .filter(
                models.AutomationRuleOrm.organization_id == organization_id,
                models.AutomationRuleOrm.is_active.is_(True),
                models.AutomationRuleOrm.rule_type.in_([rule_type.value for rule_type in CLASSIFICATION_RULE_TYPES]),
            )
            .order_by(models.AutomationRuleOrm.priority.asc(), models.AutomationRuleOrm.created_at.asc())
            .limit(MAX_ACTIVE_CLASSIFICATION_RULES)
            .all()
        )
        return [self._to_domain(rule) for rule in orm_rules]

    @staticmethod
    def _to_domain(orm_rule: models.AutomationRuleOrm) -> ClassificationRule:
        return ClassificationRule(
            id=RuleId(orm_rule.id),
            organization_id=OrganizationId(orm_rule.organization_id),
            name=orm_rule.name,
            rule_type=orm_rule.rule_type,
            priority=orm_rule.priority,
            is_active=orm_rule.is_active,
            conditions=orm_rule.conditions_json,
            actions=orm_rule.actions_json,
            created_at=ensure_utc(orm_rule.created_at),
        )


class ReconciliationRunRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, run: ReconciliationRun) -> ReconciliationRun:
        orm_run = models.ReconciliationRunOrm(
            id=run.id,
            organization_id=run.organization_id,
            period_start=ensure_utc(run.period_start),
            period_end=ensure_utc(run.period_end),
            status=run.status.value,
            discrepancy_count=run.discrepancy_count,
            matched_count=run.matched_count,
            unmatched_count=run.unmatched_count,
            notes=run.notes,
            created_at=ensure_utc(run.created_at),
        )
        self._session.add(orm_run)
        self._session.commit()
        return run

    def get(self, run_id: ReconciliationId) -> ReconciliationRun | None:
        orm_run = self._session.get(models.ReconciliationRunOrm, run_id)
        if orm_run is None:
            return None
        return self._to_domain(orm_run)

    def list(self, organization_id: OrganizationId, *, limit: int = 100) -> list[ReconciliationRun]:
        orm_runs = (
            self._session.query(models.ReconciliationRunOrm)
            .filter(models.ReconciliationRunOrm.organization_id == organization_id)
            .order_by(models.ReconciliationRunOrm.period_start.desc())
            .limit(limit)
            .all()
        )
        return [self._to_domain(run) for run in orm_runs]

    @staticmethod
    def _to_domain(orm_run: models.ReconciliationRunOrm) -> ReconciliationRun:
        return ReconciliationRun(
            id=ReconciliationId(orm_run.id),
            organization_id=OrganizationId(orm_run.organization_id),
            period_start=ensure_utc(orm_run.period_start),
            period_end=ensure_utc(orm_run.period_end),
            status=orm_run.status,
            discrepancy_count=orm_run.discrepancy_count,
            matched_count=orm_run.matched_count,
            unmatched_count=orm_run.unmatched_count,
            notes=orm_run.notes,
            created_at=ensure_utc(orm_run.created_at),
        )
