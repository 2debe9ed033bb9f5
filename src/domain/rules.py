from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Protocol

from pydantic import Field, field_validator

from utils.numeric import to_decimal

from .base_types import CLASSIFICATION_RULE_TYPES, DomainModel, FixedDecimal, OrganizationId, RuleId, RuleType
from .ledger import ensure_utc, make_id, utc_now

logger = logging.getLogger(__name__)


def _load_object(raw: object) -> Mapping[str, Any]:
    """Decode a rule payload into a mapping; anything else becomes empty."""
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, (str, bytes)) and raw:
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {}
        if isinstance(parsed, Mapping):
            return parsed
    return {}


def _string_or_none(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    return value if isinstance(value, str) else None


class RuleConditions(DomainModel):
    """Conjunction of optional constraints on a classification candidate.

    Unset fields place no constraint. Only the keys in ``STRING_KEYS`` and
    ``NUMERIC_KEYS`` are recognized; any other key in a stored payload is
    ignored so older readers accept rules written by newer writers.
    """

    STRING_KEYS: ClassVar[tuple[str, ...]] = (
        "walletId",
        "chain",
        "direction",
        "tokenSymbol",
        "counterparty",
        "counterpartyContains",
    )
    NUMERIC_KEYS: ClassVar[tuple[str, ...]] = ("minUsd", "maxUsd")

    wallet_id: str | None = None
    chain: str | None = None
    direction: str | None = None
    token_symbol: str | None = None
    counterparty: str | None = None
    counterparty_contains: str | None = None
    min_usd: FixedDecimal | None = None
    max_usd: FixedDecimal | None = None

    @classmethod
    def parse(cls, raw: object) -> RuleConditions:
        """Build conditions from a JSON string or mapping.

        String keys holding non-strings are dropped; numeric bounds that do not
        parse count as zero. A payload that is not a JSON object yields an
        empty (match-everything) condition set.
        """
        payload = _load_object(raw)
        fields: dict[str, Any] = {key: _string_or_none(payload, key) for key in cls.STRING_KEYS}
        for key in cls.NUMERIC_KEYS:
            if payload.get(key) is not None:
                fields[key] = to_decimal(payload[key])
        return cls.model_validate(fields)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def matches(self, candidate: ClassificationCandidate) -> bool:
        if self.wallet_id is not None and self.wallet_id != candidate.wallet_id:
            return False
        if self.chain is not None and self.chain.lower() != candidate.chain:
            return False
        if self.direction is not None and self.direction.upper() != candidate.direction:
            return False
        if self.token_symbol is not None and self.token_symbol.upper() != candidate.token_symbol:
            return False
        if self.counterparty is not None and self.counterparty.lower() != candidate.counterparty:
            return False
        if (
            self.counterparty_contains is not None
            and self.counterparty_contains.lower() not in candidate.counterparty
        ):
            return False
        if self.min_usd is not None and candidate.fiat_value_usd < self.min_usd:
            return False
        if self.max_usd is not None and candidate.fiat_value_usd > self.max_usd:
            return False
        return True


class RuleActions(DomainModel):
    classification: str | None = None

    @classmethod
    def parse(cls, raw: object) -> RuleActions:
        payload = _load_object(raw)
        return cls(classification=_string_or_none(payload, "classification"))

    @field_validator("classification")
    @classmethod
    def _trim(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ClassificationRule(DomainModel):
    id: RuleId = Field(default_factory=lambda: RuleId(make_id("rul")))
    organization_id: OrganizationId
    name: str
    rule_type: str = RuleType.CLASSIFICATION
    priority: int = 100
    is_active: bool = True
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    actions: RuleActions = Field(default_factory=RuleActions)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("rule_type")
    @classmethod
    def _upper_type(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("conditions", mode="before")
    @classmethod
    def _parse_conditions(cls, value: object) -> object:
        if isinstance(value, RuleConditions):
            return value
        return RuleConditions.parse(value)

    @field_validator("actions", mode="before")
    @classmethod
    def _parse_actions(cls, value: object) -> object:
        if isinstance(value, RuleActions):
            return value
        return RuleActions.parse(value)

    @property
    def participates_in_classification(self) -> bool:
        return self.is_active and self.rule_type in CLASSIFICATION_RULE_TYPES

    def sort_key(self) -> tuple[int, datetime]:
        return self.priority, self.created_at


class ClassificationCandidate(DomainModel):
    """Normalized view of a transaction about to be classified."""

    wallet_id: str
    chain: str
    direction: str
    token_symbol: str
    counterparty: str
    fiat_value_usd: Decimal

    @classmethod
    def build(
        cls,
        *,
        wallet_id: str,
        chain: str | None,
        direction: str | None,
        token_symbol: str | None = None,
        counterparty: str | None = None,
        fiat_value_usd: object = None,
    ) -> ClassificationCandidate:
        return cls(
            wallet_id=wallet_id,
            chain=(chain or "").lower(),
            direction=(direction or "").upper(),
            token_symbol=(token_symbol or "").upper(),
            counterparty=(counterparty or "").lower(),
            fiat_value_usd=to_decimal(fiat_value_usd),
        )


class ClassificationRuleSource(Protocol):
    """Supplies active classification rules in evaluation order."""

    def list_active_classification_rules(self, organization_id: OrganizationId) -> list[ClassificationRule]: ...


class RuleMatcher:
    """First-match classifier over an organization's ordered rule set."""

    def __init__(self, rule_source: ClassificationRuleSource) -> None:
        self._rule_source = rule_source

    def classify(self, organization_id: OrganizationId, candidate: ClassificationCandidate) -> str | None:
        # Lookup failures propagate; the caller decides whether an unset classification is acceptable.
        rules = self._rule_source.list_active_classification_rules(organization_id)
        return match_rules(rules, candidate)


def match_rules(rules: list[ClassificationRule], candidate: ClassificationCandidate) -> str | None:
    """Return the classification of the first rule whose conditions hold.

    Rules are evaluated by ``(priority, created_at)``; inactive rules and rules
    of other types never match. Rules without a classification action are
    skipped even when their conditions hold.
    """
    for rule in sorted(rules, key=ClassificationRule.sort_key):
        if not rule.participates_in_classification:
            continue
        if not rule.conditions.matches(candidate):
            continue
        if rule.actions.classification is None:
            continue
        logger.debug(
            "Rule %s (priority=%d) classified candidate as %s", rule.id, rule.priority, rule.actions.classification
        )
        return rule.actions.classification
    return None
