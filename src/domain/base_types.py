from __future__ import annotations

from decimal import Decimal
from enum import StrEnum
from typing import Annotated, NewType

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

OrganizationId = NewType("OrganizationId", str)
WalletId = NewType("WalletId", str)
TransactionId = NewType("TransactionId", str)
RuleId = NewType("RuleId", str)
ReconciliationId = NewType("ReconciliationId", str)

UNKNOWN_TOKEN = "UNKNOWN"


def _fixed_point(value: Decimal) -> str:
    return format(value, "f")


# JSON carries decimals as fixed-point strings; str() would give "0E-8" for a rounded zero.
FixedDecimal = Annotated[Decimal, PlainSerializer(_fixed_point, return_type=str, when_used="json")]


class Direction(StrEnum):
    IN = "IN"
    OUT = "OUT"
    INTERNAL = "INTERNAL"


class TransactionStatus(StrEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class RuleType(StrEnum):
    CLASSIFICATION = "CLASSIFICATION"
    AUTO_CLASSIFICATION = "AUTO_CLASSIFICATION"


CLASSIFICATION_RULE_TYPES = (RuleType.CLASSIFICATION, RuleType.AUTO_CLASSIFICATION)


class CostBasisMethod(StrEnum):
    FIFO = "FIFO"
    LIFO = "LIFO"
    WAC = "WAC"
    SPECIFIC_MAX_GAIN = "SPECIFIC_MAX_GAIN"
    SPECIFIC_MAX_LOSS = "SPECIFIC_MAX_LOSS"

    @classmethod
    def normalize(cls, value: object) -> CostBasisMethod:
        """Case-insensitive lookup; anything unrecognized falls back to FIFO."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.FIFO


class ReconciliationStatus(StrEnum):
    DRAFT = "DRAFT"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DomainModel(BaseModel):
    """Base for domain models; camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
