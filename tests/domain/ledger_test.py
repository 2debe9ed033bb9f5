from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from domain.base_types import CostBasisMethod, Direction, TransactionStatus
from domain.ledger import (
    BulkIngestResult,
    LedgerTransaction,
    Organization,
    TransactionDetails,
    TransactionQuery,
    Wallet,
    ensure_utc,
)
from tests.constants import ORG, TREASURY_WALLET
from tests.helpers.time_utils import make_transaction


def test_transaction_details_normalize_inputs() -> None:
    details = TransactionDetails.model_validate(
        {
            "txHash": "0xabc",
            "chain": " Ethereum ",
            "amountDecimal": "-12.5",
            "direction": "out",
            "status": "pending",
            "tokenSymbol": " usdc ",
            "tokenAddress": "0xA0B8",
            "classification": "   ",
            "occurredAt": "2024-03-01T10:00:00",
        }
    )

    assert details.chain == "ethereum"
    assert details.amount_decimal == Decimal("12.5")
    assert details.direction == Direction.OUT
    assert details.status == TransactionStatus.PENDING
    assert details.token_symbol == "USDC"
    assert details.token_address == "0xa0b8"
    assert details.classification is None
    assert details.occurred_at.tzinfo == timezone.utc


def test_transaction_details_reject_non_finite_amounts() -> None:
    with pytest.raises(ValidationError):
        TransactionDetails(
            tx_hash="0x1",
            chain="ethereum",
            amount_decimal=Decimal("NaN"),
            direction=Direction.IN,
            occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )


def test_transaction_details_reject_unknown_direction() -> None:
    with pytest.raises(ValidationError):
        TransactionDetails.model_validate(
            {
                "txHash": "0x1",
                "chain": "ethereum",
                "amountDecimal": "1",
                "direction": "SIDEWAYS",
                "occurredAt": "2024-01-01T00:00:00Z",
            }
        )


def test_cost_reference_prefers_cost_basis_then_fiat_value() -> None:
    explicit = make_transaction(direction=Direction.IN, amount="1", cost_basis_usd="5", fiat_value_usd="7")
    fiat_only = make_transaction(direction=Direction.IN, amount="1", fiat_value_usd="7")
    neither = make_transaction(direction=Direction.IN, amount="1")

    assert explicit.cost_reference == Decimal("5")
    assert fiat_only.cost_reference == Decimal("7")
    assert neither.cost_reference == Decimal(0)
    assert neither.proceeds == Decimal(0)


def test_missing_token_symbol_resolves_to_unknown() -> None:
    transaction = make_transaction(direction=Direction.IN, amount="1", token_symbol=None)

    assert transaction.token_symbol is None
    assert transaction.token_key == "UNKNOWN"


def test_ledger_transaction_is_immutable() -> None:
    transaction = make_transaction(direction=Direction.IN, amount="1")

    with pytest.raises(ValidationError):
        transaction.amount_decimal = Decimal("2")  # type: ignore[misc]


def test_ledger_transaction_generates_prefixed_ids() -> None:
    transaction = LedgerTransaction(
        organization_id=ORG,
        wallet_id=TREASURY_WALLET,
        tx_hash="0x1",
        chain="ethereum",
        amount_decimal=Decimal("1"),
        direction=Direction.IN,
        occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )

    assert transaction.id.startswith("tx_")


def test_organization_and_wallet_normalization() -> None:
    organization = Organization(name="  Acme DAO ", base_currency="usd")
    wallet = Wallet(organization_id=organization.id, chain="Base", address="0xABCDEF", source_type="")

    assert organization.id.startswith("org_")
    assert organization.name == "Acme DAO"
    assert organization.base_currency == "USD"
    assert wallet.id.startswith("wal_")
    assert wallet.chain == "base"
    assert wallet.address == "0xabcdef"
    assert wallet.source_type == "ONCHAIN"


def test_organization_requires_a_name() -> None:
    with pytest.raises(ValidationError):
        Organization(name="   ")


def test_ensure_utc_converts_offsets() -> None:
    plus_two = timezone(timedelta(hours=2))

    assert ensure_utc(datetime(2024, 1, 1, 12, tzinfo=plus_two)) == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
    assert ensure_utc(datetime(2024, 1, 1, 12)).tzinfo == timezone.utc


def test_bulk_ingest_result_counts_serialize() -> None:
    result = BulkIngestResult(inserted=["tx_1", "tx_2"], skipped=["0xdup"])

    assert result.model_dump(by_alias=True) == {
        "inserted": ["tx_1", "tx_2"],
        "skipped": ["0xdup"],
        "insertedCount": 2,
        "skippedCount": 1,
    }


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("fifo", CostBasisMethod.FIFO),
        (" lifo ", CostBasisMethod.LIFO),
        ("wac", CostBasisMethod.WAC),
        ("Specific_Max_Gain", CostBasisMethod.SPECIFIC_MAX_GAIN),
        ("SPECIFIC_MAX_LOSS", CostBasisMethod.SPECIFIC_MAX_LOSS),
        ("HIFO", CostBasisMethod.FIFO),
        ("", CostBasisMethod.FIFO),
        (None, CostBasisMethod.FIFO),
        (42, CostBasisMethod.FIFO),
    ],
)
def test_cost_basis_method_normalization(raw: object, expected: CostBasisMethod) -> None:
    assert CostBasisMethod.normalize(raw) == expected


def test_transaction_query_normalizes_filters() -> None:
    query = TransactionQuery.model_validate(
        {
            "chain": " BASE ",
            "tokenSymbol": "usdc",
            "direction": "out",
            "status": " ",
            "search": "  0xab ",
            "minUsd": "10",
        }
    )

    assert query.chain == "base"
    assert query.token_symbol == "USDC"
    assert query.direction == "OUT"
    assert query.status is None
    assert query.search == "0xab"
    assert query.limit == 200
    assert query.filters_on_usd


def test_transaction_query_usd_bounds_treat_missing_value_as_zero() -> None:
    query = TransactionQuery(max_usd=Decimal("100"))

    assert query.accepts_fiat_value(None)
    assert query.accepts_fiat_value(Decimal("100"))
    assert not query.accepts_fiat_value(Decimal("100.01"))
    assert not TransactionQuery(min_usd=Decimal("1")).accepts_fiat_value(None)


@pytest.mark.parametrize("limit", [0, 501])
def test_transaction_query_limit_is_bounded(limit: int) -> None:
    with pytest.raises(ValidationError):
        TransactionQuery(limit=limit)


def test_transaction_amounts_serialize_fixed_point() -> None:
    transaction = make_transaction(direction=Direction.IN, amount="1E+21", fiat_value_usd="0E-2")

    payload = transaction.model_dump(mode="json", by_alias=True)

    assert payload["amountDecimal"] == "1000000000000000000000"
    assert payload["fiatValueUsd"] == "0.00"
