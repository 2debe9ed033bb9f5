from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.inventory import CostBasisEngine
from domain.reconciliation import ReconciliationRun, ReconciliationWindow
from tests.constants import ORG, USDC
from tests.helpers.time_utils import buy
from utils.formatting import format_currency, format_decimal, render_cost_basis_summary, render_reconciliation


def test_format_decimal_avoids_scientific_notation() -> None:
    assert format_decimal(Decimal("1E+3")) == "1000"
    assert format_decimal(Decimal("0.00000100")) == "0.000001"
    assert format_currency(Decimal("2.5")) == "2.50"


def test_render_cost_basis_summary_lists_open_lots(capsys: pytest.CaptureFixture[str]) -> None:
    summary = CostBasisEngine().compute([buy("2", "3"), buy("1", "5")], organization_id=ORG, token_symbol=USDC)

    render_cost_basis_summary(summary)

    output = capsys.readouterr().out
    assert "Open lots:" in output
    assert "Unit USD" in output
    assert "1.5" in output


def test_render_cost_basis_summary_without_lots(capsys: pytest.CaptureFixture[str]) -> None:
    summary = CostBasisEngine().compute([], organization_id=ORG, token_symbol=USDC)

    render_cost_basis_summary(summary)

    assert "Open lots: (empty)" in capsys.readouterr().out


def test_render_reconciliation(capsys: pytest.CaptureFixture[str]) -> None:
    window = ReconciliationWindow(
        period_start=datetime(2024, 1, 1, tzinfo=timezone.utc),
        period_end=datetime(2024, 1, 31, tzinfo=timezone.utc),
        total_count=4,
        matched_count=3,
    )

    render_reconciliation(ReconciliationRun.completed(ORG, window), window)

    output = capsys.readouterr().out
    assert "Total:       4" in output
    assert "Discrepancy: 1" in output
