from __future__ import annotations

from decimal import Decimal

from domain.inventory import CostBasisSummary
from domain.reconciliation import ReconciliationRun, ReconciliationWindow


def format_decimal(value: Decimal) -> str:
    quantized = value.normalize()
    # Avoid scientific notation for integers.
    if quantized == quantized.to_integral():
        return f"{quantized:.0f}"
    return format(quantized, "f")


def format_currency(value: Decimal) -> str:
    cents = value.quantize(Decimal("0.01"))
    return f"{cents:.2f}"


def render_cost_basis_summary(summary: CostBasisSummary) -> None:
    print(f"Cost basis for {summary.token_symbol} ({summary.method}, {summary.sample_size} transactions):")
    rows = [
        ("Acquired", format_decimal(summary.in_quantity)),
        ("Disposed", format_decimal(summary.out_quantity)),
        ("Remaining", format_decimal(summary.remaining_quantity)),
        ("Remaining cost USD", format_currency(summary.remaining_cost_usd)),
        ("Average cost USD", format_decimal(summary.average_cost_per_unit_usd)),
        ("Realized gain/loss USD", format_currency(summary.realized_gain_loss_usd)),
    ]
    label_width = max(len(label) for label, _ in rows)
    value_width = max(len(value) for _, value in rows)
    for label, value in rows:
        print(f"  {label:<{label_width}} {value:>{value_width}}")

    if not summary.open_lots:
        print("  Open lots: (empty)")
        return

    quantity_label = "Quantity"
    cost_label = "Cost USD"
    unit_label = "Unit USD"
    lot_rows = [
        (format_decimal(lot.quantity), format_currency(lot.total_cost_usd), format_decimal(lot.unit_cost_usd))
        for lot in summary.open_lots
    ]
    quantity_width = max(len(quantity_label), max(len(qty) for qty, _, _ in lot_rows))
    cost_width = max(len(cost_label), max(len(cost) for _, cost, _ in lot_rows))
    unit_width = max(len(unit_label), max(len(unit) for _, _, unit in lot_rows))

    header = f"  {quantity_label:>{quantity_width}} {cost_label:>{cost_width}} {unit_label:>{unit_width}}"
    lines = ["  Open lots:", header, "  " + "-" * (len(header) - 2)]
    for qty, cost, unit in lot_rows:
        lines.append(f"  {qty:>{quantity_width}} {cost:>{cost_width}} {unit:>{unit_width}}")
    print("\n".join(lines))


def render_reconciliation(run: ReconciliationRun, window: ReconciliationWindow) -> None:
    print(f"Reconciliation {run.id} ({run.status}):")
    print(f"  Period:      {window.period_start.isoformat()} → {window.period_end.isoformat()}")
    print(f"  Total:       {window.total_count}")
    print(f"  Matched:     {window.matched_count}")
    print(f"  Unmatched:   {window.unmatched_count}")
    print(f"  Discrepancy: {window.discrepancy_count}")
