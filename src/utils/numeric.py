from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

LOT_TOLERANCE = Decimal("1e-9")

QUANTITY_EXPONENT = Decimal("0.00000001")
USD_EXPONENT = Decimal("0.01")


def to_decimal(value: object, fallback: Decimal = Decimal(0)) -> Decimal:
    """Coerce ``value`` into a finite Decimal, returning ``fallback`` otherwise.

    Accepts Decimals, ints, floats and numeric strings. ``None``, booleans,
    unparsable strings, NaN and infinities all resolve to ``fallback``.
    """
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # Going through repr keeps 0.1 as Decimal("0.1") instead of its binary expansion.
        result = Decimal(repr(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return fallback
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            return fallback
    else:
        return fallback

    if not result.is_finite():
        return fallback
    return result


def is_effectively_zero(value: Decimal, tolerance: Decimal = LOT_TOLERANCE) -> bool:
    return abs(value) <= tolerance


def round_quantity(value: Decimal) -> Decimal:
    return _quantize(value, QUANTITY_EXPONENT)


def round_usd(value: Decimal) -> Decimal:
    return _quantize(value, USD_EXPONENT)


def round_unit_cost(value: Decimal) -> Decimal:
    return _quantize(value, QUANTITY_EXPONENT)


def _quantize(value: Decimal, exponent: Decimal) -> Decimal:
    with localcontext() as ctx:
        # quantize() raises once the result has more digits than the context precision (e.g. wei amounts).
        ctx.prec = max(ctx.prec, value.adjusted() - exponent.adjusted() + 2)
        rounded = value.quantize(exponent, rounding=ROUND_HALF_UP)
    # Normalize negative zero so "-0.00" never leaks into summaries.
    if rounded.is_zero():
        return abs(rounded)
    return rounded
