from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_money_or_none(value: Decimal | int | float | str | None) -> Decimal | None:
    if value is None:
        return None
    return to_money(value)


def money_to_float(value: Decimal | None) -> float | None:
    if value is None:
        return None
    return float(to_money(value))
