from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

# One centavo either way is accepted between the stored and the reported amount.
VALUE_TOLERANCE_CENTS = 1


def parse_money_cents(value: object) -> int | None:
    """Converts a gateway amount ("14.99", "14,99", 14.99) into integer cents."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    elif isinstance(value, str):
        raw = value.strip().replace(",", ".")
        if not raw:
            return None
    else:
        return None
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_decimal_str(cents: int) -> str:
    return f"{Decimal(cents) / 100:.2f}"


def format_brl(cents: int | None) -> str:
    value = Decimal(cents or 0) / 100
    return f"R$ {value:.2f}".replace(".", ",")


def money_matches(expected_cents: int, received_cents: int | None) -> bool:
    if received_cents is None:
        return False
    return abs(expected_cents - received_cents) <= VALUE_TOLERANCE_CENTS
