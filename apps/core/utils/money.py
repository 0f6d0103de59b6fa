from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal('0.00')
CENT = Decimal('0.01')
# Largest value a DecimalField(max_digits=12, decimal_places=2) can store.
MAX_AMOUNT = Decimal('9999999999.99')


def to_decimal(value) -> Decimal:
    try:
        result = Decimal(str(value if value is not None and value != '' else '0'))
    except InvalidOperation:
        raise ValueError(f'Invalid money amount: {value!r}') from None
    if not result.is_finite():
        raise ValueError(f'Money amount must be finite: {value!r}')
    return result


def quantize(value) -> Decimal:
    try:
        return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f'Money amount out of range: {value!r}') from None


def has_at_most_two_decimals(value) -> bool:
    return to_decimal(value) == quantize(value)


def exceeds_max_amount(value) -> bool:
    return quantize(value) > MAX_AMOUNT


def non_negative(value) -> Decimal:
    value = quantize(value)
    return value if value > 0 else ZERO


def split_by_weights(total, weights):
    """Split ``total`` across ``weights``; the rounding remainder lands on the last part."""
    total = quantize(total)
    weights = [to_decimal(weight) for weight in weights]
    weight_sum = sum(weights, Decimal('0'))
    if not weights:
        return []
    if weight_sum <= 0:
        raise ValueError('Term weights must add up to a positive number.')

    parts = []
    remaining = total
    for index, weight in enumerate(weights, start=1):
        if index == len(weights):
            allocation = remaining
        else:
            allocation = quantize(total * weight / weight_sum)
            remaining -= allocation
        parts.append(quantize(allocation))
    return parts
