from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union
from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Union[str, int, float, Decimal]) -> Decimal:
    # str() evita arrastrar el error binario de un float
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    """Redondeo único a la unidad menor (half-up)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Decimal]) -> Decimal:
    return sum((to_decimal(v) for v in values), Decimal("0"))


def percentage_of(amount: Decimal, percentage: Decimal) -> Decimal:
    return quantize_money(to_decimal(amount) * to_decimal(percentage) / HUNDRED)


def to_minor_units(amount: Decimal) -> int:
    """Naira -> kobo, tal como espera Paystack."""
    return int((to_decimal(amount) * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def encode_price(amount: Decimal) -> str:
    return str(quantize_money(to_decimal(amount)))


def from_minor_units(amount_minor: int) -> Decimal:
    return quantize_money(Decimal(amount_minor) / HUNDRED)


class MinorUnits(TypeDecorator):
    """
    Importe guardado como entero en la unidad menor (kobo).

    En Python se usa Decimal; en SQL las sumas y comparaciones son enteras.
    """
    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_minor_units(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_minor_units(value)
