from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol, TypeVar

from salesflow.errors import ValidationError


_QUANTUM = Decimal("0.000001")
ZERO = Decimal("0")


class PricedLine(Protocol):
    baseamount: Decimal
    manualdiscountamount: Decimal
    volumediscountamount: Decimal
    tax: Decimal
    extendedamount: Decimal


HeaderT = TypeVar("HeaderT")


@dataclass(frozen=True, slots=True)
class LineAmounts:
    baseamount: Decimal
    extendedamount: Decimal


@dataclass(frozen=True, slots=True)
class LineTotals:
    totallineitemamount: Decimal
    totaldiscount: Decimal
    totaltax: Decimal
    grandtotal: Decimal


def q(value: Decimal | int | str | None) -> Decimal:
    if value is None:
        return ZERO.quantize(_QUANTUM)
    return Decimal(value).quantize(_QUANTUM)


def validate_line_inputs(
    quantity: Decimal,
    unit_price: Decimal,
    manual_discount: Decimal = ZERO,
    volume_discount: Decimal = ZERO,
    tax: Decimal = ZERO,
) -> None:
    messages: list[str] = []
    if quantity <= ZERO:
        messages.append("quantity must be greater than 0")
    if unit_price < ZERO:
        messages.append("unit price must not be negative")
    if manual_discount < ZERO:
        messages.append("manual discount must not be negative")
    if volume_discount < ZERO:
        messages.append("volume discount must not be negative")
    if tax < ZERO:
        messages.append("tax must not be negative")

    base_amount = quantity * unit_price
    if manual_discount + volume_discount > base_amount:
        messages.append("total discount must not exceed the base amount")

    if messages:
        raise ValidationError(messages)


def compute_line_amounts(
    quantity: Decimal,
    unit_price: Decimal,
    manual_discount: Decimal = ZERO,
    volume_discount: Decimal = ZERO,
    tax: Decimal = ZERO,
) -> LineAmounts:
    # amounts derive from the inputs as stored
    quantity, unit_price = q(quantity), q(unit_price)
    manual_discount, volume_discount, tax = q(manual_discount), q(volume_discount), q(tax)
    validate_line_inputs(quantity, unit_price, manual_discount, volume_discount, tax)
    base_amount = q(quantity * unit_price)
    extended_amount = q(base_amount - manual_discount - volume_discount + tax)
    return LineAmounts(baseamount=base_amount, extendedamount=extended_amount)


def aggregate(lines: Iterable[PricedLine]) -> LineTotals:
    base = ZERO
    discount = ZERO
    tax = ZERO
    extended = ZERO
    for line in lines:
        base += line.baseamount
        discount += line.manualdiscountamount + line.volumediscountamount
        tax += line.tax
        extended += line.extendedamount
    return LineTotals(
        totallineitemamount=q(base),
        totaldiscount=q(discount),
        totaltax=q(tax),
        grandtotal=q(extended),
    )


def header_totals(lines: Iterable[PricedLine], freightamount: Decimal | None = None) -> dict[str, Decimal]:
    totals = aggregate(lines)
    freight = q(freightamount)
    return {
        "totallineitemamount": totals.totallineitemamount,
        "discountamount": totals.totaldiscount,
        "totaltax": totals.totaltax,
        "freightamount": freight,
        "totalamountlessfreight": totals.grandtotal,
        "totalamount": q(totals.grandtotal + freight),
    }


def apply_header_totals(header: HeaderT, lines: Iterable[PricedLine]) -> HeaderT:
    for field, value in header_totals(lines, getattr(header, "freightamount", None)).items():
        setattr(header, field, value)
    return header


def priced_line_fields(
    quantity: Decimal,
    priceperunit: Decimal,
    manualdiscountamount: Decimal | None = None,
    volumediscountamount: Decimal | None = None,
    tax: Decimal | None = None,
) -> dict[str, Any]:
    quantity, priceperunit = q(quantity), q(priceperunit)
    manual = q(manualdiscountamount)
    volume = q(volumediscountamount)
    line_tax = q(tax)
    amounts = compute_line_amounts(quantity, priceperunit, manual, volume, line_tax)
    return {
        "quantity": quantity,
        "priceperunit": priceperunit,
        "manualdiscountamount": manual,
        "volumediscountamount": volume,
        "tax": line_tax,
        "baseamount": amounts.baseamount,
        "extendedamount": amounts.extendedamount,
    }
