from __future__ import annotations

from enum import IntEnum


class PaymentTerms(IntEnum):
    NET_30 = 1
    NET_45 = 2
    NET_60 = 3
    NET_90 = 4
    TWO_PERCENT_10_NET_30 = 5
    DUE_ON_RECEIPT = 6
    CASH_ON_DELIVERY = 7
    PREPAID = 8


DEFAULT_DUE_DAYS = 30

_DUE_DAYS: dict[int, int] = {
    PaymentTerms.NET_30: 30,
    PaymentTerms.NET_45: 45,
    PaymentTerms.NET_60: 60,
    PaymentTerms.NET_90: 90,
    PaymentTerms.TWO_PERCENT_10_NET_30: 30,
    PaymentTerms.DUE_ON_RECEIPT: 0,
    PaymentTerms.CASH_ON_DELIVERY: 0,
    PaymentTerms.PREPAID: 0,
}


def payment_terms_days(code: int | None, default: int = DEFAULT_DUE_DAYS) -> int:
    if code is None:
        return default
    return _DUE_DAYS.get(code, default)
