from __future__ import annotations

import pytest

from salesflow.sales.payment_terms import DEFAULT_DUE_DAYS, PaymentTerms, payment_terms_days


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        (PaymentTerms.NET_30, 30),
        (PaymentTerms.NET_45, 45),
        (PaymentTerms.NET_60, 60),
        (PaymentTerms.NET_90, 90),
        (PaymentTerms.TWO_PERCENT_10_NET_30, 30),
        (PaymentTerms.DUE_ON_RECEIPT, 0),
        (PaymentTerms.CASH_ON_DELIVERY, 0),
        (PaymentTerms.PREPAID, 0),
    ],
)
def test_known_codes_map_to_due_days(code: int, expected: int) -> None:
    assert payment_terms_days(code) == expected


def test_missing_or_unknown_code_falls_back_to_default() -> None:
    assert payment_terms_days(None) == DEFAULT_DUE_DAYS
    assert payment_terms_days(99) == DEFAULT_DUE_DAYS
    assert payment_terms_days(None, default=14) == 14
