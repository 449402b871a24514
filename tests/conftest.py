from __future__ import annotations

from typing import Any

import pytest

from acquiring_kpi.contracts.records import BucketKPI, DeclineRecord


def _ledger_row(
    when: Any,
    code: str = "00",
    channel: str = "POS",
    reason: str | None = None,
    network: str = "VISA",
    amount: Any = "100.00",
    currency: str = "064",
    mid: str = "MID00001",
    mcc: str = "5411",
    category: str = "",
) -> dict[str, Any]:
    if reason is None:
        reason = "Approved" if code == "00" else f"Reason {code}"
    return {
        "CARD_NETWORK": network,
        "TXN_TYPE": channel,
        "TRANSACTION_DATE": when,
        "MID": mid,
        "MERCHANT_NAME": "Test Merchant",
        "VALUE": amount,
        "RRNO": "000000000001",
        "MCC": mcc,
        "CURRENCY": currency,
        "RESPONSE_CODE": code,
        "RESPONSE_REASON": reason,
        "RESPONSE_CATEGORY": category,
    }


@pytest.fixture
def ledger_row():
    """Factory for one raw ledger row in export column names."""
    return _ledger_row


def _bucket(
    period: str,
    total: int = 100,
    success_rate: float = 95.0,
    business: int = 0,
    user: int = 0,
    technical: int = 0,
    user_declines: tuple[DeclineRecord, ...] = (),
    business_declines: tuple[DeclineRecord, ...] = (),
    technical_declines: tuple[DeclineRecord, ...] = (),
) -> BucketKPI:
    return BucketKPI(
        period=period,
        total=total,
        success_count=total - business - user - technical,
        success_rate=success_rate,
        business_failures=business,
        business_rate=0.0,
        user_failures=user,
        user_rate=0.0,
        technical_failures=technical,
        technical_rate=0.0,
        business_declines=business_declines,
        user_declines=user_declines,
        technical_declines=technical_declines,
    )


@pytest.fixture
def make_bucket():
    """Factory for BucketKPI values with only the fields a test cares about."""
    return _bucket


@pytest.fixture
def two_month_pos_rows(ledger_row):
    """
    100 POS rows: January 48 approved, one 51, one 05; February 45
    approved, three 51, one 05, one 91.
    """
    rows = []
    jan = ["00"] * 48 + ["51", "05"]
    feb = ["00"] * 45 + ["51", "51", "51", "05", "91"]
    for i, code in enumerate(jan):
        rows.append(ledger_row(f"2024-01-{i % 28 + 1:02d} 10:00:00", code))
    for i, code in enumerate(feb):
        rows.append(ledger_row(f"2024-02-{i % 28 + 1:02d} 10:00:00", code))
    return rows
