"""
Executive summary text assembled from bucket KPIs and comparisons.
"""

from __future__ import annotations

from typing import Mapping, Sequence

from acquiring_kpi.contracts.records import BucketKPI, ComparisonResult
from acquiring_kpi.contracts.schemas import USER_REASON_PHRASES

NO_DATA_SUMMARY = "No transaction data available for executive summary."

# Success-rate drop (percentage points) that earns its own sentence
DECLINE_ALERT_THRESHOLD = -0.5


def _user_drivers(latest: BucketKPI, phrases: Mapping[str, str]) -> list[str]:
    drivers: list[str] = []
    for record in latest.user_declines:
        phrase = phrases.get(record.code)
        if phrase and phrase not in drivers:
            drivers.append(phrase)
    return drivers[:2]


def executive_summary(
    channel: str,
    granularity: str,
    buckets: Sequence[BucketKPI],
    comparisons: Sequence[ComparisonResult],
    phrases: Mapping[str, str] = USER_REASON_PHRASES,
) -> str:
    if not buckets:
        return NO_DATA_SUMMARY

    latest = buckets[-1]
    last_comparison = comparisons[-1] if comparisons else None
    sentences = [
        f"{channel} {granularity.lower()} performance reflects a success rate of "
        f"{latest.success_rate:.2f}% with total volume of {latest.total:,} transactions."
    ]

    if last_comparison and last_comparison.success_rate_change < DECLINE_ALERT_THRESHOLD:
        sentences.append(
            f"Success rate declined by {abs(last_comparison.success_rate_change):.2f}% "
            "in the most recent period."
        )

    if last_comparison and (
        last_comparison.business_change > 0
        or last_comparison.user_change > 0
        or last_comparison.technical_change > 0
    ):
        sentences.append(
            "Decline volumes increased across one or more categories and warrant continued monitoring."
        )

    drivers = _user_drivers(latest, phrases)
    if drivers:
        sentences.append(f"User decline drivers indicate {' and '.join(drivers)}.")

    if any(d.code == "05" for d in latest.business_declines):
        sentences.append(
            "Issuer risk screening and card blocking policies (code 05) remain a notable "
            "contributor to business declines."
        )

    if any(d.code == "91" for d in latest.technical_declines):
        sentences.append("Technical declines include issuer or network instability indicators (code 91).")

    return " ".join(sentences)
