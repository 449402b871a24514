"""
Period-over-period comparison of adjacent bucket KPIs.
"""

from __future__ import annotations

from typing import Sequence

from acquiring_kpi.contracts.records import BucketKPI, ComparisonResult, DeclineRecord
from acquiring_kpi.pipeline.metrics import delta2


def top_mover(previous: Sequence[DeclineRecord], current: Sequence[DeclineRecord]) -> str | None:
    """
    Description of the decline whose count grew the most.

    Records are joined on (code, description); codes absent from `previous`
    count as 0 there. Only strictly positive increases qualify, and on equal
    increases the record met first in `current` wins.
    """
    prev_counts = {(d.code, d.description): d.count for d in previous}
    top_reason = None
    top_delta = 0
    for item in current:
        delta = item.count - prev_counts.get((item.code, item.description), 0)
        if delta > top_delta:
            top_delta = delta
            top_reason = item.description
    return top_reason


def compare_pair(prev: BucketKPI, curr: BucketKPI) -> ComparisonResult:
    success_delta = delta2(curr.success_rate, prev.success_rate)
    business_delta = curr.business_failures - prev.business_failures
    user_delta = curr.user_failures - prev.user_failures
    technical_delta = curr.technical_failures - prev.technical_failures

    insights = []
    if success_delta < 0:
        insights.append(
            f"Success rate declined by {abs(success_delta):.2f}% from {prev.period} to {curr.period}."
        )
    elif success_delta > 0:
        insights.append(
            f"Success rate improved by {success_delta:.2f}% from {prev.period} to {curr.period}."
        )

    reason = None
    if user_delta > 0:
        reason = top_mover(prev.user_declines, curr.user_declines)
        if reason:
            insights.append(f"User declines increased mainly due to {reason}.")
        else:
            insights.append(f"User declines increased by {user_delta}.")

    if business_delta > 0:
        insights.append(f"Business declines increased by {business_delta}.")

    if technical_delta > 0:
        insights.append("Technical declines suggest possible issuer or network instability.")

    return ComparisonResult(
        from_period=prev.period,
        to_period=curr.period,
        success_rate_change=success_delta,
        business_change=business_delta,
        user_change=user_delta,
        technical_change=technical_delta,
        top_user_decline_reason=reason,
        insights=tuple(insights),
    )


def compare(buckets: Sequence[BucketKPI]) -> list[ComparisonResult]:
    """One result per adjacent pair of chronologically ordered buckets."""
    return [compare_pair(prev, curr) for prev, curr in zip(buckets, buckets[1:])]
