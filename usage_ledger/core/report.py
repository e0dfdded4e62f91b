"""
Usage reporting.

Rolls daily aggregate records up into per-provider totals.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List

from usage_ledger.storage.models import UsageRecord


@dataclass
class ProviderSummary:
    """Totals for one provider across a set of days."""
    provider: str
    days: int
    request_count: int
    token_count: int
    estimated_cost: Decimal
    first_date: date
    last_date: date

    @property
    def avg_cost_per_request(self) -> Decimal:
        if self.request_count == 0:
            return Decimal("0")
        return self.estimated_cost / self.request_count


def summarize_usage(records: Iterable[UsageRecord]) -> List[ProviderSummary]:
    """Sum daily records per provider.

    Args:
        records: Daily aggregate records, in any order

    Returns:
        One summary per provider, sorted by provider name
    """
    summaries: Dict[str, ProviderSummary] = {}
    for record in records:
        summary = summaries.get(record.provider)
        if summary is None:
            summaries[record.provider] = ProviderSummary(
                provider=record.provider,
                days=1,
                request_count=record.request_count,
                token_count=record.token_count,
                estimated_cost=record.estimated_cost,
                first_date=record.date,
                last_date=record.date
            )
            continue
        summary.days += 1
        summary.request_count += record.request_count
        summary.token_count += record.token_count
        summary.estimated_cost += record.estimated_cost
        summary.first_date = min(summary.first_date, record.date)
        summary.last_date = max(summary.last_date, record.date)

    return [summaries[name] for name in sorted(summaries)]
