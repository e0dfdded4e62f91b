"""
Data models for storage layer.

Defines the aggregate usage record and its row mapping.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from ..core.pricing import COST_QUANTUM

MICROS_PER_UNIT = 1_000_000


@dataclass(frozen=True)
class UsageRecord:
    """Aggregate API usage for one provider on one calendar day.

    One record exists per (provider, date). Counters only ever grow;
    last_updated moves forward on every mutation.
    """
    id: str
    provider: str
    date: date
    request_count: int
    token_count: int
    estimated_cost: Decimal
    last_updated: datetime

    @classmethod
    def from_row(cls, row) -> "UsageRecord":
        """Build a record from a row of the api_usage_tracking table."""
        return cls(
            id=row[0],
            provider=row[1],
            date=date.fromisoformat(row[2]),
            request_count=row[3],
            token_count=row[4],
            estimated_cost=micros_to_cost(row[5]),
            last_updated=datetime.fromisoformat(row[6]),
        )


def cost_to_micros(cost: Decimal) -> int:
    """Convert a cost with at most six fractional digits to millionths."""
    return int(cost * MICROS_PER_UNIT)


def micros_to_cost(micros: int) -> Decimal:
    """Convert stored millionths back to a six-digit Decimal."""
    return (Decimal(micros) / MICROS_PER_UNIT).quantize(COST_QUANTUM)
