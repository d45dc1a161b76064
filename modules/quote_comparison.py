"""
Quote comparison for presenting provider quotes side by side.

Picks the cheapest, the fastest and a recommended quote that balances price
(70%) against lead time (30%).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from core.exceptions import InvalidSpec
from models.quote import Quote


PRICE_WEIGHT = 0.7
SPEED_WEIGHT = 0.3


@dataclass(frozen=True)
class QuoteComparison:
    quotes: List[Quote]
    cheapest: Quote
    fastest: Quote
    recommended: Quote

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cheapest": self.cheapest.provider_id,
            "fastest": self.fastest.provider_id,
            "recommended": self.recommended.provider_id,
            "quotes": [q.to_dict() for q in self.quotes],
        }


def _score(quote: Quote, max_total: float, max_days: int) -> float:
    price = quote.cost.total / max_total if max_total > 0 else 0.0
    speed = quote.total_lead_days / max_days if max_days > 0 else 0.0
    return PRICE_WEIGHT * price + SPEED_WEIGHT * speed


def compare_quotes(quotes: Sequence[Quote]) -> QuoteComparison:
    """
    Compare available quotes.

    Raises:
        InvalidSpec: If there is nothing to compare
    """
    available = [q for q in quotes if q.available]
    if not available:
        raise InvalidSpec("No quotes to compare")

    max_total = max(q.cost.total for q in available)
    max_days = max(q.total_lead_days for q in available)

    return QuoteComparison(
        quotes=sorted(available, key=lambda q: q.sort_key),
        cheapest=min(available, key=lambda q: q.cost.total),
        fastest=min(available, key=lambda q: q.total_lead_days),
        recommended=min(available, key=lambda q: _score(q, max_total, max_days)),
    )
