"""Pick the "best" delivery option of a quote.

A candidate pairs a carrier deadline (days) with the charged shipping value.
When one candidate is both the fastest and the cheapest it wins outright;
otherwise the candidate closest to that ideal point wins, measuring each axis
relative to its minimum: ``deadline / min_deadline + price / min_price``
(a zero minimum price is replaced by 1). Ties keep the earliest candidate.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, NamedTuple, Sequence

from freight_sync.common.normalize import as_record, ensure_array, pick_number, pick_string, to_numeric_string

__all__ = [
    "OptionCandidate",
    "BestOption",
    "make_candidate",
    "candidates_from_payload",
    "select_best_option",
]


@dataclass(slots=True, frozen=True)
class OptionCandidate:
    deadline: float
    price: float
    shipping_value: str

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.deadline)
            and self.deadline > 0
            and math.isfinite(self.price)
            and self.price >= 0
        )


class BestOption(NamedTuple):
    deadline: int | float | None
    freight_cost: str | None


NO_BEST_OPTION = BestOption(None, None)


def make_candidate(deadline: Any, shipping_value: Any) -> OptionCandidate | None:
    """Build a candidate from a carrier deadline and a raw shipping value."""

    if deadline is None or isinstance(deadline, bool):
        return None
    if isinstance(shipping_value, Decimal):
        shipping_value = str(shipping_value)
    value_text = to_numeric_string(shipping_value)
    if value_text is None:
        return None
    try:
        candidate = OptionCandidate(deadline=float(deadline), price=float(value_text), shipping_value=value_text)
    except (TypeError, ValueError):
        return None
    return candidate if candidate.is_valid() else None


def candidates_from_payload(options: Any) -> list[OptionCandidate]:
    """Candidates from a vendor ``opcoesEntrega`` array."""

    candidates: list[OptionCandidate] = []
    for raw in ensure_array(options):
        option = as_record(raw)
        if option is None:
            continue
        deadlines = as_record(option.get("prazoEntrega")) or {}
        deadline = pick_number(deadlines, "prazoTransportadora")
        shipping_value = pick_number(option, "freteCobrar")
        # whole days, as stored in freight_quote_options.carrier_deadline
        candidate = make_candidate(
            int(deadline) if deadline is not None else None,
            shipping_value if shipping_value is not None else pick_string(option, "freteCobrar"),
        )
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def _as_deadline(value: float) -> int | float:
    return int(value) if value.is_integer() else value


def select_best_option(candidates: Iterable[OptionCandidate]) -> BestOption:
    valid: Sequence[OptionCandidate] = [candidate for candidate in candidates if candidate.is_valid()]
    if not valid:
        return NO_BEST_OPTION

    min_deadline = min(candidate.deadline for candidate in valid)
    min_price = min(candidate.price for candidate in valid)

    for candidate in valid:
        if candidate.deadline == min_deadline and candidate.price == min_price:
            return BestOption(_as_deadline(candidate.deadline), candidate.shipping_value)

    price_floor = min_price if min_price > 0 else 1
    best = valid[0]
    best_score = best.deadline / min_deadline + best.price / price_floor
    for candidate in valid[1:]:
        score = candidate.deadline / min_deadline + candidate.price / price_floor
        if score < best_score:
            best, best_score = candidate, score
    return BestOption(_as_deadline(best.deadline), best.shipping_value)
