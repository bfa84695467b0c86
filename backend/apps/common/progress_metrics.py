from __future__ import annotations

import math
from dataclasses import asdict, dataclass

from apps.common.status_evaluator import classify, to_number

# Implies an 8 month baseline when a site has no planned duration.
DEFAULT_NORMAL_RATE = 12.5


@dataclass(frozen=True)
class DerivedRow:
    monthly_progress: float
    target_rate: float
    delay_rate: float

    @property
    def status(self) -> str:
        return classify(self.monthly_progress)

    def as_dict(self):
        data = asdict(self)
        data["status"] = self.status
        return data


def round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def normal_rate_for(duration_months, *, fallback: float = DEFAULT_NORMAL_RATE) -> float:
    duration = to_number(duration_months)
    if not duration or duration < 0:
        return fallback
    return round1(100 / duration)


def target_rate_for(*, monthly_progress, normal_rate) -> float:
    normal = to_number(normal_rate)
    if not normal:
        return 0.0
    return round1((to_number(monthly_progress) or 0.0) / normal * 100)


def derive_row(*, current_total, previous_total, normal_rate, is_first_period: bool) -> DerivedRow:
    current = to_number(current_total) or 0.0
    if current == 0:
        return DerivedRow(monthly_progress=0.0, target_rate=0.0, delay_rate=100.0)

    if is_first_period:
        monthly = current
    else:
        monthly = max(0.0, current - (to_number(previous_total) or 0.0))
    target = target_rate_for(monthly_progress=monthly, normal_rate=normal_rate)
    return DerivedRow(monthly_progress=monthly, target_rate=target, delay_rate=round1(100 - target))


def derive_chain(periods) -> list[DerivedRow]:
    # periods: ascending (total_progress, normal_rate) pairs.
    rows = []
    previous = None
    for index, (total, normal_rate) in enumerate(periods):
        rows.append(
            derive_row(
                current_total=total,
                previous_total=previous,
                normal_rate=normal_rate,
                is_first_period=index == 0,
            )
        )
        previous = total
    return rows


def resynthesize_totals(monthly_values) -> list[float]:
    totals = []
    cumulative = 0.0
    for value in monthly_values:
        cumulative += to_number(value) or 0.0
        totals.append(cumulative)
    return totals


def total_decreased(*, previous_total, current_total) -> bool:
    previous = to_number(previous_total)
    current = to_number(current_total)
    if previous is None or current is None:
        return False
    return current < previous
