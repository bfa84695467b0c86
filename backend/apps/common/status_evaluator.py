from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass

STATUS_GOOD = "good"
STATUS_PROBLEMATIC = "problematic"
STATUS_CRITICAL = "critical"
STATUS_CHOICES = [
    (STATUS_GOOD, "good"),
    (STATUS_PROBLEMATIC, "problematic"),
    (STATUS_CRITICAL, "critical"),
]

PROBLEMATIC_THRESHOLD = 30
GOOD_THRESHOLD = 50

DEMOBILIZATION_WINDOW = 4
DEMOBILIZED_STAGES = {3, 4}
DEMOBILIZATION_ALERT_LABELS = {
    1: "Alert (insufficient yield)",
    2: "Pre-demobilization",
    3: "Project demobilized",
    4: "Project demobilized",
}

MISSING_DATA_GRACE_DAYS = 5

ALERT_DATA_ENTRY_DELAY = "data_entry_delay"
ALERT_PROBLEMATIC = "problematic"
ALERT_CRITICAL = "critical"
ALERT_PRE_DEMOBILIZATION = "pre_demobilization"
ALERT_DEMOBILIZATION = "demobilization"

MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def to_number(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def classify(monthly_progress) -> str:
    value = to_number(monthly_progress)
    if value is None or value < PROBLEMATIC_THRESHOLD:
        return STATUS_CRITICAL
    if value < GOOD_THRESHOLD:
        return STATUS_PROBLEMATIC
    return STATUS_GOOD


def parse_month(value) -> tuple[int, int] | None:
    match = MONTH_RE.match(value or "") if isinstance(value, str) else None
    if not match:
        return None
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        return None
    return year, month


def format_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def current_month(now) -> str:
    return format_month(now.year, now.month)


def month_sort_key(value):
    # Unparseable months go last, in plain string order.
    parsed = parse_month(value)
    if parsed is None:
        return (1, 0, 0, str(value))
    return (0, parsed[0], parsed[1], "")


@dataclass(frozen=True)
class MonthlyProgressEntry:
    site_id: object
    month: str
    total_progress: float = 0.0
    monthly_progress: float | None = 0.0
    target_rate: float = 0.0
    normal_rate: float | None = None
    delay_rate: float | None = None
    observations: str = ""

    @property
    def status(self) -> str:
        return classify(self.monthly_progress)

    def as_dict(self):
        data = asdict(self)
        data["status"] = self.status
        return data


@dataclass(frozen=True)
class DemobilizationEvaluation:
    demobilization_stage: int = 0
    demobilized: bool = False
    alert_label: str | None = None

    def as_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class SiteEvaluationResult:
    demobilization_stage: int
    demobilized: bool
    alert_label: str | None
    latest_status: str | None
    latest_month: str | None
    total_progress: float | None
    monthly_progress: float | None
    missing_data: bool

    def as_dict(self):
        return asdict(self)


def sort_by_month(entries):
    return sorted(entries, key=lambda entry: month_sort_key(entry.month))


def detect_missing_current_month(history, *, now, grace_days: int = MISSING_DATA_GRACE_DAYS) -> bool:
    month = current_month(now)
    if any(entry.month == month for entry in history):
        return False
    return now.day > grace_days


def evaluate_demobilization(history) -> DemobilizationEvaluation:
    # Later checks overwrite earlier stages. Stage 4 needs month 3 back at >= 30.
    if not history:
        return DemobilizationEvaluation()

    totals = [to_number(entry.total_progress) for entry in history[:DEMOBILIZATION_WINDOW]]
    totals += [None] * (DEMOBILIZATION_WINDOW - len(totals))
    m1, m2, m3, m4 = totals

    stage = 0
    if m1 is not None and m1 < 50:
        stage = 1
    if m2 is not None and m2 < 30:
        stage = 2
    if m3 is not None and m3 < 30:
        stage = 3
    if m4 is not None and m3 is not None and m3 >= 30 and m4 < 50:
        stage = 4

    return DemobilizationEvaluation(
        demobilization_stage=stage,
        demobilized=stage in DEMOBILIZED_STAGES,
        alert_label=DEMOBILIZATION_ALERT_LABELS.get(stage),
    )


def evaluate_site_status(
    history,
    *,
    now,
    enforce_sort: bool = True,
    grace_days: int = MISSING_DATA_GRACE_DAYS,
) -> SiteEvaluationResult:
    rows = sort_by_month(history) if enforce_sort else list(history)
    missing_data = detect_missing_current_month(rows, now=now, grace_days=grace_days)
    demobilization = evaluate_demobilization(rows)
    if not rows:
        return SiteEvaluationResult(
            demobilization_stage=demobilization.demobilization_stage,
            demobilized=demobilization.demobilized,
            alert_label=demobilization.alert_label,
            latest_status=None,
            latest_month=None,
            total_progress=None,
            monthly_progress=None,
            missing_data=missing_data,
        )

    latest = rows[-1]
    return SiteEvaluationResult(
        demobilization_stage=demobilization.demobilization_stage,
        demobilized=demobilization.demobilized,
        alert_label=demobilization.alert_label,
        latest_status=latest.status,
        latest_month=latest.month,
        total_progress=latest.total_progress,
        monthly_progress=latest.monthly_progress,
        missing_data=missing_data,
    )


def alert_kinds(result: SiteEvaluationResult) -> list[str]:
    kinds = []
    if result.missing_data:
        kinds.append(ALERT_DATA_ENTRY_DELAY)
    if result.demobilized:
        kinds.append(ALERT_DEMOBILIZATION)
    elif result.demobilization_stage == 2:
        kinds.append(ALERT_PRE_DEMOBILIZATION)
    if result.latest_status == STATUS_CRITICAL:
        kinds.append(ALERT_CRITICAL)
    elif result.latest_status == STATUS_PROBLEMATIC:
        kinds.append(ALERT_PROBLEMATIC)
    return kinds
