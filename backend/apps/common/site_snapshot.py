from collections.abc import Mapping

from django.conf import settings
from django.utils import timezone

from apps.common.progress_metrics import round1
from apps.common.status_evaluator import (
    MISSING_DATA_GRACE_DAYS,
    STATUS_CRITICAL,
    STATUS_GOOD,
    STATUS_PROBLEMATIC,
    MonthlyProgressEntry,
    alert_kinds,
    evaluate_site_status,
    sort_by_month,
    to_number,
)

ENTRY_FIELDS = (
    "site_id",
    "month",
    "total_progress",
    "monthly_progress",
    "target_rate",
    "normal_rate",
    "delay_rate",
    "observations",
)


def _grace_days() -> int:
    return int(settings.SITE_PROGRESS.get("MISSING_DATA_GRACE_DAYS", MISSING_DATA_GRACE_DAYS))


def entry_from_row(row) -> MonthlyProgressEntry:
    if isinstance(row, Mapping):
        values = {field: row.get(field) for field in ENTRY_FIELDS}
    else:
        values = {field: getattr(row, field, None) for field in ENTRY_FIELDS}
    return MonthlyProgressEntry(
        site_id=values["site_id"],
        month=values["month"] or "",
        total_progress=to_number(values["total_progress"]) or 0.0,
        monthly_progress=to_number(values["monthly_progress"]) or 0.0,
        target_rate=to_number(values["target_rate"]) or 0.0,
        normal_rate=to_number(values["normal_rate"]),
        delay_rate=to_number(values["delay_rate"]),
        observations=values["observations"] or "",
    )


def site_entries(site):
    return sort_by_month(entry_from_row(row) for row in site.progress_entries.all())


def build_site_snapshot(*, site, now=None, entries=None):
    now = now or timezone.localtime()
    entries = site_entries(site) if entries is None else sort_by_month(entries)
    result = evaluate_site_status(entries, now=now, enforce_sort=False, grace_days=_grace_days())
    return {
        "site_id": site.id,
        "site_name": site.name,
        "site_code": site.code,
        "is_active": site.is_active,
        "normal_rate": site.effective_normal_rate(),
        "period_count": len(entries),
        **result.as_dict(),
        "alert_kinds": alert_kinds(result),
    }


def build_project_summary(*, project, now=None):
    now = now or timezone.localtime()
    sites = list(project.sites.prefetch_related("progress_entries").order_by("name", "id"))
    site_rows = [build_site_snapshot(site=site, now=now) for site in sites]

    latest_totals = [row["total_progress"] for row in site_rows if row["latest_month"] is not None]
    status_counts = {STATUS_GOOD: 0, STATUS_PROBLEMATIC: 0, STATUS_CRITICAL: 0}
    for row in site_rows:
        if row["latest_status"] in status_counts:
            status_counts[row["latest_status"]] += 1

    return {
        "project_id": project.id,
        "project_name": project.name,
        "project_status": project.status,
        "total_sites": len(site_rows),
        "active_sites": sum(1 for row in site_rows if row["is_active"]),
        "average_progress": round1(sum(latest_totals) / len(latest_totals)) if latest_totals else None,
        "good_sites": status_counts[STATUS_GOOD],
        "problematic_sites": status_counts[STATUS_PROBLEMATIC],
        "critical_sites": status_counts[STATUS_CRITICAL],
        "demobilized_sites": sum(1 for row in site_rows if row["demobilized"]),
        "missing_data_sites": sum(1 for row in site_rows if row["missing_data"]),
        "sites": site_rows,
    }
