import logging

from django.db import transaction

from apps.common.progress_metrics import derive_chain, resynthesize_totals, total_decreased
from apps.common.status_evaluator import month_sort_key, parse_month, to_number

from .models import MonthlyProgress, Site

logger = logging.getLogger(__name__)

DERIVED_FIELDS = ["total_progress", "monthly_progress", "target_rate", "normal_rate", "delay_rate"]


class ProgressEntryError(ValueError):
    pass


def _lock_site(site: Site) -> Site:
    return Site.objects.select_for_update().get(pk=site.pk)


def _ordered_entries(site: Site):
    return sorted(site.progress_entries.all(), key=lambda row: month_sort_key(row.month))


def _clean_total(total_progress) -> float:
    value = to_number(total_progress)
    if value is None or value < 0:
        raise ProgressEntryError("Total progress must be a number >= 0.")
    return value


def _clean_normal_rate(normal_rate) -> float | None:
    if normal_rate is None:
        return None
    value = to_number(normal_rate)
    if value is None or value < 0:
        raise ProgressEntryError("Normal rate must be a number >= 0.")
    return value


def _rederive_from(rows, *, start_index: int = 0) -> int:
    derived_rows = derive_chain((row.total_progress, row.normal_rate) for row in rows)
    updated = 0
    for row, derived in zip(rows[start_index:], derived_rows[start_index:]):
        row.monthly_progress = derived.monthly_progress
        row.target_rate = derived.target_rate
        row.delay_rate = derived.delay_rate
        row.save(update_fields=DERIVED_FIELDS)
        updated += 1
    return updated


@transaction.atomic
def record_progress(*, site: Site, month: str, total_progress, normal_rate=None, observations: str = "") -> MonthlyProgress:
    if parse_month(month) is None:
        raise ProgressEntryError(f"Invalid month {month!r}, expected YYYY-MM.")
    total = _clean_total(total_progress)
    rate = _clean_normal_rate(normal_rate)

    site = _lock_site(site)
    if site.progress_entries.filter(month=month).exists():
        logger.warning("Rejected duplicate progress for site %s month %s", site.pk, month)
        raise ProgressEntryError(f"Progress for {month} already exists on this site.")

    progress = MonthlyProgress.objects.create(
        site=site,
        month=month,
        total_progress=total,
        normal_rate=rate if rate is not None else site.effective_normal_rate(),
        observations=(observations or "").strip(),
    )

    rows = _ordered_entries(site)
    index = next(i for i, row in enumerate(rows) if row.pk == progress.pk)
    if index > 0 and total_decreased(previous_total=rows[index - 1].total_progress, current_total=total):
        logger.warning(
            "Total progress for site %s went down in %s (%s -> %s)",
            site.pk,
            month,
            rows[index - 1].total_progress,
            total,
        )
    updated = _rederive_from(rows, start_index=index)
    logger.info("Recorded progress for site %s month %s, %s period(s) re-derived", site.pk, month, updated)
    return rows[index]


@transaction.atomic
def update_progress(*, progress: MonthlyProgress, total_progress=None, normal_rate=None, observations=None) -> MonthlyProgress:
    site = _lock_site(progress.site)
    rows = _ordered_entries(site)
    index = next((i for i, row in enumerate(rows) if row.pk == progress.pk), None)
    if index is None:
        raise ProgressEntryError("Progress row no longer exists.")
    row = rows[index]

    if total_progress is not None:
        row.total_progress = _clean_total(total_progress)
        if index > 0 and total_decreased(previous_total=rows[index - 1].total_progress, current_total=row.total_progress):
            logger.warning("Total progress for site %s went down in %s", site.pk, row.month)
    rate = _clean_normal_rate(normal_rate)
    if rate is not None:
        row.normal_rate = rate
    if observations is not None:
        row.observations = observations.strip()
        row.save(update_fields=["observations"])

    updated = _rederive_from(rows, start_index=index)
    logger.info("Updated progress for site %s month %s, %s period(s) re-derived", site.pk, row.month, updated)
    return row


@transaction.atomic
def delete_progress(*, progress: MonthlyProgress) -> int:
    site = _lock_site(progress.site)
    month = progress.month
    progress.delete()

    rows = _ordered_entries(site)
    totals = resynthesize_totals(row.monthly_progress for row in rows)
    updated = 0
    for row, total in zip(rows, totals):
        if row.total_progress == total:
            continue
        row.total_progress = total
        row.save(update_fields=["total_progress"])
        updated += 1
    logger.info("Deleted progress for site %s month %s, %s total(s) rewritten", site.pk, month, updated)
    return updated


@transaction.atomic
def recompute_site_progress(*, site: Site, reset_normal_rate: bool = False) -> int:
    site = _lock_site(site)
    rows = _ordered_entries(site)
    if reset_normal_rate:
        rate = site.effective_normal_rate()
        for row in rows:
            row.normal_rate = rate
    updated = _rederive_from(rows)
    logger.info("Recomputed %s period(s) for site %s", updated, site.pk)
    return updated
