import logging

from django.http import HttpRequest, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_http_methods

from apps.common.site_snapshot import build_project_summary, build_site_snapshot, entry_from_row
from apps.common.status_evaluator import parse_month

from .models import Project, Site

logger = logging.getLogger(__name__)


def _json_error(message: str, status: int) -> JsonResponse:
    return JsonResponse({"error": {"message": message}}, status=status)


def _progress_row(row) -> dict:
    return {
        "id": row.id,
        **entry_from_row(row).as_dict(),
        "updated_at": row.updated_at.isoformat(),
    }


@require_http_methods(["GET"])
def site_status(request: HttpRequest, site_id: int) -> JsonResponse:
    site = get_object_or_404(Site, id=site_id)
    return JsonResponse({"data": build_site_snapshot(site=site)})


@require_http_methods(["GET"])
def site_progress(request: HttpRequest, site_id: int) -> JsonResponse:
    site = get_object_or_404(Site, id=site_id)
    query = site.progress_entries.all()

    for param, lookup in (("month", "month"), ("startYm", "month__gte"), ("endYm", "month__lte")):
        value = request.GET.get(param)
        if not value:
            continue
        if parse_month(value) is None:
            return _json_error(f"Invalid {param} parameter (YYYY-MM).", 400)
        query = query.filter(**{lookup: value})

    order = (request.GET.get("order") or "desc").lower()
    if order not in {"asc", "desc"}:
        return _json_error("Invalid order parameter (asc or desc).", 400)
    query = query.order_by("month" if order == "asc" else "-month")

    limit = request.GET.get("limit")
    if limit:
        if not limit.isdigit() or int(limit) <= 0:
            return _json_error("Invalid limit parameter.", 400)
        query = query[: int(limit)]

    return JsonResponse({"data": [_progress_row(row) for row in query]})


@require_http_methods(["GET"])
def project_summary(request: HttpRequest, project_id: int) -> JsonResponse:
    project = get_object_or_404(Project, id=project_id)
    summary = build_project_summary(project=project)
    if summary["demobilized_sites"]:
        logger.info("Project %s has %s demobilized site(s)", project.id, summary["demobilized_sites"])
    return JsonResponse({"data": summary})
