import logging
from datetime import date, datetime, time

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from apps.common.site_snapshot import build_site_snapshot
from apps.sites.models import Site

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Evaluate status and demobilization stage of active sites and list alert candidates."

    def add_arguments(self, parser):
        parser.add_argument("--project", type=int, help="Only evaluate sites of this project id.")
        parser.add_argument("--date", help="Evaluate as of this day (YYYY-MM-DD) instead of today.")
        parser.add_argument(
            "--alerts-only",
            action="store_true",
            help="Only print sites with at least one alert candidate.",
        )

    def handle(self, *args, **options):
        now = timezone.localtime()
        if options["date"]:
            try:
                now = datetime.combine(date.fromisoformat(options["date"]), time(12))
            except ValueError as exc:
                raise CommandError(f"Invalid --date {options['date']!r}, expected YYYY-MM-DD.") from exc

        sites = Site.objects.filter(is_active=True).select_related("project").prefetch_related("progress_entries")
        if options["project"]:
            sites = sites.filter(project_id=options["project"])

        flagged = 0
        evaluated = 0
        for site in sites.order_by("project__name", "name", "id"):
            snapshot = build_site_snapshot(site=site, now=now)
            evaluated += 1
            if snapshot["alert_kinds"]:
                flagged += 1
            elif options["alerts_only"]:
                continue
            line = (
                f"{site.project.name} / {site.name}: "
                f"month={snapshot['latest_month'] or '-'} "
                f"status={snapshot['latest_status'] or '-'} "
                f"stage={snapshot['demobilization_stage']}"
            )
            if snapshot["alert_label"]:
                line += f" [{snapshot['alert_label']}]"
            if snapshot["alert_kinds"]:
                line += f" alerts={','.join(snapshot['alert_kinds'])}"
            if snapshot["demobilized"]:
                line = self.style.ERROR(line)
            elif snapshot["alert_kinds"]:
                line = self.style.WARNING(line)
            self.stdout.write(line)

        logger.info("Evaluated %s site(s), %s with alert candidates", evaluated, flagged)
        self.stdout.write(self.style.SUCCESS(f"Completed: sites(evaluated={evaluated}, flagged={flagged})."))
