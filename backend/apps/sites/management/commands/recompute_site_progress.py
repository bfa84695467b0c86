from django.core.management.base import BaseCommand, CommandError

from apps.sites.models import Site
from apps.sites.services import recompute_site_progress


class Command(BaseCommand):
    help = (
        "Re-derive monthly progress, target rate, delay rate and status of every period "
        "from the stored cumulative totals."
    )

    def add_arguments(self, parser):
        parser.add_argument("--site", type=int, help="Only recompute this site id.")
        parser.add_argument(
            "--reset-normal-rate",
            action="store_true",
            help="Set every period's normal rate to the site's current normal rate first.",
        )

    def handle(self, *args, **options):
        sites = Site.objects.order_by("id")
        if options["site"]:
            sites = sites.filter(id=options["site"])
            if not sites.exists():
                raise CommandError(f"Site {options['site']} does not exist.")

        site_count = 0
        period_count = 0
        for site in sites:
            period_count += recompute_site_progress(site=site, reset_normal_rate=options["reset_normal_rate"])
            site_count += 1

        self.stdout.write(
            self.style.SUCCESS(
                f"Completed: sites(recomputed={site_count}), periods(recomputed={period_count})."
            )
        )
