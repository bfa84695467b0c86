from datetime import datetime
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings
from django.urls import reverse

from apps.common.site_snapshot import build_project_summary, build_site_snapshot, entry_from_row
from apps.sites.models import MonthlyProgress, Organization, Project, Site
from apps.sites.services import (
    ProgressEntryError,
    delete_progress,
    record_progress,
    recompute_site_progress,
    update_progress,
)


def create_site(*, name="Alpha", project=None, **kwargs):
    if project is None:
        organization = Organization.objects.create(name="Builder Co")
        project = Project.objects.create(organization=organization, name="Harbour", code="HB")
    return Site.objects.create(project=project, name=name, **kwargs)


def record_totals(site, *totals, year=2024):
    return [
        record_progress(site=site, month=f"{year}-{index:02d}", total_progress=total)
        for index, total in enumerate(totals, start=1)
    ]


class SiteNormalRateTests(TestCase):
    def test_duration_gives_normal_rate(self):
        self.assertEqual(create_site(project_duration_months=8).effective_normal_rate(), 12.5)
        self.assertEqual(create_site(project_duration_months=12).effective_normal_rate(), 8.3)

    def test_missing_duration_falls_back_to_default(self):
        self.assertEqual(create_site().effective_normal_rate(), 12.5)

    @override_settings(SITE_PROGRESS={"DEFAULT_NORMAL_RATE": 10.0, "MISSING_DATA_GRACE_DAYS": 5})
    def test_default_normal_rate_is_configurable(self):
        self.assertEqual(create_site().effective_normal_rate(), 10.0)

    def test_explicit_normal_rate_wins(self):
        self.assertEqual(create_site(project_duration_months=12, normal_rate=7.5).effective_normal_rate(), 7.5)

    def test_status_column_follows_monthly_progress(self):
        site = create_site()
        row = MonthlyProgress.objects.create(site=site, month="2024-01", total_progress=45, monthly_progress=45)
        self.assertEqual(row.status, "problematic")

        row.monthly_progress = 10
        row.save(update_fields=["monthly_progress"])
        row.refresh_from_db()
        self.assertEqual(row.status, "critical")


class RecordProgressTests(TestCase):
    def setUp(self):
        self.site = create_site(project_duration_months=10)

    def test_first_period(self):
        row = record_progress(site=self.site, month="2024-01", total_progress=40, observations="  slab poured ")

        self.assertEqual(row.monthly_progress, 40)
        self.assertEqual(row.normal_rate, 10.0)
        self.assertEqual(row.target_rate, 400.0)
        self.assertEqual(row.delay_rate, -300.0)
        self.assertEqual(row.observations, "slab poured")
        row.refresh_from_db()
        self.assertEqual(row.status, "problematic")

    def test_following_period_uses_increment(self):
        record_progress(site=self.site, month="2024-01", total_progress=40)
        row = record_progress(site=self.site, month="2024-02", total_progress=55)

        self.assertEqual(row.monthly_progress, 15)
        self.assertEqual(row.target_rate, 150.0)
        self.assertEqual(row.delay_rate, -50.0)
        self.assertEqual(row.status, "critical")

    def test_decreasing_total_is_clamped_and_logged(self):
        record_progress(site=self.site, month="2024-01", total_progress=55)

        with self.assertLogs("apps.sites.services", level="WARNING") as logs:
            row = record_progress(site=self.site, month="2024-02", total_progress=50)

        self.assertEqual((row.monthly_progress, row.target_rate, row.delay_rate), (0, 0, 100))
        self.assertIn("went down", logs.output[0])

    def test_explicit_normal_rate(self):
        row = record_progress(site=self.site, month="2024-01", total_progress=25, normal_rate="12,5")
        self.assertEqual(row.normal_rate, 12.5)
        self.assertEqual(row.target_rate, 200.0)

    def test_duplicate_month_is_rejected(self):
        record_progress(site=self.site, month="2024-01", total_progress=40)

        with self.assertRaises(ProgressEntryError):
            record_progress(site=self.site, month="2024-01", total_progress=45)
        self.assertEqual(self.site.progress_entries.count(), 1)

    def test_invalid_input_is_rejected(self):
        for month, total in (("2024-13", 10), ("2024-1", 10), ("", 10), ("2024-01", -1), ("2024-01", "abc")):
            with self.assertRaises(ProgressEntryError):
                record_progress(site=self.site, month=month, total_progress=total)
        self.assertFalse(self.site.progress_entries.exists())

    def test_backfilled_month_rederives_later_periods(self):
        record_progress(site=self.site, month="2024-01", total_progress=20)
        record_progress(site=self.site, month="2024-03", total_progress=60)

        row = record_progress(site=self.site, month="2024-02", total_progress=45)

        self.assertEqual(row.monthly_progress, 25)
        march = self.site.progress_entries.get(month="2024-03")
        self.assertEqual(march.monthly_progress, 15)
        self.assertEqual(march.target_rate, 150.0)


class UpdateAndDeleteProgressTests(TestCase):
    def setUp(self):
        self.site = create_site(project_duration_months=10)
        self.january, self.february, self.march = record_totals(self.site, 20, 45, 60)

    def test_update_total_rederives_edited_and_later_periods(self):
        update_progress(progress=self.february, total_progress=30)

        rows = {row.month: row for row in self.site.progress_entries.all()}
        self.assertEqual(rows["2024-01"].monthly_progress, 20)
        self.assertEqual(rows["2024-02"].total_progress, 30)
        self.assertEqual(rows["2024-02"].monthly_progress, 10)
        self.assertEqual(rows["2024-03"].monthly_progress, 30)
        self.assertEqual(rows["2024-03"].status, "problematic")
        self.assertEqual(rows["2024-03"].target_rate, 300.0)

    def test_update_normal_rate_only_touches_edited_period(self):
        update_progress(progress=self.february, normal_rate=25)

        february = self.site.progress_entries.get(month="2024-02")
        self.assertEqual(february.normal_rate, 25)
        self.assertEqual(february.target_rate, 100.0)
        self.assertEqual(self.site.progress_entries.get(month="2024-03").normal_rate, 10.0)

    def test_rederivation_keeps_each_period_normal_rate(self):
        update_progress(progress=self.february, normal_rate=25)
        update_progress(progress=self.january, total_progress=10)

        rows = {row.month: row for row in self.site.progress_entries.all()}
        self.assertEqual(rows["2024-02"].monthly_progress, 35)
        self.assertEqual(rows["2024-02"].target_rate, 140.0)
        self.assertEqual(rows["2024-03"].monthly_progress, 15)
        self.assertEqual(rows["2024-03"].target_rate, 150.0)

    def test_update_observations(self):
        update_progress(progress=self.march, observations=" roof done ")
        self.assertEqual(self.site.progress_entries.get(month="2024-03").observations, "roof done")

    def test_update_rejects_negative_total(self):
        with self.assertRaises(ProgressEntryError):
            update_progress(progress=self.march, total_progress=-5)

    def test_delete_middle_period_resynthesizes_totals(self):
        rewritten = delete_progress(progress=self.february)

        self.assertEqual(rewritten, 1)
        rows = list(self.site.progress_entries.order_by("month"))
        self.assertEqual([row.month for row in rows], ["2024-01", "2024-03"])
        self.assertEqual([row.total_progress for row in rows], [20, 35])
        self.assertEqual(rows[1].monthly_progress, 15)

    def test_delete_first_period(self):
        rewritten = delete_progress(progress=self.january)

        self.assertEqual(rewritten, 2)
        rows = list(self.site.progress_entries.order_by("month"))
        self.assertEqual([row.total_progress for row in rows], [25, 40])

    def test_recompute_with_reset_normal_rate(self):
        Site.objects.filter(pk=self.site.pk).update(normal_rate=20)
        MonthlyProgress.objects.filter(site=self.site).update(monthly_progress=99, target_rate=0)

        count = recompute_site_progress(site=self.site, reset_normal_rate=True)

        self.assertEqual(count, 3)
        rows = list(self.site.progress_entries.order_by("month"))
        self.assertEqual([row.monthly_progress for row in rows], [20, 25, 15])
        self.assertEqual([row.normal_rate for row in rows], [20, 20, 20])
        self.assertEqual([row.target_rate for row in rows], [100.0, 125.0, 75.0])
        self.assertEqual([row.status for row in rows], ["critical", "critical", "critical"])


class SiteSnapshotTests(TestCase):
    def test_entry_from_mapping_fills_missing_values(self):
        entry = entry_from_row({"site_id": 3, "month": "2024-02", "total_progress": None, "monthly_progress": "35"})

        self.assertEqual(entry.total_progress, 0.0)
        self.assertEqual(entry.monthly_progress, 35.0)
        self.assertIsNone(entry.normal_rate)
        self.assertEqual(entry.status, "problematic")

    def test_status_ignores_stored_column(self):
        site = create_site()
        record_totals(site, 60)
        MonthlyProgress.objects.filter(site=site).update(status="critical")

        snapshot = build_site_snapshot(site=site, now=datetime(2024, 1, 20))

        self.assertEqual(snapshot["latest_status"], "good")
        self.assertEqual(snapshot["alert_kinds"], [])

    def test_supplied_entries_are_sorted_by_month(self):
        site = create_site()
        entries = [
            entry_from_row({"site_id": site.id, "month": "2024-02", "total_progress": 20}),
            entry_from_row({"site_id": site.id, "month": "2024-01", "total_progress": 60}),
        ]

        snapshot = build_site_snapshot(site=site, now=datetime(2024, 2, 3), entries=entries)

        self.assertEqual(snapshot["latest_month"], "2024-02")
        self.assertEqual(snapshot["total_progress"], 20)
        self.assertEqual(snapshot["demobilization_stage"], 2)
        self.assertEqual(snapshot["alert_label"], "Pre-demobilization")

    def test_snapshot_without_history(self):
        site = create_site()

        snapshot = build_site_snapshot(site=site, now=datetime(2024, 1, 20))

        self.assertEqual(snapshot["period_count"], 0)
        self.assertIsNone(snapshot["latest_month"])
        self.assertTrue(snapshot["missing_data"])
        self.assertEqual(snapshot["alert_kinds"], ["data_entry_delay"])

    @override_settings(SITE_PROGRESS={"DEFAULT_NORMAL_RATE": 12.5, "MISSING_DATA_GRACE_DAYS": 25})
    def test_grace_days_are_configurable(self):
        site = create_site()
        snapshot = build_site_snapshot(site=site, now=datetime(2024, 1, 20))
        self.assertFalse(snapshot["missing_data"])


class SiteApiTests(TestCase):
    def setUp(self):
        self.alpha = create_site(name="Alpha", project_duration_months=10)
        self.project = self.alpha.project
        self.bravo = create_site(name="Bravo", project=self.project)
        self.charlie = create_site(name="Charlie", project=self.project, is_active=False)
        record_totals(self.alpha, 40, 20, 35, 45)
        record_progress(site=self.bravo, month="2024-04", total_progress=60)

        patcher = patch("apps.common.site_snapshot.timezone")
        self.timezone = patcher.start()
        self.timezone.localtime.return_value = datetime(2024, 4, 20)
        self.addCleanup(patcher.stop)

    def test_site_status(self):
        response = self.client.get(reverse("site_status", args=[self.alpha.id]))

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["site_name"], "Alpha")
        self.assertEqual(data["latest_month"], "2024-04")
        self.assertEqual(data["latest_status"], "critical")
        self.assertEqual(data["total_progress"], 45)
        self.assertEqual(data["monthly_progress"], 10)
        self.assertEqual(data["demobilization_stage"], 4)
        self.assertTrue(data["demobilized"])
        self.assertEqual(data["alert_label"], "Project demobilized")
        self.assertEqual(data["alert_kinds"], ["demobilization", "critical"])
        self.assertFalse(data["missing_data"])

    def test_site_status_unknown_site(self):
        response = self.client.get(reverse("site_status", args=[9999]))
        self.assertEqual(response.status_code, 404)

    def test_site_status_rejects_post(self):
        response = self.client.post(reverse("site_status", args=[self.alpha.id]))
        self.assertEqual(response.status_code, 405)

    def test_site_progress_defaults_to_newest_first(self):
        response = self.client.get(reverse("site_progress", args=[self.alpha.id]))

        self.assertEqual(response.status_code, 200)
        rows = response.json()["data"]
        self.assertEqual([row["month"] for row in rows], ["2024-04", "2024-03", "2024-02", "2024-01"])
        self.assertEqual(rows[0]["status"], "critical")
        self.assertEqual(rows[0]["target_rate"], 100.0)
        self.assertEqual(rows[2]["monthly_progress"], 0)

    def test_site_progress_filters(self):
        url = reverse("site_progress", args=[self.alpha.id])

        rows = self.client.get(url, {"order": "asc", "limit": "2"}).json()["data"]
        self.assertEqual([row["month"] for row in rows], ["2024-01", "2024-02"])

        rows = self.client.get(url, {"startYm": "2024-02", "endYm": "2024-03"}).json()["data"]
        self.assertEqual([row["month"] for row in rows], ["2024-03", "2024-02"])

        rows = self.client.get(url, {"month": "2024-03"}).json()["data"]
        self.assertEqual([row["total_progress"] for row in rows], [35])

    def test_site_progress_rejects_invalid_parameters(self):
        url = reverse("site_progress", args=[self.alpha.id])
        for params in ({"startYm": "2024-1"}, {"month": "2024-13"}, {"limit": "0"}, {"limit": "ten"}, {"order": "up"}):
            response = self.client.get(url, params)
            self.assertEqual(response.status_code, 400, params)
            self.assertIn("message", response.json()["error"])

    def test_project_summary(self):
        response = self.client.get(reverse("project_summary", args=[self.project.id]))

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["project_name"], "Harbour")
        self.assertEqual(data["total_sites"], 3)
        self.assertEqual(data["active_sites"], 2)
        self.assertEqual(data["average_progress"], 52.5)
        self.assertEqual(data["good_sites"], 1)
        self.assertEqual(data["problematic_sites"], 0)
        self.assertEqual(data["critical_sites"], 1)
        self.assertEqual(data["demobilized_sites"], 1)
        self.assertEqual(data["missing_data_sites"], 1)
        self.assertEqual([row["site_name"] for row in data["sites"]], ["Alpha", "Bravo", "Charlie"])

    def test_project_summary_direct_call(self):
        summary = build_project_summary(project=self.project, now=datetime(2024, 5, 2))
        self.assertEqual(summary["missing_data_sites"], 0)


class SiteCommandTests(TestCase):
    def setUp(self):
        self.alpha = create_site(name="Alpha", project_duration_months=10)
        self.bravo = create_site(name="Bravo", project=self.alpha.project)
        create_site(name="Charlie", project=self.alpha.project, is_active=False)
        record_totals(self.alpha, 40, 20, 35, 45)
        record_progress(site=self.bravo, month="2024-04", total_progress=60)

    def test_evaluate_sites(self):
        out = StringIO()
        call_command("evaluate_sites", "--date", "2024-04-20", stdout=out)

        output = out.getvalue()
        self.assertIn("Harbour / Alpha: month=2024-04 status=critical stage=4 [Project demobilized]", output)
        self.assertIn("alerts=demobilization,critical", output)
        self.assertIn("Harbour / Bravo: month=2024-04 status=good stage=0", output)
        self.assertNotIn("Charlie", output)
        self.assertIn("Completed: sites(evaluated=2, flagged=1).", output)

    def test_evaluate_sites_alerts_only(self):
        out = StringIO()
        call_command("evaluate_sites", "--date", "2024-04-20", "--alerts-only", stdout=out)

        output = out.getvalue()
        self.assertIn("Alpha", output)
        self.assertNotIn("Bravo", output)

    def test_evaluate_sites_rejects_invalid_date(self):
        with self.assertRaises(CommandError):
            call_command("evaluate_sites", "--date", "20-04-2024", stdout=StringIO())

    def test_recompute_site_progress(self):
        MonthlyProgress.objects.filter(site=self.alpha).update(monthly_progress=99, status="good")

        out = StringIO()
        call_command("recompute_site_progress", "--site", str(self.alpha.id), stdout=out)

        rows = list(self.alpha.progress_entries.order_by("month"))
        self.assertEqual([row.monthly_progress for row in rows], [40, 0, 15, 10])
        self.assertEqual(rows[0].status, "problematic")
        self.assertIn("Completed: sites(recomputed=1), periods(recomputed=4).", out.getvalue())

    def test_recompute_unknown_site(self):
        with self.assertRaises(CommandError):
            call_command("recompute_site_progress", "--site", "9999", stdout=StringIO())


class MonthlyProgressAdminTests(TestCase):
    def setUp(self):
        from django.contrib.auth import get_user_model

        user = get_user_model().objects.create_superuser("admin", "admin@example.com", "x")
        self.client.force_login(user)
        self.site = create_site(project_duration_months=10)

    def test_add_derives_values_through_services(self):
        record_progress(site=self.site, month="2024-01", total_progress=20)

        response = self.client.post(
            reverse("admin:sites_monthlyprogress_add"),
            {"site": self.site.id, "month": "2024-02", "total_progress": "45", "normal_rate": "0", "observations": ""},
        )

        self.assertEqual(response.status_code, 302)
        row = self.site.progress_entries.get(month="2024-02")
        self.assertEqual(row.monthly_progress, 25)
        self.assertEqual(row.normal_rate, 10.0)
        self.assertEqual(row.target_rate, 250.0)

    def test_duplicate_month_is_a_form_error(self):
        record_progress(site=self.site, month="2024-01", total_progress=20)

        response = self.client.post(
            reverse("admin:sites_monthlyprogress_add"),
            {"site": self.site.id, "month": "2024-01", "total_progress": "30", "normal_rate": "0", "observations": ""},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.site.progress_entries.count(), 1)

    def test_delete_resynthesizes_remaining_totals(self):
        _, february, _ = record_totals(self.site, 20, 45, 60)

        response = self.client.post(
            reverse("admin:sites_monthlyprogress_delete", args=[february.id]),
            {"post": "yes"},
        )

        self.assertEqual(response.status_code, 302)
        self.assertEqual(self.site.progress_entries.get(month="2024-03").total_progress, 35)

    def test_change_rederives_later_periods(self):
        _, february, _ = record_totals(self.site, 20, 45, 60)

        response = self.client.post(
            reverse("admin:sites_monthlyprogress_change", args=[february.id]),
            {"total_progress": "50", "normal_rate": "10", "observations": "resurveyed"},
        )

        self.assertEqual(response.status_code, 302)
        february.refresh_from_db()
        self.assertEqual(february.monthly_progress, 30)
        self.assertEqual(february.observations, "resurveyed")
        march = self.site.progress_entries.get(month="2024-03")
        self.assertEqual(march.monthly_progress, 10)
        self.assertEqual(march.status, "critical")

    def test_bulk_delete_resynthesizes_remaining_totals(self):
        january, february, _ = record_totals(self.site, 20, 45, 60)

        response = self.client.post(
            reverse("admin:sites_monthlyprogress_changelist"),
            {"action": "delete_selected", "_selected_action": [january.id, february.id], "post": "yes"},
        )

        self.assertEqual(response.status_code, 302)
        rows = list(self.site.progress_entries.all())
        self.assertEqual([row.month for row in rows], ["2024-03"])
        self.assertEqual(rows[0].total_progress, 15)
        self.assertEqual(rows[0].monthly_progress, 15)
