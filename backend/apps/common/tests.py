from datetime import date, datetime

from django.test import SimpleTestCase

from .progress_metrics import (
    DEFAULT_NORMAL_RATE,
    derive_chain,
    derive_row,
    normal_rate_for,
    resynthesize_totals,
    round1,
    total_decreased,
)
from .status_evaluator import (
    MonthlyProgressEntry,
    SiteEvaluationResult,
    alert_kinds,
    classify,
    current_month,
    detect_missing_current_month,
    evaluate_demobilization,
    evaluate_site_status,
    format_month,
    parse_month,
    sort_by_month,
)


def make_entries(*totals, year=2024):
    return [
        MonthlyProgressEntry(site_id=1, month=format_month(year, index), total_progress=total)
        for index, total in enumerate(totals, start=1)
    ]


class StatusClassifierTests(SimpleTestCase):
    def test_boundaries(self):
        self.assertEqual(classify(29.999), "critical")
        self.assertEqual(classify(30), "problematic")
        self.assertEqual(classify(49.999), "problematic")
        self.assertEqual(classify(50), "good")
        self.assertEqual(classify(120), "good")

    def test_missing_or_invalid_values_are_critical(self):
        self.assertEqual(classify(None), "critical")
        self.assertEqual(classify(float("nan")), "critical")
        self.assertEqual(classify("n/a"), "critical")
        self.assertEqual(classify(""), "critical")

    def test_numeric_strings_are_parsed(self):
        self.assertEqual(classify("45,5"), "problematic")
        self.assertEqual(classify(" 50 "), "good")

    def test_entry_status_follows_monthly_progress(self):
        entry = MonthlyProgressEntry(site_id=1, month="2024-01", total_progress=80, monthly_progress=55)
        self.assertEqual(entry.status, "good")
        self.assertEqual(entry.as_dict()["status"], "good")


class ProgressDerivationTests(SimpleTestCase):
    def test_first_period_uses_its_own_total(self):
        row = derive_row(current_total=40, previous_total=999, normal_rate=12.5, is_first_period=True)
        self.assertEqual(row.monthly_progress, 40)
        self.assertEqual(row.target_rate, 320.0)
        self.assertEqual(row.delay_rate, -220.0)
        self.assertEqual(row.status, "problematic")

    def test_decreasing_total_clamps_to_zero(self):
        for previous, current in ((35, 20), (80, 79.9), (10, 0.5)):
            row = derive_row(current_total=current, previous_total=previous, normal_rate=12.5, is_first_period=False)
            self.assertEqual(row.monthly_progress, 0)
            self.assertEqual(row.target_rate, 0)
            self.assertEqual(row.delay_rate, 100)

    def test_zero_total_is_unset(self):
        row = derive_row(current_total=0, previous_total=30, normal_rate=12.5, is_first_period=False)
        self.assertEqual((row.monthly_progress, row.target_rate, row.delay_rate), (0, 0, 100))
        row = derive_row(current_total=None, previous_total=None, normal_rate=12.5, is_first_period=True)
        self.assertEqual((row.monthly_progress, row.target_rate, row.delay_rate), (0, 0, 100))

    def test_increment_against_previous_total(self):
        row = derive_row(current_total=30, previous_total=20, normal_rate=10, is_first_period=False)
        self.assertEqual(row.monthly_progress, 10)
        self.assertEqual(row.target_rate, 100.0)
        self.assertEqual(row.delay_rate, 0.0)

    def test_unusable_normal_rate_gives_zero_target(self):
        for normal_rate in (0, None, "abc"):
            row = derive_row(current_total=25, previous_total=0, normal_rate=normal_rate, is_first_period=True)
            self.assertEqual(row.target_rate, 0)
            self.assertEqual(row.delay_rate, 100)

    def test_normal_rate_accepts_decimal_comma(self):
        row = derive_row(current_total=25, previous_total=0, normal_rate="12,5", is_first_period=True)
        self.assertEqual(row.target_rate, 200.0)

    def test_target_and_delay_are_complements(self):
        for monthly in (5, 7.3, 12.5, 33.3, 61, 0.4):
            for normal_rate in (8.3, 12.5, 33.3):
                row = derive_row(
                    current_total=monthly,
                    previous_total=0,
                    normal_rate=normal_rate,
                    is_first_period=True,
                )
                self.assertAlmostEqual(row.target_rate + row.delay_rate, 100, delta=0.1)

    def test_round1_rounds_half_up(self):
        self.assertEqual(round1(0.25), 0.3)
        self.assertEqual(round1(-2.25), -2.2)
        self.assertEqual(round1(66.66), 66.7)
        self.assertEqual(round1(100 / 3), 33.3)

    def test_normal_rate_from_duration(self):
        self.assertEqual(normal_rate_for(8), 12.5)
        self.assertEqual(normal_rate_for(12), 8.3)
        self.assertEqual(normal_rate_for(4), 25.0)

    def test_normal_rate_fallback(self):
        self.assertEqual(DEFAULT_NORMAL_RATE, 12.5)
        self.assertEqual(normal_rate_for(None), 12.5)
        self.assertEqual(normal_rate_for(0), 12.5)
        self.assertEqual(normal_rate_for(0, fallback=10.0), 10.0)

    def test_chain_derivation(self):
        rows = derive_chain([(10, 12.5), (25, 12.5), (25, 12.5), (60, 12.5)])
        self.assertEqual([row.monthly_progress for row in rows], [10, 15, 0, 35])
        self.assertEqual([row.status for row in rows], ["critical", "critical", "critical", "problematic"])

    def test_chain_uses_each_period_normal_rate(self):
        rows = derive_chain([(20, 10), (45, 25), (60, "abc")])
        self.assertEqual([row.monthly_progress for row in rows], [20, 25, 15])
        self.assertEqual([row.target_rate for row in rows], [200.0, 100.0, 0])
        self.assertEqual([row.delay_rate for row in rows], [-100.0, 0.0, 100])

    def test_rederivation_reproduces_stored_increments(self):
        increments = [12.5, 20, 7.5, 0, 30]
        totals = resynthesize_totals(increments)
        self.assertEqual(totals, [12.5, 32.5, 40, 40, 70])
        rows = derive_chain((total, 12.5) for total in totals)
        self.assertEqual([row.monthly_progress for row in rows], increments)

    def test_resynthesize_skips_missing_values(self):
        self.assertEqual(resynthesize_totals([10, None, "5"]), [10, 10, 15])
        self.assertEqual(resynthesize_totals([]), [])

    def test_total_decreased(self):
        self.assertTrue(total_decreased(previous_total=40, current_total=35))
        self.assertFalse(total_decreased(previous_total=40, current_total=40))
        self.assertFalse(total_decreased(previous_total=None, current_total=10))


class DemobilizationTests(SimpleTestCase):
    def test_month_four_relapse_after_recovery(self):
        result = evaluate_demobilization(make_entries(40, 20, 35, 45))
        self.assertEqual(result.demobilization_stage, 4)
        self.assertTrue(result.demobilized)
        self.assertEqual(result.alert_label, "Project demobilized")

    def test_month_three_failure_excludes_stage_four(self):
        result = evaluate_demobilization(make_entries(60, 50, 20, 80))
        self.assertEqual(result.demobilization_stage, 3)
        self.assertTrue(result.demobilized)

    def test_healthy_history(self):
        result = evaluate_demobilization(make_entries(60, 60, 60, 60))
        self.assertEqual(result.demobilization_stage, 0)
        self.assertFalse(result.demobilized)
        self.assertIsNone(result.alert_label)

    def test_empty_history(self):
        result = evaluate_demobilization([])
        self.assertEqual(result.as_dict(), {"demobilization_stage": 0, "demobilized": False, "alert_label": None})

    def test_partial_histories(self):
        cases = [
            ((40,), 1, "Alert (insufficient yield)"),
            ((60, 20), 2, "Pre-demobilization"),
            ((40, 20), 2, "Pre-demobilization"),
            ((60, 60, 20), 3, "Project demobilized"),
            ((60, 60, 35), 0, None),
            ((40, 40, 40, 60), 1, "Alert (insufficient yield)"),
        ]
        for totals, stage, label in cases:
            result = evaluate_demobilization(make_entries(*totals))
            self.assertEqual(result.demobilization_stage, stage, totals)
            self.assertEqual(result.alert_label, label, totals)
            self.assertEqual(result.demobilized, stage in {3, 4}, totals)

    def test_periods_after_the_fourth_are_ignored(self):
        result = evaluate_demobilization(make_entries(60, 60, 60, 60, 5, 1))
        self.assertEqual(result.demobilization_stage, 0)

    def test_uses_cumulative_not_monthly_progress(self):
        entries = [
            MonthlyProgressEntry(site_id=1, month="2024-01", total_progress=60, monthly_progress=60),
            MonthlyProgressEntry(site_id=1, month="2024-02", total_progress=65, monthly_progress=5),
        ]
        self.assertEqual(evaluate_demobilization(entries).demobilization_stage, 0)


class MonthHelperTests(SimpleTestCase):
    def test_parse_month(self):
        self.assertEqual(parse_month("2024-07"), (2024, 7))
        self.assertIsNone(parse_month("2024-13"))
        self.assertIsNone(parse_month("2024-1"))
        self.assertIsNone(parse_month("july"))
        self.assertIsNone(parse_month(None))

    def test_format_and_current_month(self):
        self.assertEqual(format_month(2024, 3), "2024-03")
        self.assertEqual(current_month(date(2024, 3, 9)), "2024-03")

    def test_sort_puts_unparseable_months_last(self):
        entries = [MonthlyProgressEntry(site_id=1, month=month) for month in ("2024-10", "bad", "2023-12", "2024-02")]
        self.assertEqual(
            [entry.month for entry in sort_by_month(entries)],
            ["2023-12", "2024-02", "2024-10", "bad"],
        )


class MissingDataTests(SimpleTestCase):
    def test_grace_period(self):
        history = make_entries(20, 40)
        self.assertFalse(detect_missing_current_month(history, now=datetime(2024, 5, 3)))
        self.assertFalse(detect_missing_current_month(history, now=datetime(2024, 5, 5)))
        self.assertTrue(detect_missing_current_month(history, now=datetime(2024, 5, 10)))

    def test_current_month_present(self):
        history = make_entries(20, 40, 55, 70, 90)
        self.assertFalse(detect_missing_current_month(history, now=datetime(2024, 5, 20)))

    def test_custom_grace_days(self):
        self.assertFalse(detect_missing_current_month([], now=date(2024, 5, 10), grace_days=10))
        self.assertTrue(detect_missing_current_month([], now=date(2024, 5, 11), grace_days=10))


class SiteEvaluationTests(SimpleTestCase):
    def setUp(self):
        self.entries = [
            MonthlyProgressEntry(site_id=1, month="2024-03", total_progress=55, monthly_progress=20),
            MonthlyProgressEntry(site_id=1, month="2024-01", total_progress=20, monthly_progress=20),
            MonthlyProgressEntry(site_id=1, month="2024-02", total_progress=35, monthly_progress=15),
        ]

    def test_sorted_evaluation(self):
        result = evaluate_site_status(self.entries, now=datetime(2024, 3, 20))
        self.assertEqual(result.latest_month, "2024-03")
        self.assertEqual(result.latest_status, "critical")
        self.assertEqual(result.total_progress, 55)
        self.assertEqual(result.monthly_progress, 20)
        self.assertEqual(result.demobilization_stage, 1)
        self.assertFalse(result.demobilized)
        self.assertFalse(result.missing_data)

    def test_without_sorting_keeps_caller_order(self):
        result = evaluate_site_status(self.entries, now=datetime(2024, 3, 20), enforce_sort=False)
        self.assertEqual(result.latest_month, "2024-02")
        self.assertEqual(result.latest_status, "critical")

    def test_empty_history(self):
        result = evaluate_site_status([], now=datetime(2024, 3, 10))
        self.assertIsNone(result.latest_status)
        self.assertIsNone(result.latest_month)
        self.assertIsNone(result.total_progress)
        self.assertEqual(result.demobilization_stage, 0)
        self.assertTrue(result.missing_data)

    def test_missing_month_after_grace_period(self):
        result = evaluate_site_status(self.entries, now=datetime(2024, 4, 6))
        self.assertTrue(result.missing_data)


class AlertKindsTests(SimpleTestCase):
    def _result(self, **overrides):
        values = {
            "demobilization_stage": 0,
            "demobilized": False,
            "alert_label": None,
            "latest_status": "good",
            "latest_month": "2024-04",
            "total_progress": 80,
            "monthly_progress": 60,
            "missing_data": False,
        }
        values.update(overrides)
        return SiteEvaluationResult(**values)

    def test_no_alerts_for_healthy_site(self):
        self.assertEqual(alert_kinds(self._result()), [])

    def test_pre_demobilization_with_missing_data(self):
        result = self._result(demobilization_stage=2, latest_status="critical", missing_data=True)
        self.assertEqual(alert_kinds(result), ["data_entry_delay", "pre_demobilization", "critical"])

    def test_demobilized_site(self):
        result = self._result(demobilization_stage=3, demobilized=True)
        self.assertEqual(alert_kinds(result), ["demobilization"])

    def test_problematic_latest_month(self):
        self.assertEqual(alert_kinds(self._result(latest_status="problematic")), ["problematic"])
