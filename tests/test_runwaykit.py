"""
Tests for the runwaykit analytics engines.
"""

import math
import os
import tempfile
import threading
import unittest
from datetime import date, datetime, timedelta, timezone
from unittest import mock

from runwaykit import (
    AnalyticsStack,
    AnomalyDetector,
    AnomalyReason,
    BurnMode,
    INFINITE_RUNWAY_MONTHS,
    RunwayStatus,
    Settings,
    Transaction,
    calculate_burn_rate,
    calculate_mom_change,
    calculate_runway,
    compute_baselines,
    compute_category_baselines,
    detect_anomalies,
    find_duplicates,
    format_runway,
    global_mean,
    load_settings,
    runway_status,
    summarize_runway,
    z_threshold_for,
)

DAY = date(2025, 3, 14)

SLACK_AMOUNTS = [190, 230, 200, 220, 210, 185, 235, 205, 215, 210]  # mean 210


def tx(id, amount, category="SaaS", merchant="Slack", when=DAY):
    return Transaction(id=id, amount=amount, date=when, category=category, merchant=merchant)


def slack_history():
    return [
        tx(f"h-{i}", amt, when=DAY - timedelta(days=30 * (i + 1)))
        for i, amt in enumerate(SLACK_AMOUNTS)
    ]


class TestProfiler(unittest.TestCase):
    def test_mean_and_sample_std_dev(self):
        amounts = [2, 4, 4, 4, 5, 5, 7, 9]
        baselines = compute_baselines([tx(str(i), a) for i, a in enumerate(amounts)])

        b = baselines[("SaaS", "Slack")]
        self.assertEqual(b.sample_count, 8)
        self.assertAlmostEqual(b.mean, 5.0)
        self.assertAlmostEqual(b.std_dev, math.sqrt(32 / 7))
        self.assertTrue(b.has_spread)

    def test_single_sample_has_no_spread(self):
        baselines = compute_baselines([tx("a", 1200, "Office", "WeWork")])
        b = baselines[("Office", "WeWork")]
        self.assertEqual(b.std_dev, 0.0)
        self.assertEqual(b.sample_count, 1)
        self.assertFalse(b.has_spread)

    def test_groups_use_exact_strings(self):
        baselines = compute_baselines([
            tx("a", 100, "SaaS", "Slack"),
            tx("b", 100, "saas", "Slack"),
            tx("c", 100, "SaaS", "Slack "),
        ])
        self.assertEqual(len(baselines), 3)

    def test_category_baselines_and_global_mean(self):
        history = [
            tx("a", 100, "SaaS", "Slack"),
            tx("b", 300, "SaaS", "Notion"),
            tx("c", 50, "Office", "Staples"),
        ]
        cats = compute_category_baselines(history)
        self.assertAlmostEqual(cats["SaaS"].mean, 200.0)
        self.assertEqual(cats["SaaS"].sample_count, 2)
        self.assertAlmostEqual(global_mean(history), 150.0)
        self.assertIsNone(global_mean([]))

    def test_empty_history(self):
        self.assertEqual(compute_baselines([]), {})


class TestAnomalyDetector(unittest.TestCase):
    def setUp(self):
        self.detector = AnomalyDetector()

    def test_end_to_end_slack_scenario(self):
        results = self.detector.detect(
            [tx("big", 15000), tx("normal", 205, when=DAY + timedelta(days=5))],
            slack_history(),
        )

        self.assertTrue(results[0].is_anomaly)
        self.assertGreater(results[0].score, 100)
        self.assertEqual(results[0].reason, AnomalyReason.MERCHANT_AMOUNT)

        self.assertFalse(results[1].is_anomaly)
        self.assertLess(results[1].score, 1.0)
        self.assertEqual(results[1].reason, AnomalyReason.NORMAL)

    def test_preserves_order_and_cardinality(self):
        txs = [tx(f"t{i}", 200 + i * 37, when=DAY + timedelta(days=3 * i)) for i in range(25)]
        results = self.detector.detect(txs, slack_history())

        self.assertEqual(len(results), len(txs))
        for original, result in zip(txs, results):
            self.assertIs(result.transaction, original)

    def test_does_not_mutate_inputs(self):
        txs = [tx("a", 100), tx("b", 100)]
        history = slack_history()
        txs_before, history_before = list(txs), list(history)

        self.detector.detect(txs, history)

        self.assertEqual(txs, txs_before)
        self.assertEqual(history, history_before)

    def test_empty_batch(self):
        self.assertEqual(self.detector.detect([], slack_history()), [])
        self.assertEqual(detect_anomalies([], []), [])

    def test_no_history_falls_back_without_error(self):
        txs = [
            tx("a", 250, "SaaS", "Slack"),
            tx("b", 99, "SaaS", "Notion", when=DAY + timedelta(days=4)),
            tx("c", 15000, "SaaS", "AWS", when=DAY + timedelta(days=8)),
            tx("d", 0, "Office", "Staples", when=DAY + timedelta(days=12)),
        ]
        results = detect_anomalies(txs, [])

        self.assertEqual(len(results), 4)
        self.assertTrue(results[2].is_anomaly)
        self.assertEqual(results[2].reason, AnomalyReason.MAGNITUDE)
        self.assertFalse(results[0].is_anomaly)
        self.assertEqual(results[0].reason, AnomalyReason.INSUFFICIENT_HISTORY)

    def test_module_level_detect_is_independent_per_call(self):
        batch = [tx("big", 15000), tx("normal", 205, when=DAY + timedelta(days=5))]
        history = slack_history()
        outcomes = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                flags = [r.is_anomaly for r in detect_anomalies(batch, history)]
                with lock:
                    outcomes.append(flags)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(outcomes), 80)
        self.assertTrue(all(flags == [True, False] for flags in outcomes))

    def test_single_transaction_no_history(self):
        results = detect_anomalies([tx("only", 500)], [])
        self.assertEqual(len(results), 1)
        self.assertFalse(results[0].is_anomaly)

    def test_category_fallback(self):
        history = [
            tx("h1", 200, "SaaS", "Slack"),
            tx("h2", 220, "SaaS", "Slack"),
            tx("h3", 99, "SaaS", "Notion"),
        ]
        results = self.detector.detect(
            [
                tx("aws", 15000, "SaaS", "AWS"),
                tx("notion", 99, "SaaS", "Notion", when=DAY + timedelta(days=7)),
            ],
            history,
        )
        self.assertTrue(results[0].is_anomaly)
        self.assertEqual(results[0].reason, AnomalyReason.CATEGORY_AMOUNT)
        self.assertFalse(results[1].is_anomaly)

    def test_magnitude_fallback_single_history_sample(self):
        history = [tx("h", 1200, "Office", "WeWork")]
        results = self.detector.detect(
            [
                tx("spike", 9000, "Office", "WeWork"),
                tx("usual", 1300, "Office", "WeWork", when=DAY + timedelta(days=10)),
            ],
            history,
        )
        self.assertTrue(results[0].is_anomaly)
        self.assertEqual(results[0].reason, AnomalyReason.MAGNITUDE)
        # ratio 7.5, halved for low confidence
        self.assertAlmostEqual(results[0].score, 3.75)

        self.assertFalse(results[1].is_anomaly)
        self.assertEqual(results[1].reason, AnomalyReason.INSUFFICIENT_HISTORY)

    def test_magnitude_fallback_uses_global_mean(self):
        # Neither the group nor the category appears in history
        history = [
            tx(f"h{i}", 100, when=DAY - timedelta(days=30 * (i + 1))) for i in range(3)
        ]
        result = self.detector.detect([tx("ride", 5000, "Travel", "Uber")], history)[0]

        self.assertTrue(result.is_anomaly)
        self.assertEqual(result.reason, AnomalyReason.MAGNITUDE)
        self.assertAlmostEqual(result.score, 25.0)

    def test_round_number_needs_less_magnitude(self):
        history = [tx("h", 1200, "Office", "WeWork")]
        results = self.detector.detect(
            [
                tx("round", 3000, "Office", "WeWork"),
                tx("odd", 3100, "Office", "WeWork", when=DAY + timedelta(days=10)),
            ],
            history,
        )
        self.assertTrue(results[0].is_anomaly)
        self.assertFalse(results[1].is_anomaly)

    def test_zero_variance_group(self):
        history = [tx(f"h{i}", 99, "SaaS", "Notion") for i in range(3)]
        results = self.detector.detect(
            [
                tx("same", 99, "SaaS", "Notion"),
                tx("tenx", 990, "SaaS", "Notion", when=DAY + timedelta(days=10)),
            ],
            history,
        )
        self.assertFalse(results[0].is_anomaly)
        self.assertTrue(results[1].is_anomaly)
        self.assertEqual(results[1].reason, AnomalyReason.MAGNITUDE)

    def test_non_positive_reference_never_flags(self):
        history = [tx("refund", -50, "SaaS", "Notion")]
        results = self.detector.detect([tx("a", 5000, "SaaS", "Notion")], history)
        self.assertFalse(results[0].is_anomaly)
        self.assertEqual(results[0].score, 0.0)

    def test_nan_amount_does_not_raise(self):
        results = self.detector.detect([tx("nan", float("nan"))], slack_history())
        self.assertEqual(len(results), 1)
        self.assertFalse(results[0].is_anomaly)
        self.assertEqual(results[0].score, 0.0)

    def test_duplicates_same_day(self):
        txs = [
            tx("p1", 75000, "Payroll", "Gusto"),
            tx("p2", 75000, "Payroll", "Gusto"),
            tx("ok", 210),
        ]
        history = [
            tx("h1", 72000, "Payroll", "Gusto"),
            tx("h2", 76000, "Payroll", "Gusto"),
        ] + slack_history()

        results = self.detector.detect(txs, history)

        self.assertTrue(results[0].is_anomaly)
        self.assertTrue(results[1].is_anomaly)
        self.assertEqual(results[0].reason, AnomalyReason.DUPLICATE)
        self.assertEqual(results[1].reason, "possible duplicate")
        self.assertFalse(results[2].is_anomaly)

    def test_duplicates_adjacent_day_only(self):
        txs = [
            tx("a", 99, "SaaS", "Notion", when=DAY),
            tx("b", 99, "SaaS", "Notion", when=DAY + timedelta(days=1)),
            tx("c", 99, "SaaS", "Notion", when=DAY + timedelta(days=5)),
        ]
        self.assertEqual(find_duplicates(txs), {0, 1})

    def test_duplicates_ignore_history(self):
        history = [tx("h", 210, when=DAY)] + slack_history()
        results = self.detector.detect([tx("t", 210, when=DAY)], history)
        self.assertNotEqual(results[0].reason, AnomalyReason.DUPLICATE)
        self.assertFalse(results[0].is_anomaly)

    def test_duplicates_with_datetimes(self):
        morning = datetime(2025, 3, 14, 9, 0)
        night = datetime(2025, 3, 14, 23, 30)
        txs = [
            tx("a", 500, "Marketing", "Google Ads", when=morning),
            tx("b", 500, "Marketing", "Google Ads", when=night),
        ]
        self.assertEqual(find_duplicates(txs), {0, 1})

    def test_contamination_threshold_mapping(self):
        self.assertAlmostEqual(z_threshold_for(0.0), 3.0)
        self.assertAlmostEqual(z_threshold_for(0.05), 2.75)
        self.assertAlmostEqual(z_threshold_for(0.2), 2.0)
        self.assertAlmostEqual(z_threshold_for(1.0), 1.0)
        self.assertAlmostEqual(z_threshold_for(-3), 3.0)
        self.assertAlmostEqual(z_threshold_for(float("nan")), 2.75)

    def test_contamination_monotonicity(self):
        txs = [
            tx("a", 250, when=DAY),
            tx("b", 240, when=DAY + timedelta(days=3)),
            tx("c", 260, when=DAY + timedelta(days=6)),
            tx("d", 205, when=DAY + timedelta(days=9)),
        ]
        history = slack_history()

        strict = sum(r.is_anomaly for r in self.detector.detect(txs, history, 0.02))
        loose = sum(r.is_anomaly for r in self.detector.detect(txs, history, 0.2))

        self.assertGreaterEqual(loose, strict)
        self.assertEqual(strict, 1)
        self.assertEqual(loose, 2)

    def test_stats_and_listener(self):
        received = []
        self.detector.add_listener(received.append)
        self.detector.detect([tx("big", 15000), tx("ok", 210, when=DAY + timedelta(days=4))],
                             slack_history())

        stats = self.detector.stats()
        self.assertEqual(stats["runs"], 1)
        self.assertEqual(stats["batch_size"], 2)
        self.assertEqual(stats["flagged"], 1)
        self.assertEqual(stats["by_reason"], {"unusual amount for merchant": 1})
        self.assertEqual(len(received), 1)
        self.assertEqual(len(received[0]), 2)

    def test_listener_errors_are_isolated(self):
        def boom(results):
            raise RuntimeError("boom")

        self.detector.add_listener(boom)
        with self.assertLogs("runwaykit.anomaly", level="WARNING") as logs:
            results = self.detector.detect([tx("a", 210)], slack_history())
        self.assertEqual(len(results), 1)
        self.assertTrue(any("listener error" in line for line in logs.output))

    def test_from_settings(self):
        detector = AnomalyDetector.from_settings(Settings(base_z_threshold=10.0))
        results = detector.detect([tx("c", 260)], slack_history(), contamination=0.0)
        self.assertFalse(results[0].is_anomaly)


class TestRunway(unittest.TestCase):
    def test_runway_scaling(self):
        self.assertEqual(calculate_runway(100000, 10000), 10)

    def test_runway_sentinel(self):
        for cash in (0, 1, 100000, 5e9):
            self.assertEqual(calculate_runway(cash, 0), 99)
        self.assertEqual(calculate_runway(100000, -500), INFINITE_RUNWAY_MONTHS)
        self.assertEqual(calculate_runway(100000, float("nan")), INFINITE_RUNWAY_MONTHS)

    def test_burn_rate(self):
        self.assertEqual(calculate_burn_rate(50000, 20000, "gross"), 50000)
        self.assertEqual(calculate_burn_rate(50000, 20000, BurnMode.NET), 30000)
        self.assertEqual(calculate_burn_rate(50000), 50000)
        self.assertEqual(calculate_burn_rate(10000, 25000, "net"), -15000)

    def test_burn_rate_rejects_unknown_mode(self):
        with self.assertRaises(ValueError):
            calculate_burn_rate(100, 0, "monthly")

    def test_mom_change(self):
        self.assertEqual(calculate_mom_change(50, 0), 100)
        self.assertEqual(calculate_mom_change(0, 0), 0)
        self.assertEqual(calculate_mom_change(-10, 0), 0)
        self.assertAlmostEqual(calculate_mom_change(120, 100), 20.0)
        self.assertAlmostEqual(calculate_mom_change(80, 100), -20.0)
        self.assertAlmostEqual(calculate_mom_change(50, -100), 150.0)

    def test_format_runway(self):
        self.assertEqual(format_runway(-1), "Negative")
        self.assertEqual(format_runway(0.5), "15 days")
        self.assertEqual(format_runway(10), "10.0 months")
        self.assertEqual(format_runway(30), "24+ months")
        self.assertEqual(format_runway(INFINITE_RUNWAY_MONTHS), "24+ months")
        self.assertEqual(format_runway(float("inf")), "24+ months")
        self.assertEqual(format_runway(float("nan")), "Unknown")

    def test_runway_status(self):
        self.assertEqual(runway_status(5), RunwayStatus.CRITICAL)
        self.assertEqual(runway_status(8), RunwayStatus.WARNING)
        self.assertEqual(runway_status(10), RunwayStatus.CAUTION)
        self.assertEqual(runway_status(12), RunwayStatus.HEALTHY)

    def test_summarize_runway(self):
        metrics = summarize_runway(
            cash_balance=500000,
            monthly_burn=50000,
            previous_burn=40000,
            mrr=10000,
            previous_mrr=0,
        )
        self.assertAlmostEqual(metrics.runway_months, 10.0)
        self.assertAlmostEqual(metrics.burn_change_pct, 25.0)
        self.assertAlmostEqual(metrics.net_burn, 40000)
        self.assertEqual(metrics.mrr_change_pct, 100)
        self.assertEqual(metrics.status, RunwayStatus.CAUTION)

        d = metrics.to_dict()
        self.assertEqual(d["runway_display"], "10.0 months")
        self.assertEqual(d["status"], "caution")

    def test_summarize_without_burn(self):
        metrics = summarize_runway(cash_balance=100000, monthly_burn=0)
        self.assertEqual(metrics.runway_months, 99)
        self.assertEqual(metrics.status, RunwayStatus.HEALTHY)
        self.assertEqual(metrics.burn_change_pct, 0)


class TestTypes(unittest.TestCase):
    def test_transaction_from_dict_normalizes(self):
        t = Transaction.from_dict({"amount": "12.5", "date": "2024-11-01"})
        self.assertEqual(t.amount, 12.5)
        self.assertEqual(t.category, "Uncategorized")
        self.assertEqual(t.merchant, "Unknown")
        self.assertTrue(t.id.startswith("tx-"))
        self.assertEqual(t.day, date(2024, 11, 1))

    def test_transaction_from_dict_bad_values(self):
        t = Transaction.from_dict({"id": "x", "amount": "abc", "date": "not a date",
                                   "category": "", "merchant": None})
        self.assertEqual(t.id, "x")
        self.assertEqual(t.amount, 0.0)
        self.assertEqual(t.day, date.today())
        self.assertEqual(t.category, "Uncategorized")

    def test_transaction_round_trip_fields(self):
        t = tx("a", 42.0)
        d = t.to_dict()
        self.assertEqual(d["date"], "2025-03-14")
        back = Transaction.from_dict(d)
        self.assertEqual(back, t)
        self.assertIs(type(back.date), date)

    def test_transaction_from_dict_dates(self):
        stamped = Transaction.from_dict({"date": "2025-03-14T09:30:00Z"})
        self.assertEqual(stamped.date, datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc))
        self.assertEqual(stamped.day, date(2025, 3, 14))

        # Epoch milliseconds
        millis = Transaction.from_dict({"date": 1741944600000})
        self.assertEqual(millis.date, datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc))
        self.assertEqual(millis.day, date(2025, 3, 14))

        self.assertEqual(Transaction.from_dict({"date": float("nan")}).day, date.today())
        self.assertEqual(Transaction.from_dict({"date": True}).day, date.today())

    def test_anomaly_result_to_dict(self):
        result = detect_anomalies([tx("a", 15000)], slack_history())[0]
        d = result.to_dict()
        self.assertEqual(d["transactionId"], "a")
        self.assertTrue(d["isAnomaly"])
        self.assertEqual(d["reason"], "unusual amount for merchant")


class TestSettings(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = load_settings(env_file=os.devnull)
        self.assertEqual(settings.log_level, "INFO")
        self.assertAlmostEqual(settings.default_contamination, 0.05)
        self.assertAlmostEqual(settings.sweep_interval_seconds, 60.0)
        self.assertTrue(settings.auto_sweep)

    def test_env_overrides(self):
        env = {
            "RUNWAYKIT_LOG_LEVEL": "debug",
            "RUNWAYKIT_BASE_Z_THRESHOLD": "4.5",
            "RUNWAYKIT_DUPLICATE_WINDOW_DAYS": "3",
            "RUNWAYKIT_AUTO_SWEEP": "no",
            "RUNWAYKIT_SWEEP_INTERVAL_SECONDS": "garbage",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = load_settings(env_file=os.devnull)
        self.assertEqual(settings.log_level, "DEBUG")
        self.assertAlmostEqual(settings.base_z_threshold, 4.5)
        self.assertEqual(settings.duplicate_window_days, 3)
        self.assertFalse(settings.auto_sweep)
        self.assertAlmostEqual(settings.sweep_interval_seconds, 60.0)

    def test_dotenv_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, ".env")
            with open(path, "w") as f:
                f.write("RUNWAYKIT_DEFAULT_CONTAMINATION=0.2\n")
                f.write("RUNWAYKIT_Z_SENSITIVITY=8\n")

            with mock.patch.dict(os.environ, {"RUNWAYKIT_Z_SENSITIVITY": "6"}, clear=True):
                settings = load_settings(env_file=path)

        self.assertAlmostEqual(settings.default_contamination, 0.2)
        # real environment wins over .env
        self.assertAlmostEqual(settings.z_sensitivity, 6.0)


class TestAnalyticsStack(unittest.TestCase):
    def test_full_flow(self):
        stack = AnalyticsStack.create(settings=Settings(auto_sweep=False))
        try:
            results = stack.detect([tx("big", 15000)], slack_history())
            self.assertTrue(results[0].is_anomaly)

            metrics = stack.runway(cash_balance=120000, monthly_burn=20000)
            self.assertAlmostEqual(metrics.runway_months, 6.0)

            result = stack.check_rate_limit("10.0.0.1", "export")
            self.assertTrue(result.allowed)
            self.assertEqual(result.remaining, 9)
        finally:
            stack.close()

    def test_default_contamination_from_settings(self):
        txs = [tx("a", 250)]
        loose = AnalyticsStack.create(settings=Settings(auto_sweep=False, default_contamination=0.2))
        strict = AnalyticsStack.create(settings=Settings(auto_sweep=False, default_contamination=0.0))
        try:
            self.assertTrue(loose.detect(txs, slack_history())[0].is_anomaly)
            self.assertFalse(strict.detect(txs, slack_history())[0].is_anomaly)
        finally:
            loose.close()
            strict.close()


if __name__ == "__main__":
    unittest.main()
