"""Tests for advisory sessions and reporting.

capture() needs a configured Django database and is covered in
test_capture.py. These tests drive analyze() directly.
"""

import json
import os
import tempfile
import unittest
from datetime import datetime, timezone
from io import StringIO

from query_advisor import analyze
from query_advisor.advisor import (
    AdvisorResult,
    _check_thresholds,
    _format_duration,
    _format_report,
    _format_span,
    _pattern_severity,
    _truncate_sql,
)

TS = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def n_plus_one_log(children, parent="SELECT * FROM author"):
    entries = [(TS, parent, 25, 2.0)]
    entries.extend(
        (TS, f"SELECT * FROM book WHERE author_id = {i}", 3, 0.5)
        for i in range(1, children + 1)
    )
    return entries


class AnalyzeTests(unittest.TestCase):
    """Tests for analyze()."""

    def test_analyze_populates_result(self):
        entries = n_plus_one_log(4) + [
            (TS, "SELECT * FROM orders ORDER BY id LIMIT 10 OFFSET 3000", 10, 12.0),
        ]

        result = analyze(entries)

        self.assertEqual(result.records_analyzed, 6)
        self.assertEqual(result.records_skipped, 0)
        self.assertEqual(result.total_duration_ms, 16.0)
        self.assertEqual(len(result.patterns), 2)
        self.assertEqual(len(result.recommendations), 2)
        self.assertIs(result.recommendations[0].pattern, result.patterns[0])
        self.assertEqual(len(result.shape_stats), 3)
        self.assertEqual(result.shape_stats[0].total_duration_ms, 12.0)

    def test_inline_overrides_reach_detector(self):
        entries = [(TS, "SELECT * FROM orders ORDER BY id LIMIT 10 OFFSET 300", 10, 1.0)]

        self.assertEqual(analyze(entries).patterns, [])
        self.assertEqual(len(analyze(entries, offset_threshold=100).patterns), 1)

    def test_used_defaults_warning(self):
        result = analyze([])

        self.assertTrue(result.used_defaults)
        self.assertIn("No QUERY_ADVISOR_THRESHOLDS config found", result.warnings[0])

    def test_skipped_entries_warn(self):
        entries = n_plus_one_log(2) + [(TS, None, 1, 1.0), "junk"]

        result = analyze(entries, n_plus_one_threshold=10)

        self.assertEqual(result.records_skipped, 2)
        self.assertEqual(len(result.skip_reasons), 2)
        self.assertIn("2 malformed log entries skipped", result.warnings)

    def test_patterns_of_filters_by_kind(self):
        from query_advisor import PatternKind

        result = analyze(
            n_plus_one_log(3) + [(TS, "SELECT * FROM events", 90000, 40.0)]
        )

        self.assertEqual(len(result.patterns_of(PatternKind.N_PLUS_ONE)), 1)
        self.assertEqual(len(result.patterns_of(PatternKind.FULL_SCAN)), 1)
        self.assertEqual(result.patterns_of(PatternKind.OFFSET_PAGINATION), [])


class CheckThresholdsTests(unittest.TestCase):
    """Tests for failure and warning levels."""

    def test_n_plus_one_failure(self):
        """Should fail if N+1 run >= threshold."""
        result = analyze(n_plus_one_log(10), n_plus_one_threshold=10)

        self.assertEqual(len(result.failures), 1)
        self.assertIn("N+1 pattern detected", result.failures[0])
        self.assertIn("10 per-row queries at #1-#11", result.failures[0])
        self.assertIn("author_id = 1", result.failures[0])

    def test_n_plus_one_warning(self):
        """Should warn if N+1 run >= 80% of threshold."""
        result = analyze(n_plus_one_log(8), n_plus_one_threshold=10)

        self.assertEqual(result.failures, [])
        self.assertEqual(len(result.warnings), 1)
        self.assertIn("N+1 WARNING", result.warnings[0])

    def test_n_plus_one_notice(self):
        result = analyze(n_plus_one_log(3), n_plus_one_threshold=10)

        self.assertEqual(result.failures, [])
        self.assertIn("N+1 notice: 3 per-row queries", result.warnings[0])

    def test_offset_and_full_scan_are_warnings(self):
        result = analyze(
            [
                (TS, "SELECT * FROM orders ORDER BY id LIMIT 10 OFFSET 3000", 10, 1.0),
                (TS, "SELECT * FROM events", 50000, 1.0),
            ],
            n_plus_one_threshold=10,
        )

        self.assertEqual(result.failures, [])
        self.assertEqual(len(result.warnings), 2)
        self.assertIn("OFFSET 3000 exceeds 1000 at #1", result.warnings[0])
        self.assertIn("Full scan (unbounded select) at #2", result.warnings[1])

    def test_check_thresholds_on_empty_result(self):
        result = AdvisorResult(thresholds={"n_plus_one_threshold": 10})

        _check_thresholds(result)

        self.assertEqual(result.failures, [])
        self.assertEqual(result.warnings, [])


class AdvisorResultTests(unittest.TestCase):
    """Tests for AdvisorResult serialization and output."""

    def test_default_values(self):
        result = AdvisorResult()

        self.assertEqual(result.records_analyzed, 0)
        self.assertEqual(result.patterns, [])
        self.assertEqual(result.thresholds, {})
        self.assertFalse(result.used_defaults)

    def test_str(self):
        result = analyze(n_plus_one_log(3), n_plus_one_threshold=3)

        self.assertEqual(
            str(result), "AdvisorResult(queries=4, skipped=0, patterns=1, failures=1)"
        )

    def test_to_dict_is_json_serializable(self):
        result = analyze(n_plus_one_log(3), n_plus_one_threshold=10)

        data = json.loads(json.dumps(result.to_dict()))

        pattern = data["patterns"][0]
        self.assertEqual(pattern["kind"], "NPlusOne")
        self.assertEqual(len(pattern["evidence"]), 4)
        self.assertEqual(pattern["evidence"][1]["sequence_number"], 2)
        self.assertEqual(pattern["evidence"][0]["timestamp"], "2024-05-01T12:00:00+00:00")
        self.assertEqual(pattern["index_suggestion"], "CREATE INDEX ON book (author_id);")
        self.assertIn("select_related()", pattern["recommendation"])
        self.assertEqual(data["shape_stats"][0]["count"], 1)

    def test_to_json_writes_file(self):
        result = analyze(n_plus_one_log(2), n_plus_one_threshold=10)

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "report.json")
            result.to_json(path)
            with open(path, encoding="utf-8") as f:
                data = json.load(f)

        self.assertEqual(data["records_analyzed"], 3)

    def test_explain_writes_report(self):
        output = StringIO()
        analyze(n_plus_one_log(3), n_plus_one_threshold=10).explain(file=output)

        self.assertIn("QUERY ADVISOR REPORT", output.getvalue())


class FormatReportTests(unittest.TestCase):
    """Tests for _format_report()."""

    def test_report_without_patterns(self):
        result = analyze([(TS, "SELECT * FROM users WHERE id = 1", 1, 0.5)])

        report = _format_report(result)

        self.assertIn("QUERY ADVISOR REPORT", report)
        self.assertIn("Queries analyzed: 1", report)
        self.assertIn("No query patterns detected", report)
        self.assertIn("Using default thresholds", report)

    def test_report_with_patterns(self):
        result = analyze(n_plus_one_log(10), n_plus_one_threshold=10)

        report = _format_report(result)

        self.assertIn("PATTERNS DETECTED", report)
        self.assertIn("[NPlusOne]", report)
        self.assertIn("#1-#11", report)
        self.assertIn("CREATE INDEX ON book (author_id);", report)
        self.assertIn("HEAVIEST SHAPES", report)
        self.assertIn("FAILURES", report)

    def test_report_with_test_context(self):
        result = AdvisorResult(
            test_name="OrderTests.test_list",
            test_location="tests/test_orders.py:12",
            thresholds={"n_plus_one_threshold": 10},
        )

        report = _format_report(result)

        self.assertIn("OrderTests.test_list", report)
        self.assertIn("tests/test_orders.py:12", report)


class FormatHelperTests(unittest.TestCase):
    """Tests for formatting helpers."""

    def test_format_duration(self):
        self.assertEqual(_format_duration(0.5), "500.00μs")
        self.assertEqual(_format_duration(123.45), "123.45ms")
        self.assertEqual(_format_duration(2500.0), "2.50s")

    def test_truncate_sql(self):
        sql = "SELECT * FROM users WHERE id = 1 AND name = 'test' AND email = 'test@example.com'"

        self.assertEqual(_truncate_sql("SELECT 1", 50), "SELECT 1")
        self.assertEqual(_truncate_sql(sql, 30), "SELECT * FROM users WHERE i...")

    def test_format_span(self):
        result = analyze(
            n_plus_one_log(2) + [(TS, "SELECT * FROM t ORDER BY id LIMIT 1 OFFSET 5000", 1, 1.0)]
        )

        self.assertEqual(_format_span(result.patterns[0]), "#1-#3")
        self.assertEqual(_format_span(result.patterns[1]), "#4")

    def test_pattern_severity(self):
        fail = analyze(n_plus_one_log(10)).patterns[0]
        warn = analyze(n_plus_one_log(8)).patterns[0]
        info = analyze(n_plus_one_log(3)).patterns[0]
        offset = analyze([(TS, "SELECT * FROM t LIMIT 1 OFFSET 5000", 1, 1.0)]).patterns[0]

        self.assertEqual(_pattern_severity(fail, 10), "FAIL")
        self.assertEqual(_pattern_severity(warn, 10), "WARN")
        self.assertEqual(_pattern_severity(info, 10), "INFO")
        self.assertEqual(_pattern_severity(offset, 10), "WARN")


if __name__ == "__main__":
    unittest.main()
