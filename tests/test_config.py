"""Tests for configuration resolution.

Note: Django settings resolution needs a configured Django project.
These unit tests focus on inline and file-level config.
"""

import unittest

from query_advisor.config import DEFAULTS, detector_options, resolve_thresholds


# File-level config for testing file-level resolution
QUERY_ADVISOR_THRESHOLDS = {
    "offset_threshold": 500,
    "full_scan_rows": 2000,
}


class ConfigResolutionTests(unittest.TestCase):
    """Tests for threshold resolution logic."""

    def test_defaults_match_documented_values(self):
        self.assertEqual(DEFAULTS["offset_threshold"], 1000)
        self.assertEqual(DEFAULTS["n_plus_one_min_run"], 2)
        self.assertEqual(DEFAULTS["n_plus_one_threshold"], 10)
        self.assertEqual(DEFAULTS["full_scan_rows"], 10000)

    def test_inline_overrides_everything(self):
        """Inline kwargs should have highest priority."""
        thresholds, used_defaults = resolve_thresholds(
            offset_threshold=50, n_plus_one_min_run=4, n_plus_one_threshold=5, full_scan_rows=7
        )

        self.assertEqual(thresholds["offset_threshold"], 50)
        self.assertEqual(thresholds["n_plus_one_min_run"], 4)
        self.assertEqual(thresholds["n_plus_one_threshold"], 5)
        self.assertEqual(thresholds["full_scan_rows"], 7)
        self.assertFalse(used_defaults)

    def test_file_level_config_detected(self):
        """File-level QUERY_ADVISOR_THRESHOLDS should be detected."""
        thresholds, used_defaults = resolve_thresholds()

        self.assertEqual(thresholds["offset_threshold"], 500)
        self.assertEqual(thresholds["full_scan_rows"], 2000)
        # Not in file config, so comes from defaults
        self.assertEqual(thresholds["n_plus_one_threshold"], DEFAULTS["n_plus_one_threshold"])
        self.assertFalse(used_defaults)

    def test_inline_overrides_file_level(self):
        """Inline overrides should win over file-level config and merge with it."""
        thresholds, used_defaults = resolve_thresholds(offset_threshold=123)

        self.assertEqual(thresholds["offset_threshold"], 123)
        self.assertEqual(thresholds["full_scan_rows"], 2000)  # from file-level
        self.assertFalse(used_defaults)

    def test_none_overrides_ignored(self):
        """Unset command-line options arrive as None and must not erase config."""
        thresholds, _ = resolve_thresholds(offset_threshold=None, full_scan_rows=None)

        self.assertEqual(thresholds["offset_threshold"], 500)
        self.assertEqual(thresholds["full_scan_rows"], 2000)

    def test_django_not_configured_gracefully_handled(self):
        """Should handle Django not being configured without crashing."""
        thresholds, _ = resolve_thresholds()

        for key in DEFAULTS:
            self.assertIn(key, thresholds)

    def test_defaults_not_mutated(self):
        resolve_thresholds(offset_threshold=1)
        self.assertEqual(DEFAULTS["offset_threshold"], 1000)

    def test_detector_options_subset(self):
        thresholds, _ = resolve_thresholds(n_plus_one_min_run=3)

        self.assertEqual(
            detector_options(thresholds),
            {"offset_threshold": 500, "n_plus_one_min_run": 3, "full_scan_rows": 2000},
        )


if __name__ == "__main__":
    unittest.main()
