"""Process-wide summary of capture() results.

Collects results from every named capture() block and prints a summary
report at program exit.
"""

import atexit
import os
from collections import Counter
from typing import List, Tuple

from .advisor import AdvisorResult
from .detector import PatternKind


class AdvisorSummaryTracker:
    """Global singleton tracking all capture() results.

    Automatically registers atexit handler to print summary.
    Disable with QUERY_ADVISOR_NO_SUMMARY=1 environment variable.
    """

    _instance = None

    def __init__(self):
        self.results: List[Tuple[str, AdvisorResult]] = []
        atexit.register(self.print_summary)

    @classmethod
    def instance(cls):
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def add_result(self, test_name: str, result: AdvisorResult):
        """Record a test result.

        Args:
            test_name: Name of the test (e.g., "TestClass.test_method")
            result: AdvisorResult from the test's capture() block
        """
        self.results.append((test_name, result))

    def export_html(self, filename: str) -> None:
        """Export all collected results to an HTML report."""
        from .export import export_summary_html

        export_summary_html(self.results, filename)

    def format_summary(self) -> str:
        """Build the summary text printed at exit.

        Returns an empty string when no results were collected.
        """
        from .advisor import Colors, _truncate_sql

        if not self.results:
            return ""

        c = Colors
        lines = []

        lines.append(f"\n{c.BOLD}{'=' * 80}{c.RESET}")
        lines.append(f"{c.BOLD}{c.CYAN}QUERY ADVISOR SUMMARY{c.RESET}")
        lines.append(f"{c.BOLD}{'=' * 80}{c.RESET}\n")

        total = len(self.results)
        failed = [name for name, r in self.results if r.failures]
        passed = total - len(failed)

        lines.append(f"{c.BOLD}Total tests analyzed:{c.RESET} {total}")
        lines.append(
            f"{c.GREEN}Passed:{c.RESET} {passed} ({passed/total*100:.0f}%)  "
            f"{c.RED}Failed:{c.RESET} {len(failed)} ({len(failed)/total*100:.0f}%)"
        )

        if failed:
            lines.append(f"\n{c.BOLD}Failing tests:{c.RESET}")
            for name in failed[:10]:
                lines.append(f"  {c.RED}✗{c.RESET} {name}")

        kinds = Counter(p.kind for _, r in self.results for p in r.patterns)
        if kinds:
            lines.append(f"\n{c.BOLD}Patterns found:{c.RESET}")
            for kind in PatternKind:
                if kinds[kind]:
                    lines.append(f"  {c.YELLOW}•{c.RESET} {kind.value}: {kinds[kind]}")

        n1_shapes = top_n_plus_one_shapes(self.results)
        if n1_shapes:
            lines.append(f"\n{c.BOLD}Top N+1 shapes:{c.RESET}")
            for i, (shape, queries, tests) in enumerate(n1_shapes[:5], 1):
                lines.append(
                    f"  {i}. [{queries}x in {tests} test(s)] "
                    f"{c.DIM}{_truncate_sql(shape, 60)}{c.RESET}"
                )

        lines.append(f"\n{c.DIM}To disable this summary: export QUERY_ADVISOR_NO_SUMMARY=1{c.RESET}")
        lines.append(f"{c.BOLD}{'=' * 80}{c.RESET}\n")
        return "\n".join(lines)

    def print_summary(self):
        """Print summary report at program exit.

        Skipped if no results were collected or QUERY_ADVISOR_NO_SUMMARY is
        truthy (1, true, yes, on).
        """
        no_summary = os.getenv("QUERY_ADVISOR_NO_SUMMARY", "").lower()
        if no_summary in ("1", "true", "yes", "on"):
            return

        summary = self.format_summary()
        if summary:
            print(summary)


def top_n_plus_one_shapes(results: List[Tuple[str, AdvisorResult]]) -> List[Tuple[str, int, int]]:
    """Aggregate N+1 child shapes across results.

    Returns:
        (shape, total child queries, number of tests) tuples, worst first
    """
    queries: Counter = Counter()
    tests = {}
    for test_name, result in results:
        for pattern in result.patterns_of(PatternKind.N_PLUS_ONE):
            queries[pattern.shape] += pattern.detail["run_length"]
            tests.setdefault(pattern.shape, set()).add(test_name)
    return [(shape, count, len(tests[shape])) for shape, count in queries.most_common()]
