"""Advisory sessions over query logs.

``analyze()`` runs one ingestion/detection/recommendation session over a
sequence of log entries. ``capture()`` is a context manager for Django
tests: it records the queries executed inside the block, analyzes them on
exit and raises AssertionError when a pattern crosses a failure threshold.
"""

import inspect
import json
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Tuple

from .config import detector_options, resolve_thresholds
from .detector import DetectedPattern, PatternDetector, PatternKind, ShapeStats, summarize_shapes
from .ingest import IngestionSession, from_captured_queries
from .logging_config import get_logger
from .recommend import Recommendation, index_suggestion, recommend_all

logger = get_logger("advisor")


@dataclass
class AdvisorResult:
    """Results from one advisory session.

    Attributes:
        records_analyzed: Number of valid log entries
        records_skipped: Number of malformed entries skipped
        skip_reasons: Why each skipped entry was rejected
        total_duration_ms: Sum of query durations
        patterns: Detected patterns, in input order
        recommendations: One recommendation per pattern, same order
        shape_stats: Per-shape counts and durations (heaviest first)
        thresholds: Resolved threshold values used for this session
        used_defaults: True if no custom config was found
        failures: Threshold violations (capture() raises on these)
        warnings: Informational findings
        test_name: Name of the test method when run through capture()
        test_location: Clickable file:line location of that test

    Example:
        result = analyze(read_jsonl("queries.jsonl"))
        for rec in result.recommendations:
            print(rec.pattern.kind, rec.text)
        result.explain()
    """

    records_analyzed: int = 0
    records_skipped: int = 0
    skip_reasons: List[str] = field(default_factory=list)
    total_duration_ms: float = 0.0
    patterns: List[DetectedPattern] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    shape_stats: List[ShapeStats] = field(default_factory=list)

    thresholds: Dict[str, int] = field(default_factory=dict)
    used_defaults: bool = False

    failures: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    test_name: str = ""
    test_location: str = ""

    def patterns_of(self, kind: PatternKind) -> List[DetectedPattern]:
        return [p for p in self.patterns if p.kind is kind]

    def explain(self, file=None) -> None:
        """Print detailed advisory report.

        Args:
            file: Output stream (default: stdout)
        """
        print(_format_report(self), file=file)

    def __str__(self) -> str:
        return (
            f"AdvisorResult(queries={self.records_analyzed}, "
            f"skipped={self.records_skipped}, "
            f"patterns={len(self.patterns)}, "
            f"failures={len(self.failures)})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary.

        Each pattern entry carries its evidence records and recommendation
        text.
        """
        return {
            "records_analyzed": self.records_analyzed,
            "records_skipped": self.records_skipped,
            "skip_reasons": self.skip_reasons,
            "total_duration_ms": self.total_duration_ms,
            "patterns": [_recommendation_to_dict(r) for r in self.recommendations],
            "shape_stats": [
                {
                    "shape": s.shape,
                    "count": s.count,
                    "total_duration_ms": s.total_duration_ms,
                    "sample_queries": s.sample_queries,
                }
                for s in self.shape_stats
            ],
            "thresholds": self.thresholds,
            "used_defaults": self.used_defaults,
            "failures": self.failures,
            "warnings": self.warnings,
            "test_name": self.test_name,
            "test_location": self.test_location,
        }

    def to_json(self, filename: str) -> None:
        """Write to_dict() output to a JSON file."""
        with open(filename, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_html(self, filename: str) -> None:
        """Export the report to a standalone HTML file."""
        from .export import export_html

        export_html(self, filename)


def _recommendation_to_dict(recommendation: Recommendation) -> Dict[str, Any]:
    pattern = recommendation.pattern
    data = {
        "kind": pattern.kind.value,
        "confidence": pattern.confidence,
        "detail": dict(pattern.detail),
        "shape": pattern.shape,
        "evidence": [
            {
                "sequence_number": r.sequence_number,
                "raw_statement": r.raw_statement,
                "row_count": r.row_count,
                "duration_ms": r.duration_ms,
                "timestamp": r.timestamp.isoformat(),
            }
            for r in pattern.evidence
        ],
        "recommendation": recommendation.text,
    }
    if pattern.kind is PatternKind.N_PLUS_ONE:
        data["index_suggestion"] = index_suggestion(pattern)
    return data


def analyze(entries: Iterable[Any], **inline_overrides: Any) -> AdvisorResult:
    """Run one advisory session over a sequence of log entries.

    Args:
        entries: (timestamp, sql, row_count, duration_ms) tuples or mappings
        **inline_overrides: Direct threshold overrides
            - offset_threshold: OFFSET values above this are flagged
            - n_plus_one_min_run: Min child queries in an N+1 run
            - n_plus_one_threshold: Child queries that make an N+1 a failure
            - full_scan_rows: Rows an unbounded SELECT must return to be flagged

    Returns:
        AdvisorResult with patterns, recommendations, warnings and failures
    """
    result = AdvisorResult()
    result.thresholds, result.used_defaults = resolve_thresholds(**inline_overrides)
    _run_session(result, entries)
    return result


@contextmanager
def capture(**inline_overrides: Any) -> Iterator[AdvisorResult]:
    """Capture Django queries in a block and analyze them on exit.

    Args:
        **inline_overrides: Same threshold overrides as analyze()

    Yields:
        AdvisorResult: Results object (populated on exit)

    Raises:
        AssertionError: If any failure threshold is crossed on exit
        ImportError: If Django is not installed

    Example:
        with capture(n_plus_one_threshold=5) as advice:
            self.client.get('/api/orders/')
        advice.explain()
    """
    result = AdvisorResult()
    result.thresholds, result.used_defaults = resolve_thresholds(**inline_overrides)
    result.test_name, result.test_location = _find_test_context()

    # Import Django components here to avoid import errors if Django not configured
    try:
        from django.db import connection
        from django.test.utils import CaptureQueriesContext
    except ImportError as e:
        raise ImportError(
            "query_advisor.capture() requires Django to be installed and configured. "
            f"Original error: {e}"
        ) from e

    started_at = datetime.now(timezone.utc)
    with CaptureQueriesContext(connection) as query_context:
        yield result

    _run_session(result, from_captured_queries(query_context.captured_queries, started_at))

    if result.test_name:
        from .summary import AdvisorSummaryTracker

        AdvisorSummaryTracker.instance().add_result(result.test_name, result)

    if result.failures:
        raise AssertionError(_format_report(result))


def _find_test_context() -> Tuple[str, str]:
    """Find the calling test method's name and file:line location."""
    stack = inspect.stack()
    try:
        for frame_info in stack[1:]:
            frame = frame_info.frame
            func_name = frame.f_code.co_name
            if not func_name.startswith("test_"):
                continue

            try:
                rel_path = os.path.relpath(frame.f_code.co_filename)
            except ValueError:
                rel_path = frame.f_code.co_filename

            if "self" in frame.f_locals:
                test_name = f"{frame.f_locals['self'].__class__.__name__}.{func_name}"
            else:
                test_name = func_name
            return test_name, f"{rel_path}:{frame_info.lineno}"
    finally:
        del stack
    return "", ""


def _run_session(result: AdvisorResult, entries: Iterable[Any]) -> None:
    """Ingest, detect, recommend and check thresholds into result."""
    if result.used_defaults:
        result.warnings.append(
            "No QUERY_ADVISOR_THRESHOLDS config found. Using defaults. "
            "Configure in settings.py or the calling module to remove this warning."
        )

    session = IngestionSession()
    records = list(session.ingest(entries))
    detector = PatternDetector(**detector_options(result.thresholds))

    result.records_analyzed = session.ingested
    result.records_skipped = session.skipped
    result.skip_reasons = list(session.skip_reasons)
    result.total_duration_ms = sum(r.duration_ms for r in records)
    result.patterns = detector.detect(records)
    result.recommendations = recommend_all(result.patterns)
    result.shape_stats = summarize_shapes(records)

    _check_thresholds(result)
    logger.debug(
        "Session analyzed %d queries: %d pattern(s), %d failure(s)",
        result.records_analyzed,
        len(result.patterns),
        len(result.failures),
    )


def _check_thresholds(result: AdvisorResult) -> None:
    """Populate result.failures and result.warnings from detected patterns.

    Threshold Checks:
        1. N+1 runs (by number of child queries vs n_plus_one_threshold):
           - >= 100%: Failure
           - >= 80%: Warning
           - otherwise: Notice
        2. Deep OFFSET pagination: Warning
        3. Full scans: Warning
        4. Skipped log entries: Warning
    """
    n1_threshold = result.thresholds["n_plus_one_threshold"]
    warn_threshold = int(n1_threshold * 0.8)

    for pattern in result.patterns:
        location = _format_span(pattern)
        shape = _truncate_sql(pattern.shape, 80)

        if pattern.kind is PatternKind.N_PLUS_ONE:
            run_length = pattern.detail["run_length"]
            if run_length >= n1_threshold:
                examples = "\n".join(
                    f"      → {_truncate_sql(r.raw_statement, 70)}"
                    for r in pattern.evidence[-run_length:][:3]
                )
                result.failures.append(
                    f"N+1 pattern detected: {run_length} per-row queries at {location} "
                    f"(threshold: {n1_threshold})\n"
                    f"   Pattern: {shape}\n"
                    f"   Examples:\n{examples}"
                )
            elif run_length >= warn_threshold:
                result.warnings.append(
                    f"N+1 WARNING: {run_length} per-row queries at {location} "
                    f"(approaching threshold: {n1_threshold})\n"
                    f"   Pattern: {shape}"
                )
            else:
                result.warnings.append(
                    f"N+1 notice: {run_length} per-row queries at {location}\n"
                    f"   Pattern: {shape}"
                )

        elif pattern.kind is PatternKind.OFFSET_PAGINATION:
            result.warnings.append(
                f"OFFSET {pattern.detail['offset']} exceeds {pattern.detail['threshold']} "
                f"at {location}\n"
                f"   Pattern: {shape}"
            )

        elif pattern.kind is PatternKind.FULL_SCAN:
            reason = pattern.detail["reason"].replace("_", " ")
            result.warnings.append(
                f"Full scan ({reason}) at {location}\n"
                f"   Pattern: {shape}"
            )

    if result.records_skipped:
        result.warnings.append(
            f"{result.records_skipped} malformed log entr"
            f"{'y' if result.records_skipped == 1 else 'ies'} skipped"
        )


# ANSI color codes for terminal output
class Colors:
    """ANSI escape codes for terminal colors.

    Respects NO_COLOR environment variable (https://no-color.org/).
    Set NO_COLOR=1 or QUERY_ADVISOR_NO_COLOR=1 to disable colors.

    Note: Setting to '0' will NOT disable colors (must be truthy: 1, true, yes, on)
    """

    _TRUTHY = ("1", "true", "yes", "on")
    _DISABLED = (
        os.getenv("NO_COLOR", "").lower() in _TRUTHY
        or os.getenv("QUERY_ADVISOR_NO_COLOR", "").lower() in _TRUTHY
    )

    RESET = "" if _DISABLED else "\033[0m"
    BOLD = "" if _DISABLED else "\033[1m"
    DIM = "" if _DISABLED else "\033[2m"

    GREEN = "" if _DISABLED else "\033[32m"
    YELLOW = "" if _DISABLED else "\033[33m"
    RED = "" if _DISABLED else "\033[31m"
    BLUE = "" if _DISABLED else "\033[34m"
    CYAN = "" if _DISABLED else "\033[36m"


def _format_report(result: AdvisorResult) -> str:
    """Format a detailed advisory report with ANSI colors.

    Args:
        result: AdvisorResult with all fields populated

    Returns:
        Formatted multi-line string report
    """
    lines = []
    c = Colors

    lines.append(f"\n{c.BOLD}{'=' * 60}{c.RESET}")
    lines.append(f"{c.BOLD}{c.CYAN}QUERY ADVISOR REPORT{c.RESET}")
    lines.append(f"{c.BOLD}{'=' * 60}{c.RESET}")

    if result.test_name or result.test_location:
        lines.append("")
        if result.test_name:
            lines.append(f"{c.BLUE}Test:{c.RESET} {result.test_name}")
        if result.test_location:
            lines.append(f"{c.DIM}Location:{c.RESET} {c.CYAN}{result.test_location}{c.RESET}")

    lines.append(f"\n{c.BOLD}SESSION:{c.RESET}")
    lines.append(
        f"   Queries analyzed: {result.records_analyzed} "
        f"{c.DIM}(skipped: {result.records_skipped}){c.RESET}"
    )
    lines.append(f"   Total query time: {_format_duration(result.total_duration_ms)}")
    lines.append(f"   Distinct shapes:  {len(result.shape_stats)}")

    if result.recommendations:
        lines.append(f"\n{c.BOLD}{c.YELLOW}PATTERNS DETECTED:{c.RESET}")
        n1_threshold = result.thresholds.get("n_plus_one_threshold", 10)
        for rec in result.recommendations:
            pattern = rec.pattern
            label, color = _format_pattern_severity_color(pattern, n1_threshold)
            lines.append(
                f"   {color}{label}{c.RESET} [{pattern.kind.value}] "
                f"{_format_span(pattern)} "
                f"{c.DIM}(confidence {pattern.confidence:.2f}){c.RESET}"
            )
            for line in rec.text.split("\n"):
                lines.append(f"      {line.strip()}")
    else:
        lines.append(f"\n{c.GREEN}✓{c.RESET} No query patterns detected")

    if result.shape_stats:
        lines.append(f"\n{c.BOLD}HEAVIEST SHAPES:{c.RESET}")
        for stats in result.shape_stats[:3]:
            lines.append(
                f"   [{stats.count}x] {_format_duration(stats.total_duration_ms)} "
                f"{c.DIM}{_truncate_sql(stats.shape, 60)}{c.RESET}"
            )

    if result.warnings:
        lines.append(f"\n{c.BOLD}{c.YELLOW}WARNINGS:{c.RESET}")
        for warning in result.warnings:
            for line in warning.split("\n"):
                lines.append(f"   {c.YELLOW}•{c.RESET} {line.strip()}")

    if result.failures:
        lines.append(f"\n{c.BOLD}{c.RED}FAILURES:{c.RESET}")
        for failure in result.failures:
            for line in failure.split("\n"):
                lines.append(f"   {c.RED}✗{c.RESET} {line.strip()}")

    if result.used_defaults:
        lines.append(f"\n{c.DIM}Using default thresholds (no config found){c.RESET}")

    lines.append(f"{c.BOLD}{'=' * 60}{c.RESET}\n")
    return "\n".join(lines)


def _format_span(pattern: DetectedPattern) -> str:
    """Sequence span of a pattern's evidence: '#3' or '#3-#7'."""
    first = pattern.evidence[0].sequence_number
    last = pattern.evidence[-1].sequence_number
    return f"#{first}" if first == last else f"#{first}-#{last}"


def _format_duration(ms: float) -> str:
    """Format duration in ms to human-readable string.

    Returns:
        Formatted string (e.g., "123.45ms", "2.50s", "500.00μs")
    """
    if ms < 1:
        return f"{ms * 1000:.2f}μs"
    elif ms < 1000:
        return f"{ms:.2f}ms"
    else:
        return f"{ms / 1000:.2f}s"


def _truncate_sql(sql: str, max_length: int) -> str:
    """Truncate SQL query to max length, with ellipsis if needed."""
    if len(sql) <= max_length:
        return sql
    return sql[: max_length - 3] + "..."


def _pattern_severity(pattern: DetectedPattern, n1_threshold: int) -> str:
    """Severity label: FAIL, WARN or INFO.

    Only N+1 runs can fail; other kinds are always warnings.
    """
    if pattern.kind is not PatternKind.N_PLUS_ONE:
        return "WARN"
    run_length = pattern.detail.get("run_length", 0)
    if run_length >= n1_threshold:
        return "FAIL"
    elif run_length >= int(n1_threshold * 0.8):
        return "WARN"
    return "INFO"


def _format_pattern_severity_color(pattern: DetectedPattern, n1_threshold: int) -> tuple:
    """Severity label with its ANSI color."""
    label = _pattern_severity(pattern, n1_threshold)
    color = {"FAIL": Colors.RED, "WARN": Colors.YELLOW}.get(label, Colors.BLUE)
    return label, color
