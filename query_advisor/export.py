"""HTML export for advisory reports.

Generates standalone HTML files with inline CSS for easy sharing.
"""

import html
from datetime import datetime
from typing import TYPE_CHECKING, List, Tuple

from .detector import PatternKind

if TYPE_CHECKING:
    from .advisor import AdvisorResult


_STYLE = """
        body {
            font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Arial, sans-serif;
            line-height: 1.6;
            background: #f1f5f9;
            color: #1e293b;
            padding: 40px 20px;
        }
        .container { max-width: 1100px; margin: 0 auto; }
        .card {
            background: white;
            border-radius: 10px;
            padding: 24px 28px;
            margin-bottom: 20px;
            box-shadow: 0 4px 14px rgba(15, 23, 42, 0.08);
        }
        h1 { font-size: 28px; margin: 0 0 8px; }
        h2 { font-size: 20px; margin: 0 0 14px; border-bottom: 2px solid #e2e8f0; padding-bottom: 6px; }
        .status { display: inline-block; padding: 4px 14px; border-radius: 16px; font-weight: 600; font-size: 13px; }
        .status.pass { background: #dcfce7; color: #166534; }
        .status.fail { background: #fee2e2; color: #991b1b; }
        .meta { color: #64748b; font-size: 14px; }
        .stats { display: flex; gap: 28px; }
        .stat-value { font-size: 26px; font-weight: 700; }
        .stat-label { color: #64748b; font-size: 12px; text-transform: uppercase; }
        .pattern { border-left: 4px solid #f59e0b; background: #fffbeb; padding: 14px; margin-bottom: 14px; border-radius: 4px; }
        .pattern.fail { border-left-color: #ef4444; background: #fef2f2; }
        .pattern-header { font-weight: 600; }
        .confidence { color: #64748b; font-weight: 400; font-size: 13px; }
        pre { background: white; padding: 10px; border-radius: 4px; overflow-x: auto; white-space: pre-wrap; font-size: 13px; }
        table { width: 100%; border-collapse: collapse; font-size: 14px; }
        td, th { text-align: left; padding: 6px 8px; border-bottom: 1px solid #e2e8f0; }
        code { font-family: "SFMono-Regular", Consolas, Menlo, monospace; }
        .empty { color: #16a34a; text-align: center; padding: 20px; }
        .footer { text-align: center; color: #64748b; font-size: 13px; }
"""

HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>{style}</style>
</head>
<body>
    <div class="container">
        {body}
        <div class="footer">Generated by query-advisor on {timestamp}</div>
    </div>
</body>
</html>
"""


def export_html(result: "AdvisorResult", filename: str) -> None:
    """Export an AdvisorResult to a standalone HTML file.

    Args:
        result: AdvisorResult from analyze() or capture()
        filename: Path to output HTML file
    """
    status, status_class = ("FAILED", "fail") if result.failures else ("PASSED", "pass")
    title = result.test_name or "Query log"

    header = f"""
        <div class="card">
            <h1>Query Advisor Report</h1>
            <div class="meta">
                <div><strong>Source:</strong> {_escape_html(title)}</div>
                {f'<div><strong>Location:</strong> <code>{_escape_html(result.test_location)}</code></div>' if result.test_location else ''}
                <div style="margin-top: 10px;"><span class="status {status_class}">{status}</span></div>
            </div>
        </div>
        <div class="card">
            <h2>Session</h2>
            <div class="stats">
                {_stat(result.records_analyzed, "Queries analyzed")}
                {_stat(result.records_skipped, "Entries skipped")}
                {_stat(f"{result.total_duration_ms:.2f}ms", "Total query time")}
                {_stat(len(result.patterns), "Patterns")}
            </div>
        </div>
    """

    body = "".join(
        [
            header,
            _format_patterns_html(result),
            _format_shapes_html(result),
            _format_messages_html("Warnings", result.warnings),
            _format_messages_html("Failures", result.failures),
        ]
    )
    _write(filename, f"Query Advisor Report - {title}", body)


def export_summary_html(results: List[Tuple[str, "AdvisorResult"]], filename: str) -> None:
    """Export a summary of many capture() results to HTML.

    Args:
        results: List of (test_name, AdvisorResult) tuples
        filename: Output HTML file path
    """
    from .summary import top_n_plus_one_shapes

    total = len(results)
    failed = sum(1 for _, r in results if r.failures)

    rows = []
    for test_name, result in results:
        kinds = ", ".join(sorted({p.kind.value for p in result.patterns})) or "-"
        rows.append(
            f"<tr><td>{'✗' if result.failures else '✓'}</td>"
            f"<td>{_escape_html(test_name)}</td>"
            f"<td>{result.records_analyzed}</td>"
            f"<td>{_escape_html(kinds)}</td></tr>"
        )

    shape_rows = [
        f"<tr><td>{queries}x</td><td>{tests}</td><td><code>{_escape_html(shape)}</code></td></tr>"
        for shape, queries, tests in top_n_plus_one_shapes(results)[:15]
    ]

    body = f"""
        <div class="card">
            <h1>Query Advisor Summary</h1>
            <div class="stats">
                {_stat(total, "Tests")}
                {_stat(total - failed, "Passed")}
                {_stat(failed, "Failed")}
            </div>
        </div>
        <div class="card">
            <h2>N+1 Shapes (Aggregated)</h2>
            {_table(["Child queries", "Tests", "Shape"], shape_rows, "No N+1 patterns across all tests")}
        </div>
        <div class="card">
            <h2>All Tests ({total})</h2>
            {_table(["", "Test", "Queries", "Patterns"], rows, "No tests recorded")}
        </div>
    """
    _write(filename, "Query Advisor Summary", body)


def _format_patterns_html(result: "AdvisorResult") -> str:
    if not result.recommendations:
        return """
        <div class="card">
            <h2>Patterns</h2>
            <div class="empty">No query patterns detected</div>
        </div>
        """

    n1_threshold = result.thresholds.get("n_plus_one_threshold", 10)
    items = []
    for rec in result.recommendations:
        pattern = rec.pattern
        failing = (
            pattern.kind is PatternKind.N_PLUS_ONE
            and pattern.detail.get("run_length", 0) >= n1_threshold
        )
        first = pattern.evidence[0].sequence_number
        last = pattern.evidence[-1].sequence_number
        items.append(
            f"""
        <div class="pattern{' fail' if failing else ''}">
            <div class="pattern-header">
                {pattern.kind.value} &middot; queries #{first}&ndash;#{last}
                <span class="confidence">confidence {pattern.confidence:.2f}</span>
            </div>
            <pre>{_escape_html(rec.text)}</pre>
        </div>
        """
        )

    return f"""
        <div class="card">
            <h2>Patterns ({len(items)})</h2>
            {''.join(items)}
        </div>
    """


def _format_shapes_html(result: "AdvisorResult") -> str:
    if not result.shape_stats:
        return ""
    rows = [
        f"<tr><td>{s.count}x</td><td>{s.total_duration_ms:.2f}ms</td>"
        f"<td><code>{_escape_html(s.shape)}</code></td></tr>"
        for s in result.shape_stats[:10]
    ]
    return f"""
        <div class="card">
            <h2>Heaviest Shapes</h2>
            {_table(["Count", "Time", "Shape"], rows, "")}
        </div>
    """


def _format_messages_html(title: str, messages: List[str]) -> str:
    if not messages:
        return ""
    items = "".join(
        f"<pre>{_escape_html(message)}</pre>" for message in messages
    )
    return f"""
        <div class="card">
            <h2>{title}</h2>
            {items}
        </div>
    """


def _stat(value, label: str) -> str:
    return (
        f'<div><div class="stat-value">{_escape_html(str(value))}</div>'
        f'<div class="stat-label">{label}</div></div>'
    )


def _table(headers: List[str], rows: List[str], empty_text: str) -> str:
    if not rows:
        return f'<div class="empty">{empty_text}</div>'
    head = "".join(f"<th>{h}</th>" for h in headers)
    return f"<table><tr>{head}</tr>{''.join(rows)}</table>"


def _write(filename: str, title: str, body: str) -> None:
    page = HTML_TEMPLATE.format(
        title=_escape_html(title),
        style=_STYLE,
        body=body,
        timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    )
    with open(filename, "w", encoding="utf-8") as f:
        f.write(page)


def _escape_html(text: str) -> str:
    """Escape HTML special characters."""
    return html.escape(text, quote=True)
