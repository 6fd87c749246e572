"""Remediation text for detected query patterns.

Pure formatting: the same pattern kind and evidence always produce the
same text.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .detector import DetectedPattern, PatternKind


@dataclass(frozen=True)
class Recommendation:
    """A detected pattern and the text describing how to fix it."""

    pattern: DetectedPattern
    text: str


TEMPLATES: Dict[PatternKind, str] = {
    PatternKind.N_PLUS_ONE: (
        "N+1 query: {lead}{run_length} per-row queries of the same shape\n"
        "   {shape}\n"
        "Load the related rows together with the parent: JOIN FETCH (JPA), "
        "select_related()/prefetch_related() (Django), or one batched query "
        "with IN (...).{index_hint}"
    ),
    PatternKind.OFFSET_PAGINATION: (
        "Deep OFFSET pagination: OFFSET {offset} (threshold {threshold}) reads and "
        "discards {offset} rows before returning a page\n"
        "   {shape}\n"
        "Switch to keyset pagination: {keyset}"
    ),
    PatternKind.FULL_SCAN: "{scan_text}",
}

FULL_SCAN_TEXT = {
    "unbounded_select": (
        "Full scan: unbounded SELECT returned {row_count} rows\n"
        "   {shape}\n"
        "Filter with a WHERE predicate on an indexed column, add a LIMIT, "
        "or paginate the result."
    ),
    "leading_wildcard": (
        "Full scan: LIKE with a leading wildcard cannot use a b-tree index\n"
        "   {shape}\n"
        "Use a prefix match (LIKE 'abc%'), a trigram or full-text index, "
        "or an index on the reversed column."
    ),
}

_IDENT = r"[\w.\"`\[\]]+"
_TABLE_RE = re.compile(rf"\bFROM\s+({_IDENT})", re.IGNORECASE)
_FILTER_COLUMN_RE = re.compile(rf"\bWHERE\s+({_IDENT})\s*(?:=|IN\b)", re.IGNORECASE)
_ORDER_COLUMN_RE = re.compile(rf"\bORDER\s+BY\s+({_IDENT})(?:\s+(ASC|DESC))?", re.IGNORECASE)


def _bare(identifier: str) -> str:
    """Last dotted component without quoting: '"app"."user_id"' -> 'user_id'."""
    return identifier.split(".")[-1].strip('"`[]')


def _index_hint(shape: str) -> str:
    table = _TABLE_RE.search(shape)
    column = _FILTER_COLUMN_RE.search(shape)
    if not table or not column:
        return ""
    return (
        f"\nIndex the filtered column so the batched lookup stays cheap: "
        f"CREATE INDEX ON {_bare(table.group(1))} ({_bare(column.group(1))});"
    )


def _keyset_clause(shape: str) -> str:
    order = _ORDER_COLUMN_RE.search(shape)
    if not order:
        return (
            "ORDER BY a unique key and filter WHERE key > :last_seen_key "
            "LIMIT :page_size instead of skipping rows with OFFSET."
        )
    column = _bare(order.group(1))
    comparison = "<" if (order.group(2) or "").upper() == "DESC" else ">"
    return (
        f"WHERE {column} {comparison} :last_seen_{column} ORDER BY {order.group(1)}"
        f"{' DESC' if comparison == '<' else ''} LIMIT :page_size, "
        f"with an index on {column}."
    )


def recommend(pattern: DetectedPattern) -> str:
    """Return remediation text for a detected pattern.

    Raises:
        ValueError: If the pattern kind has no template
    """
    template = TEMPLATES.get(pattern.kind)
    if template is None:
        raise ValueError(f"No recommendation template for pattern kind {pattern.kind!r}")

    shape = pattern.shape

    if pattern.kind is PatternKind.N_PLUS_ONE:
        run_length = pattern.detail.get("run_length", len(pattern.evidence) - 1)
        lead = "1 parent query followed by " if pattern.detail.get("has_parent", True) else ""
        return template.format(
            lead=lead, run_length=run_length, shape=shape, index_hint=_index_hint(shape)
        )

    if pattern.kind is PatternKind.OFFSET_PAGINATION:
        return template.format(
            offset=pattern.detail.get("offset"),
            threshold=pattern.detail.get("threshold"),
            shape=shape,
            keyset=_keyset_clause(shape),
        )

    reason = pattern.detail.get("reason", "unbounded_select")
    scan_text = FULL_SCAN_TEXT[reason].format(
        row_count=pattern.detail.get("row_count"), shape=shape
    )
    return template.format(scan_text=scan_text)


def recommend_all(patterns: Iterable[DetectedPattern]) -> List[Recommendation]:
    """Pair each pattern with its recommendation, keeping order."""
    return [Recommendation(pattern, recommend(pattern)) for pattern in patterns]


def index_suggestion(pattern: DetectedPattern) -> Optional[str]:
    """CREATE INDEX statement implied by an N+1 pattern's filter, if any."""
    hint = _index_hint(pattern.shape)
    if not hint:
        return None
    return hint[hint.index("CREATE INDEX"):]
