"""Query pattern detection.

Scans ingested records once, in sequence order, and flags:

- N+1 sequences: one parent query followed by a run of structurally
  identical child queries that differ only in a literal parameter
  (fetching in a loop instead of using a join/prefetch).
- Deep OFFSET pagination: a literal OFFSET above a threshold.
- Full scans: unbounded SELECTs returning many rows, or LIKE patterns
  with a leading wildcard.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .ingest import QueryRecord

DEFAULT_OFFSET_THRESHOLD = 1000
DEFAULT_MIN_RUN = 2
DEFAULT_FULL_SCAN_ROWS = 10000


class PatternKind(str, Enum):
    """Kinds of query patterns the detector reports."""

    N_PLUS_ONE = "NPlusOne"
    OFFSET_PAGINATION = "OffsetPagination"
    FULL_SCAN = "FullScan"


@dataclass(frozen=True)
class DetectedPattern:
    """A detected query pattern.

    Attributes:
        kind: Which rule matched
        evidence: Records that make up the pattern, in sequence order.
            These are the ingestion session's own records, not copies.
        confidence: How likely the finding is a real problem, 0.0-1.0
        detail: Read-only kind-specific facts (run length, offset value,
            scan reason)
    """

    kind: PatternKind
    evidence: Tuple[QueryRecord, ...]
    confidence: float
    detail: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "detail", MappingProxyType(dict(self.detail)))

    @property
    def first_sequence(self) -> int:
        return self.evidence[0].sequence_number

    @property
    def shape(self) -> str:
        """Shape of the offending query (the child query for N+1)."""
        return self.evidence[-1].shape


@dataclass
class ShapeStats:
    """Aggregate numbers for one normalized query shape."""

    shape: str
    count: int
    total_duration_ms: float
    sample_queries: List[str]  # first 3 examples


_OFFSET_SHAPE_RE = re.compile(r"\bOFFSET\s+\?|\bLIMIT\s+\?\s*,\s*\?", re.IGNORECASE)
_OFFSET_VALUE_RE = re.compile(r"\bOFFSET\s+(\d+)", re.IGNORECASE)
_MYSQL_OFFSET_VALUE_RE = re.compile(r"\bLIMIT\s+(\d+)\s*,\s*\d+", re.IGNORECASE)
_STRING_RE = re.compile(r"'[^']*'")
_LITERAL_RE = re.compile(r"'[^']*'|\b\d+(?:\.\d+)?\b")

_SELECT_RE = re.compile(r"^\s*\(?\s*SELECT\b", re.IGNORECASE)
_BOUNDED_RE = re.compile(r"\b(?:WHERE|LIMIT|TOP|FETCH\s+(?:FIRST|NEXT))\b", re.IGNORECASE)
_LEADING_WILDCARD_RE = re.compile(r"\bI?LIKE\s+'%", re.IGNORECASE)


def _scaled_confidence(value: float, threshold: float) -> float:
    """0.5 at the threshold, rising to 1.0 at ten times the threshold."""
    if threshold <= 0:
        return 1.0
    excess = (value - threshold) / (threshold * 9)
    return round(min(1.0, 0.5 + 0.5 * max(0.0, excess)), 2)


def _n_plus_one_confidence(run_length: int, has_parent: bool) -> float:
    confidence = min(1.0, 0.5 + 0.05 * run_length)
    if not has_parent:
        confidence *= 0.75
    return round(confidence, 2)


def literal_offset(record: QueryRecord) -> Optional[int]:
    """Largest literal OFFSET value in a record, or None.

    Bound parameters (``OFFSET %s``) carry no literal and return None.
    Text inside string literals is ignored.
    """
    if not _OFFSET_SHAPE_RE.search(record.shape):
        return None
    statement = _STRING_RE.sub("''", record.raw_statement)
    values = [int(v) for v in _OFFSET_VALUE_RE.findall(statement)]
    values.extend(int(v) for v in _MYSQL_OFFSET_VALUE_RE.findall(statement))
    return max(values) if values else None


class PatternDetector:
    """Single-pass pattern detector over one session's records.

    Only the previous record and the current run of identical shapes are
    kept while scanning.

    Example:
        detector = PatternDetector(offset_threshold=500)
        for pattern in detector.detect(records):
            print(pattern.kind, pattern.first_sequence)
    """

    def __init__(
        self,
        offset_threshold: int = DEFAULT_OFFSET_THRESHOLD,
        n_plus_one_min_run: int = DEFAULT_MIN_RUN,
        full_scan_rows: int = DEFAULT_FULL_SCAN_ROWS,
    ):
        self.offset_threshold = offset_threshold
        self.n_plus_one_min_run = max(2, n_plus_one_min_run)
        self.full_scan_rows = full_scan_rows

    def detect(self, records: Iterable[QueryRecord]) -> List[DetectedPattern]:
        """Detect patterns in records.

        Args:
            records: QueryRecords in sequence order

        Returns:
            Patterns ordered by the sequence number of their first evidence
            record. A record matching several rules appears in one pattern
            per rule.
        """
        found: List[DetectedPattern] = []
        parent: Optional[QueryRecord] = None
        run: List[QueryRecord] = []

        for record in records:
            if run and record.shape != run[0].shape:
                self._close_run(parent, run, found)
                parent = run[-1]
                run = []
            run.append(record)
            found.extend(self._check_record(record))

        if run:
            self._close_run(parent, run, found)

        # N+1 patterns are emitted when their run ends; stable sort keeps
        # ties in detection order
        found.sort(key=lambda p: p.first_sequence)
        return found

    def _close_run(
        self,
        parent: Optional[QueryRecord],
        run: List[QueryRecord],
        found: List[DetectedPattern],
    ) -> None:
        if len(run) < self.n_plus_one_min_run:
            return
        # Same literals repeated are a duplicate query, not a per-row fetch
        if len({tuple(_LITERAL_RE.findall(r.raw_statement)) for r in run}) < 2:
            return

        evidence = ((parent,) if parent is not None else ()) + tuple(run)
        found.append(
            DetectedPattern(
                kind=PatternKind.N_PLUS_ONE,
                evidence=evidence,
                confidence=_n_plus_one_confidence(len(run), parent is not None),
                detail={"run_length": len(run), "has_parent": parent is not None},
            )
        )

    def _check_record(self, record: QueryRecord) -> List[DetectedPattern]:
        patterns = []

        offset = literal_offset(record)
        if offset is not None and offset > self.offset_threshold:
            patterns.append(
                DetectedPattern(
                    kind=PatternKind.OFFSET_PAGINATION,
                    evidence=(record,),
                    confidence=_scaled_confidence(offset, self.offset_threshold),
                    detail={"offset": offset, "threshold": self.offset_threshold},
                )
            )

        scan = self._full_scan_reason(record)
        if scan is not None:
            reason, confidence = scan
            patterns.append(
                DetectedPattern(
                    kind=PatternKind.FULL_SCAN,
                    evidence=(record,),
                    confidence=confidence,
                    detail={"reason": reason, "row_count": record.row_count},
                )
            )

        return patterns

    def _full_scan_reason(self, record: QueryRecord) -> Optional[Tuple[str, float]]:
        if not _SELECT_RE.match(record.shape):
            return None

        if (
            not _BOUNDED_RE.search(record.shape)
            and record.row_count is not None
            and record.row_count >= self.full_scan_rows
        ):
            return "unbounded_select", _scaled_confidence(record.row_count, self.full_scan_rows)

        if _LEADING_WILDCARD_RE.search(record.raw_statement):
            return "leading_wildcard", 0.7

        return None


def detect_patterns(records: Iterable[QueryRecord], **thresholds: int) -> List[DetectedPattern]:
    """Detect patterns with a one-off PatternDetector."""
    return PatternDetector(**thresholds).detect(records)


def summarize_shapes(records: Iterable[QueryRecord]) -> List[ShapeStats]:
    """Group records by shape.

    Returns:
        ShapeStats per shape, sorted by total duration then count
        (heaviest first)
    """
    groups: Dict[str, ShapeStats] = {}

    for record in records:
        stats = groups.get(record.shape)
        if stats is None:
            stats = groups[record.shape] = ShapeStats(record.shape, 0, 0.0, [])
        stats.count += 1
        stats.total_duration_ms += record.duration_ms
        if len(stats.sample_queries) < 3:
            stats.sample_queries.append(record.raw_statement)

    return sorted(
        groups.values(), key=lambda s: (s.total_duration_ms, s.count), reverse=True
    )
