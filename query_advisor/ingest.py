"""Query log ingestion.

Turns a lazy sequence of executed statements into QueryRecord objects.
Each record carries a normalized shape (literals replaced by placeholders)
used to group structurally identical queries.
"""

import json
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from .logging_config import get_logger

logger = get_logger("ingest")


class MalformedRecord(ValueError):
    """A log entry is missing a required field or has a field of the wrong type."""


@dataclass(frozen=True)
class QueryRecord:
    """One executed statement, immutable once ingested."""

    sequence_number: int
    shape: str
    raw_statement: str
    row_count: Optional[int]
    duration_ms: float
    timestamp: datetime


_UUID_RE = re.compile(
    r"'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}'",
    re.IGNORECASE,
)
_STRING_RE = re.compile(r"'[^']*'")
_NUMBER_RE = re.compile(r"\b\d+(?:\.\d+)?\b")
_IN_LIST_RE = re.compile(r"\bIN\s*\([^()]+\)", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_query(sql: str) -> str:
    """Normalize SQL by replacing literals with placeholders.

    Replaces:
    - UUIDs: 'a1b2c3d4-...' -> '?'
    - Strings: 'foo' -> '?'
    - Numbers: 123, 4.5 -> ?
    - IN clauses: IN (1, 2, 3) -> IN (?)

    Whitespace runs collapse to one space. Applying it to its own output
    returns the same string.

    Args:
        sql: Raw SQL query string

    Returns:
        Normalized query with placeholders
    """
    result = _UUID_RE.sub("'?'", sql)
    result = _STRING_RE.sub("'?'", result)
    result = _NUMBER_RE.sub("?", result)
    result = _IN_LIST_RE.sub("IN (?)", result)
    return _WHITESPACE_RE.sub(" ", result).strip()


def _coerce_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        raise MalformedRecord(f"timestamp has wrong type: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise MalformedRecord(f"timestamp is out of range: {value!r}") from None
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise MalformedRecord(f"timestamp is not ISO-8601: {value!r}") from None
    raise MalformedRecord(f"timestamp has wrong type: {value!r}")


def _coerce_duration(value: Any) -> float:
    if isinstance(value, bool):
        raise MalformedRecord(f"duration_ms has wrong type: {value!r}")
    try:
        duration = float(value)
    except (TypeError, ValueError):
        raise MalformedRecord(f"duration_ms is not a number: {value!r}") from None
    if not math.isfinite(duration):
        raise MalformedRecord(f"duration_ms is not finite: {value!r}")
    if duration < 0:
        raise MalformedRecord(f"duration_ms is negative: {duration}")
    return duration


def _coerce_row_count(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedRecord(f"row_count is not an integer: {value!r}")
    if value < 0:
        raise MalformedRecord(f"row_count is negative: {value}")
    return value


def _unpack(entry: Any) -> Dict[str, Any]:
    """Read an entry tuple or mapping into a field dict."""
    if isinstance(entry, Mapping):
        fields = dict(entry)
        # Django captured queries carry 'time' in seconds
        if "duration_ms" not in fields and "time" in fields:
            try:
                fields["duration_ms"] = float(fields["time"]) * 1000
            except (TypeError, ValueError):
                raise MalformedRecord(f"time is not a number: {fields['time']!r}") from None
        missing = [key for key in ("timestamp", "sql", "duration_ms") if key not in fields]
        if missing:
            raise MalformedRecord(f"missing required field(s): {', '.join(missing)}")
        return fields

    if isinstance(entry, (tuple, list)):
        if len(entry) != 4:
            raise MalformedRecord(
                f"expected (timestamp, sql, row_count, duration_ms), got {len(entry)} field(s)"
            )
        timestamp, sql, row_count, duration_ms = entry
        return {
            "timestamp": timestamp,
            "sql": sql,
            "row_count": row_count,
            "duration_ms": duration_ms,
        }

    raise MalformedRecord(f"unsupported entry type: {type(entry).__name__}")


class IngestionSession:
    """A single pass over one query log.

    Sequence numbers start at 1 and increase by one per valid record.
    Malformed entries are skipped and counted; they never end the session.

    Example:
        session = IngestionSession()
        records = list(session.ingest(entries))
        print(session.skipped, session.skip_reasons)
    """

    def __init__(self) -> None:
        self.ingested = 0
        self.skipped = 0
        self.skip_reasons: List[str] = []
        self._next_sequence = 1

    def ingest(self, entries: Iterable[Any]) -> Iterator[QueryRecord]:
        """Yield a QueryRecord per valid entry, lazily."""
        for position, entry in enumerate(entries, 1):
            try:
                record = self._build_record(entry)
            except MalformedRecord as e:
                self.skipped += 1
                self.skip_reasons.append(f"entry {position}: {e}")
                logger.warning("Skipping malformed log entry %d: %s", position, e)
                continue
            self.ingested += 1
            yield record

        logger.debug(
            "Ingestion finished: %d record(s), %d skipped", self.ingested, self.skipped
        )

    def _build_record(self, entry: Any) -> QueryRecord:
        fields = _unpack(entry)

        sql = fields["sql"]
        if not isinstance(sql, str) or not sql.strip():
            raise MalformedRecord("sql is empty or not a string")

        record = QueryRecord(
            sequence_number=self._next_sequence,
            shape=normalize_query(sql),
            raw_statement=sql,
            row_count=_coerce_row_count(fields.get("row_count")),
            duration_ms=_coerce_duration(fields["duration_ms"]),
            timestamp=_coerce_timestamp(fields["timestamp"]),
        )
        self._next_sequence += 1
        return record


def read_jsonl(path: str) -> Iterator[Any]:
    """Lazily read entries from a JSON-lines query log.

    Blank lines are ignored. Lines that are not valid UTF-8 or not valid
    JSON are yielded unchanged (as bytes or str) so the ingestion session
    counts them as malformed.
    """
    with open(path, "rb") as f:
        for raw in f:
            raw = raw.strip()
            if not raw:
                continue
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError:
                yield raw
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                yield line


def from_captured_queries(
    queries: Iterable[Mapping[str, str]], started_at: datetime
) -> Iterator[Dict[str, Any]]:
    """Convert Django captured queries into log entries.

    Django records only SQL and elapsed time, so each query is stamped with
    ``started_at`` plus the time spent in the queries before it.
    """
    elapsed_ms = 0.0
    for q in queries:
        try:
            duration_ms = float(q.get("time", 0)) * 1000
        except (TypeError, ValueError):
            duration_ms = 0.0
        yield {
            "timestamp": started_at + timedelta(milliseconds=elapsed_ms),
            "sql": q.get("sql"),
            "row_count": None,
            "duration_ms": duration_ms,
        }
        elapsed_ms += duration_ms
