"""Query Advisor - N+1, OFFSET pagination and full-scan advice from query logs."""

from .advisor import AdvisorResult, analyze, capture
from .detector import DetectedPattern, PatternDetector, PatternKind
from .ingest import IngestionSession, MalformedRecord, QueryRecord, normalize_query, read_jsonl
from .recommend import Recommendation, recommend

# Version is managed in pyproject.toml - read dynamically
try:
    from importlib.metadata import version
    __version__ = version("query-advisor")
except Exception:
    __version__ = "unknown"

__all__ = [
    "__version__",
    "analyze",
    "capture",
    "AdvisorResult",
    "DetectedPattern",
    "IngestionSession",
    "MalformedRecord",
    "PatternDetector",
    "PatternKind",
    "QueryRecord",
    "Recommendation",
    "normalize_query",
    "read_jsonl",
    "recommend",
]
