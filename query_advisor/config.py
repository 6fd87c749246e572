"""Configuration resolution for detection thresholds.

Resolves thresholds from multiple sources with priority:
1. Inline kwargs (highest priority)
2. File-level QUERY_ADVISOR_THRESHOLDS variable
3. Django settings.QUERY_ADVISOR_THRESHOLDS
4. DEFAULTS (lowest priority)
"""

import inspect
from typing import Any, Dict, Tuple

from .detector import DEFAULT_FULL_SCAN_ROWS, DEFAULT_MIN_RUN, DEFAULT_OFFSET_THRESHOLD

CONFIG_NAME = "QUERY_ADVISOR_THRESHOLDS"

# Default thresholds
DEFAULTS = {
    "offset_threshold": DEFAULT_OFFSET_THRESHOLD,
    "n_plus_one_min_run": DEFAULT_MIN_RUN,
    "n_plus_one_threshold": 10,
    "full_scan_rows": DEFAULT_FULL_SCAN_ROWS,
}


def resolve_thresholds(**inline_overrides: Any) -> Tuple[Dict[str, int], bool]:
    """Resolve detection thresholds from config hierarchy.

    Priority (highest first):
    1. Inline kwargs passed to analyze()/capture() (None values are ignored)
    2. File-level QUERY_ADVISOR_THRESHOLDS in caller's module
    3. Django settings.QUERY_ADVISOR_THRESHOLDS
    4. DEFAULTS

    Args:
        **inline_overrides: Direct threshold overrides (offset_threshold, etc.)

    Returns:
        Tuple of (thresholds_dict, used_defaults: bool)
        - thresholds_dict: Resolved threshold values
        - used_defaults: True if no custom config was found
    """
    thresholds = DEFAULTS.copy()
    used_defaults = True

    # Layer 1: Django settings (lowest priority custom config)
    try:
        from django.conf import settings

        django_config = getattr(settings, CONFIG_NAME, None)
        if django_config:
            thresholds.update(django_config)
            used_defaults = False
    except Exception:
        # ImportError or ImproperlyConfigured: Django missing or not set up
        pass

    # Layer 2: File-level variable in caller's module
    stack = inspect.stack()
    try:
        for frame_info in stack[1:]:  # Skip ourselves (frame 0)
            caller_module = inspect.getmodule(frame_info.frame)
            if caller_module is None:
                continue
            file_config = getattr(caller_module, CONFIG_NAME, None)
            if file_config:
                thresholds.update(file_config)
                used_defaults = False
                break
    finally:
        del stack

    # Layer 3: Inline overrides (highest priority)
    inline = {key: value for key, value in inline_overrides.items() if value is not None}
    if inline:
        thresholds.update(inline)
        used_defaults = False

    return thresholds, used_defaults


def detector_options(thresholds: Dict[str, int]) -> Dict[str, int]:
    """Subset of thresholds accepted by PatternDetector."""
    return {
        "offset_threshold": thresholds["offset_threshold"],
        "n_plus_one_min_run": thresholds["n_plus_one_min_run"],
        "full_scan_rows": thresholds["full_scan_rows"],
    }
