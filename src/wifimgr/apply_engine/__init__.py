"""Apply engine: diff intent against live state and push the changes."""
from .diff import DiffEngine, flatten, render_diff, render_split, render_unified, summarize_diff, unflatten
from .engine import ALL_TYPES, ApplyEngine
from .executor import ApplyExecutor
from .resolve import Resolution, check_apply_supported, is_apply_supported, resolve_api_for_site
from .schema import (
    ApplyOptions,
    ApplyResult,
    DeviceDiff,
    DiffResult,
    FieldChange,
    Verdict,
)

__all__ = [
    # Main engine
    "ALL_TYPES",
    "ApplyEngine",
    # Schema
    "ApplyOptions",
    "ApplyResult",
    "DeviceDiff",
    "DiffResult",
    "FieldChange",
    "Verdict",
    # Components
    "ApplyExecutor",
    "DiffEngine",
    "Resolution",
    "check_apply_supported",
    "is_apply_supported",
    "resolve_api_for_site",
    # Rendering
    "flatten",
    "unflatten",
    "render_diff",
    "render_split",
    "render_unified",
    "summarize_diff",
]
