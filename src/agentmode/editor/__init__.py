"""Line-based edit engine: validation, application and diffs."""

from .line_diff import DiffLine, apply_diff, compute_line_diff, format_diff
from .line_edits import EditOperation, EditValidationResult, apply_edits, validate_edits

__all__ = [
    "DiffLine",
    "EditOperation",
    "EditValidationResult",
    "apply_diff",
    "apply_edits",
    "compute_line_diff",
    "format_diff",
    "validate_edits",
]
