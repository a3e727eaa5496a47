# turbo_upload/utils.py
"""
Shared helper functions for formatting and progress arithmetic.
"""
import math
from typing import Optional


def format_bytes(size: float) -> str:
    """Converts bytes into a human-readable format (KB, MB, GB)."""
    if not isinstance(size, (int, float)):
        return "0 B"
    power = 1024
    n = 0
    power_labels = {0: '', 1: 'K', 2: 'M', 3: 'G', 4: 'T'}
    while size > power and n < len(power_labels) - 1:
        size /= power
        n += 1
    return f"{size:.2f} {power_labels[n]}B"


def format_eta(seconds: Optional[int]) -> str:
    """Renders an ETA as `42s`, `3m 7s` or `2h 15m`; unknown becomes `--`."""
    if seconds is None:
        return "--"
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def percent(done: int, total: int) -> int:
    """Integer percentage of `done` over `total`, rounding halves up."""
    if total <= 0:
        return 0
    return (done * 200 + total) // (2 * total)


def round_half_up(value: float) -> int:
    """Nearest integer, with halves going up like `percent`."""
    return math.floor(value + 0.5)
