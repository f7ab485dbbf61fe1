"""
Dotted version comparison for component target versions.

Versions are compared as four numeric segments: "1.2" == "1.2.0.0",
"1.10" > "1.9". Non-numeric or missing segments count as zero. Both
functions are total over any input and never raise.
"""

SEGMENTS = 4


def _segment(part) -> int:
    text = str(part).strip()
    return int(text) if text.isascii() and text.isdigit() else 0


def normalize_version(version) -> tuple[int, int, int, int]:
    """Return the 4-segment numeric form of *version* (None/"" → zeros)."""
    if version is None:
        return (0,) * SEGMENTS
    parts = [_segment(p) for p in str(version).split(".")][:SEGMENTS]
    parts += [0] * (SEGMENTS - len(parts))
    return tuple(parts)


def compare_versions(a, b) -> int:
    """Return -1, 0 or 1 as *a* is lower than, equal to or higher than *b*."""
    left, right = normalize_version(a), normalize_version(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0
