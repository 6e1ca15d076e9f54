"""
Stance Core - Utility Functions

Helper functions shared by the controller, diff and decay modules.
"""

from typing import Any, Iterable, List


def clip(x: float, lo: float, hi: float) -> float:
    """
    Clip value to range [lo, hi].

    Args:
        x: Value to clip
        lo: Lower bound
        hi: Upper bound

    Returns:
        Clipped value in [lo, hi]
    """
    return max(lo, min(hi, x))


def ordered_union(*sequences: Iterable[Any]) -> List[Any]:
    """Set-union of sequences, keeping first-seen order."""
    seen = set()
    result = []
    for seq in sequences:
        for item in seq:
            if item not in seen:
                seen.add(item)
                result.append(item)
    return result


def is_number(value: Any) -> bool:
    """True for int/float but not bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)
