"""Function usage tracking shared by every module."""

from tracking.runtime import seen_functions, t

__all__ = ["t", "seen_functions"]
