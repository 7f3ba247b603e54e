"""In-process test harness for applications."""

from .browser import Browser, HarnessUsageError

__all__ = ["Browser", "HarnessUsageError"]
