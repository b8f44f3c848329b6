"""Timing utilities for performance monitoring."""
import time
from functools import wraps
from typing import Callable, Optional
from placefinder.utils.logging import log_structured


def time_function(func: Callable) -> Callable:
    """Decorator to time function execution."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.monotonic()
        result = func(*args, **kwargs)
        elapsed = time.monotonic() - start

        log_structured(
            "debug",
            f"Function {func.__name__} executed",
            function=func.__name__,
            elapsed_seconds=elapsed
        )

        return result
    return wrapper


class Timer:
    """Context manager for timing code blocks."""

    def __init__(self, operation: str, log: bool = True):
        """
        Initialize timer.

        Args:
            operation: Name of the operation being timed
            log: Whether to emit a debug log line when the block exits
        """
        self.operation = operation
        self.log = log
        self.start: Optional[float] = None
        self.elapsed: Optional[float] = None

    def __enter__(self):
        self.start = time.monotonic()
        return self

    @property
    def so_far(self) -> float:
        """Seconds elapsed since the block was entered."""
        return time.monotonic() - self.start

    def __exit__(self, *args):
        self.elapsed = time.monotonic() - self.start
        if self.log:
            log_structured(
                "debug",
                f"Operation {self.operation} completed",
                operation=self.operation,
                elapsed_seconds=self.elapsed
            )
