"""Trace and error reporting shared by the cache, fetcher and loader."""

from __future__ import annotations

import sys
import traceback
from datetime import datetime


class TraceHandler:
    """Print timestamped errors and traces to stderr.

    The handler keeps no mutable state, so a single instance can be shared by
    every component and called from any thread.
    """

    def __init__(
        self,
        show_errors: bool = True,
        show_error_details: bool = False,
        trace_level: int = 0,
        max_print_size: int = -1,
    ) -> None:
        self.show_errors = show_errors
        self.show_error_details = show_error_details
        self.trace_level = max(trace_level, 0)
        self.max_print_size = max_print_size

    @classmethod
    def silent(cls) -> "TraceHandler":
        return cls(show_errors=False, show_error_details=False, trace_level=0)

    def error(self, error: str | BaseException) -> None:
        if not self.show_errors:
            return
        if isinstance(error, BaseException) and self.show_error_details:
            details = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            print(f"{_timestamp()}: {details.rstrip()}", file=sys.stderr)
            return
        print(f"{_timestamp()}: {error}", file=sys.stderr)

    def trace(self, message: str, level: int = 1) -> None:
        if self.trace_level <= 0 or level > self.trace_level:
            return
        if self.max_print_size > 0 and len(message) > self.max_print_size:
            message = message[: self.max_print_size] + "[...]"
        print(f"{_timestamp()}: {message}", file=sys.stderr)


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def resolve_tracer(tracer: TraceHandler | None) -> TraceHandler:
    """Return *tracer* or the default handler (errors on, traces off)."""

    return tracer if tracer is not None else TraceHandler()


__all__ = ["TraceHandler", "resolve_tracer"]
