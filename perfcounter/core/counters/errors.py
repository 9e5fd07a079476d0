from __future__ import annotations

from enum import Enum


class PerfCounterError(Exception):
    """Base class for performance counter failures."""


class CounterConfigurationError(PerfCounterError):
    """Category/counter missing, access denied or invalid options. The sampler cannot be used."""


class CounterReadError(PerfCounterError):
    """Reading the next raw sample failed, e.g. the counter instance disappeared."""


class SamplerClosedError(PerfCounterError):
    """The counter handle was used after close()."""


class ErrorSeverity(Enum):
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


_FATAL_TYPES = (MemoryError, RecursionError)


def classify_exception(exc: BaseException) -> ErrorSeverity:
    """
    Decide whether a failure may be swallowed.

    FATAL means the process itself is in trouble (out of memory, interpreter
    shutdown, Ctrl+C) and the exception must be re-raised. Everything else
    only failed the current operation.
    """
    if not isinstance(exc, Exception):
        return ErrorSeverity.FATAL
    if isinstance(exc, _FATAL_TYPES):
        return ErrorSeverity.FATAL
    return ErrorSeverity.RECOVERABLE
