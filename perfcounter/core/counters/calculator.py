"""
Two-sample value calculation for performance counters.

Given the retained reference sample and the newest raw read, compute the
value a performance monitor would display for the counter type: a plain
reading for gauges, a per-second rate for counts, a percentage for timers
and fractions, an average length for queues.
"""

from __future__ import annotations

from .types import CounterType, RawSample

TICKS_PER_SECOND_100NS = 10_000_000

_INSTANT_TYPES = frozenset({
    CounterType.NUMBER_OF_ITEMS_HEX32,
    CounterType.NUMBER_OF_ITEMS_HEX64,
    CounterType.NUMBER_OF_ITEMS32,
    CounterType.NUMBER_OF_ITEMS64,
    # Base counters are only meaningful next to their fraction counter
    CounterType.SAMPLE_BASE,
    CounterType.AVERAGE_BASE,
    CounterType.RAW_BASE,
    CounterType.LARGE_RAW_BASE,
    CounterType.MULTI_BASE,
})

_RATE_TYPES = frozenset({
    CounterType.SAMPLE_COUNTER,
    CounterType.RATE_OF_COUNTS_PER_SECOND32,
    CounterType.RATE_OF_COUNTS_PER_SECOND64,
})

_DELTA_TYPES = frozenset({
    CounterType.COUNTER_DELTA32,
    CounterType.COUNTER_DELTA64,
})

_RAW_FRACTION_TYPES = frozenset({
    CounterType.RAW_FRACTION,
    CounterType.LARGE_RAW_FRACTION,
})

_QUEUE_LENGTH_TYPES = frozenset({
    CounterType.QUEUE_LENGTH32,
    CounterType.QUEUE_LENGTH64,
})


def _ratio(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return numerator / denominator


def _multi_timer(old: RawSample, new: RawSample, elapsed: int, inverse: bool) -> float:
    # base_value is the number of timers that were sampled
    timers = new.base_value
    if timers <= 0 or elapsed <= 0:
        return 0.0
    busy = (new.raw_value - old.raw_value) / elapsed
    if inverse:
        return max(0.0, 100.0 * (timers - busy))
    return 100.0 * busy / timers


def calculate(old: RawSample, new: RawSample) -> float:
    """Compute the counter value from a reference sample and a newer one."""
    counter_type = new.counter_type

    if counter_type in _INSTANT_TYPES:
        return float(new.raw_value)

    if counter_type in _DELTA_TYPES:
        return float(new.raw_value - old.raw_value)

    if counter_type in _RATE_TYPES:
        if new.system_frequency <= 0:
            return 0.0
        elapsed = (new.timestamp - old.timestamp) / new.system_frequency
        return _ratio(new.raw_value - old.raw_value, elapsed)

    if counter_type in _QUEUE_LENGTH_TYPES:
        return _ratio(new.raw_value - old.raw_value, new.timestamp - old.timestamp)

    if counter_type == CounterType.QUEUE_LENGTH_100NS:
        return _ratio(new.raw_value - old.raw_value, new.timestamp_100nsec - old.timestamp_100nsec)

    if counter_type == CounterType.COUNTER_TIMER:
        return 100.0 * _ratio(new.raw_value - old.raw_value, new.timestamp - old.timestamp)

    if counter_type == CounterType.COUNTER_TIMER_INVERSE:
        elapsed = new.timestamp - old.timestamp
        if elapsed <= 0:
            return 0.0
        return max(0.0, 100.0 * (1.0 - (new.raw_value - old.raw_value) / elapsed))

    if counter_type == CounterType.TIMER_100NS:
        return 100.0 * _ratio(
            new.raw_value - old.raw_value,
            new.timestamp_100nsec - old.timestamp_100nsec,
        )

    if counter_type == CounterType.TIMER_100NS_INVERSE:
        elapsed = new.timestamp_100nsec - old.timestamp_100nsec
        if elapsed <= 0:
            return 0.0
        return max(0.0, 100.0 * (1.0 - (new.raw_value - old.raw_value) / elapsed))

    if counter_type == CounterType.MULTI_TIMER:
        return _multi_timer(old, new, new.timestamp - old.timestamp, inverse=False)

    if counter_type == CounterType.MULTI_TIMER_INVERSE:
        return _multi_timer(old, new, new.timestamp - old.timestamp, inverse=True)

    if counter_type == CounterType.MULTI_TIMER_100NS:
        return _multi_timer(old, new, new.timestamp_100nsec - old.timestamp_100nsec, inverse=False)

    if counter_type == CounterType.MULTI_TIMER_100NS_INVERSE:
        return _multi_timer(old, new, new.timestamp_100nsec - old.timestamp_100nsec, inverse=True)

    if counter_type in _RAW_FRACTION_TYPES:
        return 100.0 * _ratio(new.raw_value, new.base_value)

    if counter_type == CounterType.SAMPLE_FRACTION:
        return 100.0 * _ratio(new.raw_value - old.raw_value, new.base_value - old.base_value)

    if counter_type == CounterType.AVERAGE_COUNT64:
        return _ratio(new.raw_value - old.raw_value, new.base_value - old.base_value)

    if counter_type == CounterType.AVERAGE_TIMER32:
        if new.counter_frequency <= 0:
            return 0.0
        seconds = (new.raw_value - old.raw_value) / new.counter_frequency
        return _ratio(seconds, new.base_value - old.base_value)

    if counter_type == CounterType.ELAPSED_TIME:
        if new.system_frequency <= 0:
            return 0.0
        return max(0.0, (new.timestamp - new.raw_value) / new.system_frequency)

    raise ValueError(f"Unsupported counter type: {counter_type!r}")
