from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class CounterType(IntEnum):
    """Performance counter type codes (PERF_* values from winperf.h)."""

    NUMBER_OF_ITEMS_HEX32 = 0x00000000
    NUMBER_OF_ITEMS_HEX64 = 0x00000100
    NUMBER_OF_ITEMS32 = 0x00010000
    NUMBER_OF_ITEMS64 = 0x00010100
    COUNTER_DELTA32 = 0x00400400
    COUNTER_DELTA64 = 0x00400500
    SAMPLE_COUNTER = 0x00410400
    QUEUE_LENGTH32 = 0x00450400
    QUEUE_LENGTH64 = 0x00450500
    QUEUE_LENGTH_100NS = 0x00550500
    RATE_OF_COUNTS_PER_SECOND32 = 0x10410400
    RATE_OF_COUNTS_PER_SECOND64 = 0x10410500
    RAW_FRACTION = 0x20020400
    LARGE_RAW_FRACTION = 0x20020500
    COUNTER_TIMER = 0x20410500
    TIMER_100NS = 0x20510500
    SAMPLE_FRACTION = 0x20C20400
    COUNTER_TIMER_INVERSE = 0x21410500
    TIMER_100NS_INVERSE = 0x21510500
    MULTI_TIMER = 0x22410500
    MULTI_TIMER_100NS = 0x22510500
    MULTI_TIMER_INVERSE = 0x23410500
    MULTI_TIMER_100NS_INVERSE = 0x23510500
    AVERAGE_TIMER32 = 0x30020400
    ELAPSED_TIME = 0x30240500
    AVERAGE_COUNT64 = 0x40020500
    SAMPLE_BASE = 0x40030401
    AVERAGE_BASE = 0x40030402
    RAW_BASE = 0x40030403
    LARGE_RAW_BASE = 0x40030500
    MULTI_BASE = 0x42030500


@dataclass(frozen=True)
class RawSample:
    """
    One reading from a performance counter.

    timestamp is expressed in system_frequency ticks per second. A
    system_frequency of 0 marks a counter that is not frequency based
    (an instantaneous gauge).
    """
    raw_value: int = 0
    base_value: int = 0
    timestamp: int = 0
    timestamp_100nsec: int = 0
    system_frequency: int = 0
    counter_frequency: int = 0
    counter_type: CounterType = CounterType.NUMBER_OF_ITEMS_HEX32

    @property
    def is_empty(self) -> bool:
        return self == EMPTY_SAMPLE


# "No sample yet"
EMPTY_SAMPLE = RawSample()
