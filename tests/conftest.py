from __future__ import annotations

import os
import sys
from typing import Iterable, Optional

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from perfcounter.core.counters.errors import CounterConfigurationError, CounterReadError
from perfcounter.core.counters.types import CounterType, RawSample

FREQ = 1000


def rate_sample(seconds: float, raw: int, freq: int = FREQ) -> RawSample:
    """Cumulative count read at `seconds`, timestamp in `freq` ticks."""
    return RawSample(
        raw_value=raw,
        timestamp=round(seconds * freq),
        system_frequency=freq,
        counter_type=CounterType.RATE_OF_COUNTS_PER_SECOND64,
    )


def gauge_sample(raw: int, seconds: float = 0.0) -> RawSample:
    return RawSample(
        raw_value=raw,
        timestamp=round(seconds * FREQ),
        counter_type=CounterType.NUMBER_OF_ITEMS64,
    )


class ScriptedConnection:
    def __init__(self, samples: Iterable[RawSample]) -> None:
        self._samples = iter(list(samples))
        self.reads = 0
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def next_sample(self) -> RawSample:
        assert not self.closed, "read after close"
        self.reads += 1
        try:
            return next(self._samples)
        except StopIteration:
            raise CounterReadError("instance no longer exists") from None

    def close(self) -> None:
        self.close_calls += 1


class ScriptedProvider:
    """
    In-memory provider: every opened counter replays `samples`; "ID Process"
    probes answer from `instances` (instance name -> pid).
    """

    def __init__(self, samples: Iterable[RawSample] = (), instances: Optional[dict] = None) -> None:
        self.samples = list(samples)
        self.instances = dict(instances or {})
        self.opened: list[tuple] = []
        self.connections: list[ScriptedConnection] = []
        self.probes: list[ScriptedConnection] = []
        self.enumerations = 0
        self.enumeration_error: Optional[BaseException] = None

    def open_counter(self, category, counter, instance, machine_name=None, read_only=True):
        if category == "Missing":
            raise CounterConfigurationError(f"Category '{category}' does not exist")
        self.opened.append((category, counter, instance, machine_name))
        if counter == "ID Process":
            conn = ScriptedConnection([gauge_sample(self.instances[instance])])
            self.probes.append(conn)
        else:
            conn = ScriptedConnection(self.samples)
            self.connections.append(conn)
        return conn

    def instance_names(self, category, machine_name=None):
        self.enumerations += 1
        if self.enumeration_error is not None:
            raise self.enumeration_error
        return list(self.instances)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()
