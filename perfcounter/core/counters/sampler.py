"""
Rate sampler: turns successive raw counter reads into a displayable value.

Performance counters want about a second between the two samples of a
delta. Callers such as log renderers read far more often than that, so the
sampler keeps a (previous, current) reference pair and only advances it once
more than half a second has passed since the last rotation. Every call still
computes a fresh value from the previous reference and the newest raw read.

Not thread-safe: one sampler per thread, or lock around value().
"""

from __future__ import annotations

import logging
from typing import Optional

from .calculator import calculate
from .errors import SamplerClosedError
from .handle import CounterHandle
from .instance import resolve_process_instance
from .provider import CounterProvider, default_provider
from .types import EMPTY_SAMPLE, RawSample

log = logging.getLogger(__name__)

# Half of the recommended one second between NextSample reads
ROTATION_THRESHOLD_SECONDS = 0.5


class RateSampler:
    def __init__(self, provider: Optional[CounterProvider] = None) -> None:
        self._provider = provider
        self._handle: Optional[CounterHandle] = None
        self._previous: RawSample = EMPTY_SAMPLE
        self._current: RawSample = EMPTY_SAMPLE

    @property
    def provider(self) -> CounterProvider:
        if self._provider is None:
            self._provider = default_provider()
        return self._provider

    @property
    def previous_sample(self) -> RawSample:
        return self._previous

    @property
    def current_sample(self) -> RawSample:
        return self._current

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def instance(self) -> Optional[str]:
        """Instance the counter was opened with (after auto-detection)."""
        return self._handle.instance if self._handle else None

    def open(
        self,
        category: str,
        counter: str,
        instance: Optional[str] = None,
        machine_name: Optional[str] = None,
    ) -> None:
        """
        Open the counter and, for the local machine, take a warm-up sample so
        the first value() already has a reference point.
        """
        self.close()
        self._handle = CounterHandle.open(self.provider, category, counter, instance, machine_name)
        log.debug(
            f"Opened counter {category}\\{counter} instance={self._handle.instance!r} machine={machine_name!r}"
        )
        if not machine_name:
            try:
                self.value()
            except Exception:
                self.close()
                raise

    def instance_name(self, category: str) -> str:
        """Instance name of the current process in category, "" if not found."""
        return resolve_process_instance(self.provider, category)

    def value(self) -> float:
        if self._handle is None:
            raise SamplerClosedError("Sampler is not open")

        sample = self._handle.next_raw_sample()
        if sample.system_frequency != 0:
            elapsed = (sample.timestamp - self._current.timestamp) / sample.system_frequency
            if self._current.is_empty or abs(elapsed) > ROTATION_THRESHOLD_SECONDS:
                self._rotate(sample)
                if self._previous.is_empty:
                    self._previous = sample
        else:
            self._rotate(sample)

        return calculate(self._previous, sample)

    def _rotate(self, sample: RawSample) -> None:
        self._previous, self._current = self._current, sample

    def close(self) -> None:
        """Release the counter and forget both reference samples. Idempotent."""
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.close()
        self._previous = EMPTY_SAMPLE
        self._current = EMPTY_SAMPLE

    def __enter__(self) -> "RateSampler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
