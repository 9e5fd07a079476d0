from __future__ import annotations

import logging
from typing import Optional

from .errors import CounterConfigurationError, CounterReadError, PerfCounterError, SamplerClosedError
from .instance import is_process_category, resolve_process_instance
from .provider import CounterConnection, CounterProvider
from .types import RawSample

log = logging.getLogger(__name__)


class CounterHandle:
    """Owns exactly one counter connection."""

    def __init__(self, connection: CounterConnection, category: str, counter: str, instance: str, machine_name: Optional[str]) -> None:
        self._connection: Optional[CounterConnection] = connection
        self.category = category
        self.counter = counter
        self.instance = instance
        self.machine_name = machine_name

    @classmethod
    def open(
        cls,
        provider: CounterProvider,
        category: str,
        counter: str,
        instance: Optional[str] = None,
        machine_name: Optional[str] = None,
        read_only: bool = True,
    ) -> "CounterHandle":
        """
        Open a counter.

        With a machine name the instance is used as given (default ""). For
        the local machine an empty instance of the Process category is
        resolved to the instance of the current process.

        Raises CounterConfigurationError when the category or counter does
        not exist or access is denied.
        """
        if not category or not counter:
            raise CounterConfigurationError("Both category and counter are required")

        resolved = instance or ""
        if not resolved and not machine_name and is_process_category(category):
            resolved = resolve_process_instance(provider, category)
            if not resolved:
                log.warning(f"PerformanceCounter - Using default instance for {category}\\{counter}")

        try:
            connection = provider.open_counter(category, counter, resolved, machine_name, read_only)
        except PerfCounterError:
            raise
        except (OSError, ValueError) as e:
            raise CounterConfigurationError(f"Cannot open counter {category}\\{counter}: {e}") from e

        return cls(connection, category, counter, resolved, machine_name)

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    def next_raw_sample(self) -> RawSample:
        if self._connection is None:
            raise SamplerClosedError(f"Counter {self.category}\\{self.counter} is closed")
        try:
            return self._connection.next_sample()
        except PerfCounterError:
            raise
        except OSError as e:
            raise CounterReadError(f"Reading {self.category}\\{self.counter} failed: {e}") from e

    def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.close()

    def __enter__(self) -> "CounterHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
