from __future__ import annotations

import logging
import sys
from typing import Iterable, Literal, Optional, Protocol

from .types import RawSample

log = logging.getLogger(__name__)

ProviderName = Literal["auto", "pdh", "psutil"]


class CounterConnection(Protocol):
    """An open connection to one counter (category, counter, instance, machine)."""

    def next_sample(self) -> RawSample:
        ...

    def close(self) -> None:
        ...


class CounterProvider(Protocol):
    """Backend that opens counters and lists category instances."""

    def open_counter(
        self,
        category: str,
        counter: str,
        instance: str,
        machine_name: Optional[str] = None,
        read_only: bool = True,
    ) -> CounterConnection:
        ...

    def instance_names(self, category: str, machine_name: Optional[str] = None) -> list[str]:
        ...


def unique_instance_names(names: Iterable[str]) -> list[str]:
    """Number repeated instance names: python, python#1, python#2."""
    seen: dict[str, int] = {}
    unique = []
    for name in names:
        count = seen.get(name, 0)
        seen[name] = count + 1
        unique.append(name if count == 0 else f"{name}#{count}")
    return unique


def default_provider(name: ProviderName = "auto") -> CounterProvider:
    """
    Pick a counter backend.

    "auto" uses Windows PDH when pdh.dll can be loaded and falls back to the
    psutil provider everywhere else.
    """
    if name == "psutil":
        from .psutil_provider import PsutilCounterProvider
        return PsutilCounterProvider()

    if name == "pdh" or sys.platform == "win32":
        from .pdh_provider import PdhCounterProvider, pdh_available
        if pdh_available():
            return PdhCounterProvider()
        if name == "pdh":
            raise RuntimeError("PDH provider requested but pdh.dll is not available")
        log.info("PDH not available, using psutil counter provider")

    from .psutil_provider import PsutilCounterProvider
    return PsutilCounterProvider()
