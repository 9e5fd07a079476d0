"""
Cross-platform counter provider built on psutil.

Synthesizes the common Windows performance counter categories so the same
counter names work on every OS:

  Process    ID Process, % Processor Time, % User Time, % Privileged Time,
             Working Set, Virtual Bytes, Thread Count, Handle Count,
             IO Read Bytes/sec, IO Write Bytes/sec (where psutil supports them)
  Processor  % Processor Time, % User Time, % Privileged Time, % Idle Time
             (instances _Total, 0..n-1)
  Memory     Available Bytes, Committed Bytes, % Committed Bytes In Use
  System     Processes, Context Switches/sec, System Up Time

Process instance names are executable names without ".exe"; repeated names
are numbered by ascending pid (python, python#1, ...). Only the local machine
is supported.
"""

from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import psutil

from .calculator import TICKS_PER_SECOND_100NS
from .errors import CounterConfigurationError, CounterReadError
from .provider import unique_instance_names
from .types import CounterType, RawSample

log = logging.getLogger(__name__)

_UNBOUND = object()
_LOCAL_MACHINE_NAMES = {".", "localhost", "127.0.0.1"}
_SNAPSHOT_MAX_AGE_SECONDS = 1.0


def _now_100ns() -> int:
    return time.monotonic_ns() // 100


def _gauge(value: float, counter_type: CounterType = CounterType.NUMBER_OF_ITEMS64) -> RawSample:
    now = _now_100ns()
    return RawSample(raw_value=int(value), timestamp=now, timestamp_100nsec=now, counter_type=counter_type)


def _timer(seconds: float, counter_type: CounterType = CounterType.TIMER_100NS) -> RawSample:
    now = _now_100ns()
    return RawSample(
        raw_value=int(seconds * TICKS_PER_SECOND_100NS),
        timestamp=now,
        timestamp_100nsec=now,
        system_frequency=TICKS_PER_SECOND_100NS,
        counter_type=counter_type,
    )


def _rate(count: int, counter_type: CounterType = CounterType.RATE_OF_COUNTS_PER_SECOND64) -> RawSample:
    now = _now_100ns()
    return RawSample(
        raw_value=int(count),
        timestamp=now,
        timestamp_100nsec=now,
        system_frequency=TICKS_PER_SECOND_100NS,
        counter_type=counter_type,
    )


def _handle_count(proc: psutil.Process) -> RawSample:
    if hasattr(proc, "num_handles"):
        return _gauge(proc.num_handles(), CounterType.NUMBER_OF_ITEMS32)
    return _gauge(proc.num_fds(), CounterType.NUMBER_OF_ITEMS32)


def _process_counters() -> dict[str, Callable[[psutil.Process], RawSample]]:
    counters: dict[str, Callable[[psutil.Process], RawSample]] = {
        "ID Process": lambda p: _gauge(p.pid, CounterType.NUMBER_OF_ITEMS32),
        "% Processor Time": lambda p: _timer(sum(p.cpu_times()[:2])),
        "% User Time": lambda p: _timer(p.cpu_times().user),
        "% Privileged Time": lambda p: _timer(p.cpu_times().system),
        "Working Set": lambda p: _gauge(p.memory_info().rss),
        "Virtual Bytes": lambda p: _gauge(p.memory_info().vms),
        "Thread Count": lambda p: _gauge(p.num_threads(), CounterType.NUMBER_OF_ITEMS32),
        "Handle Count": _handle_count,
    }
    # Not available on macOS
    if hasattr(psutil.Process, "io_counters"):
        counters["IO Read Bytes/sec"] = lambda p: _rate(p.io_counters().read_bytes)
        counters["IO Write Bytes/sec"] = lambda p: _rate(p.io_counters().write_bytes)
    return counters


def _cpu_times(index: Optional[int]) -> Any:
    """CPU times of one processor, or the average over all of them for _Total."""
    per_cpu = psutil.cpu_times(percpu=True)
    if index is not None:
        if index >= len(per_cpu):
            raise CounterReadError(f"Processor instance {index} does not exist")
        return per_cpu[index]
    total = psutil.cpu_times()
    return type(total)(*(value / len(per_cpu) for value in total))


def _processor_counters() -> dict[str, Callable[[Optional[int]], RawSample]]:
    return {
        "% Processor Time": lambda i: _timer(_cpu_times(i).idle, CounterType.TIMER_100NS_INVERSE),
        "% User Time": lambda i: _timer(_cpu_times(i).user),
        "% Privileged Time": lambda i: _timer(_cpu_times(i).system),
        "% Idle Time": lambda i: _timer(_cpu_times(i).idle),
    }


def _committed_fraction(_: Any) -> RawSample:
    vm = psutil.virtual_memory()
    now = _now_100ns()
    return RawSample(
        raw_value=int(vm.used),
        base_value=int(vm.total),
        timestamp=now,
        timestamp_100nsec=now,
        counter_type=CounterType.RAW_FRACTION,
    )


def _memory_counters() -> dict[str, Callable[[Any], RawSample]]:
    return {
        "Available Bytes": lambda _: _gauge(psutil.virtual_memory().available),
        "Committed Bytes": lambda _: _gauge(psutil.virtual_memory().used),
        "% Committed Bytes In Use": _committed_fraction,
    }


def _system_up_time(_: Any) -> RawSample:
    # Wall clock: boot_time() is seconds since the epoch
    now = time.time_ns() // 100
    return RawSample(
        raw_value=int(psutil.boot_time() * TICKS_PER_SECOND_100NS),
        timestamp=now,
        timestamp_100nsec=now,
        system_frequency=TICKS_PER_SECOND_100NS,
        counter_type=CounterType.ELAPSED_TIME,
    )


def _system_counters() -> dict[str, Callable[[Any], RawSample]]:
    return {
        "Processes": lambda _: _gauge(len(psutil.pids()), CounterType.NUMBER_OF_ITEMS32),
        "Context Switches/sec": lambda _: _rate(
            psutil.cpu_stats().ctx_switches, CounterType.RATE_OF_COUNTS_PER_SECOND32
        ),
        "System Up Time": _system_up_time,
    }


def process_instance_base_name(name: str) -> str:
    """Executable name as a Process instance name (no .exe suffix)."""
    if name.lower().endswith(".exe"):
        return name[:-4]
    return name


@dataclass
class _Category:
    name: str
    counters: dict[str, Callable[[Any], RawSample]]
    bind: Callable[[str], Any]
    instances: Optional[Callable[[], list[str]]] = None
    lookup: dict[str, str] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self.lookup = {name.casefold(): name for name in self.counters}


class PsutilCounterConnection:
    """
    A counter read through psutil.

    The instance is bound lazily on the first read (a process instance binds
    to its pid); afterwards a vanished target surfaces as CounterReadError.
    """

    def __init__(self, path: str, read: Callable[[Any], RawSample], bind: Callable[[], Any]) -> None:
        self.path = path
        self._read = read
        self._bind = bind
        self._target: Any = _UNBOUND
        self._closed = False

    def next_sample(self) -> RawSample:
        if self._closed:
            raise CounterReadError(f"Counter {self.path} is closed")
        try:
            if self._target is _UNBOUND:
                self._target = self._bind()
            return self._read(self._target)
        except psutil.NoSuchProcess as e:
            raise CounterReadError(f"Instance of {self.path} no longer exists: {e}") from e
        except psutil.AccessDenied as e:
            raise CounterReadError(f"Access denied reading {self.path}: {e}") from e

    def close(self) -> None:
        self._closed = True
        self._target = _UNBOUND


class PsutilCounterProvider:
    """Windows-style performance counters synthesized from psutil (local machine only)."""

    def __init__(self) -> None:
        self._categories = {
            c.name.casefold(): c
            for c in (
                _Category("Process", _process_counters(), self._bind_process, self._process_instance_names),
                _Category("Processor", _processor_counters(), self._bind_processor, self._processor_instance_names),
                _Category("Memory", _memory_counters(), self._bind_single),
                _Category("System", _system_counters(), self._bind_single),
            )
        }
        # instance name -> pid, from the latest enumeration
        self._process_snapshot: dict[str, int] = {}
        self._snapshot_at = float("-inf")

    def categories(self) -> list[str]:
        return [c.name for c in self._categories.values()]

    def _category(self, category: str) -> _Category:
        cat = self._categories.get(category.casefold())
        if cat is None:
            raise CounterConfigurationError(f"Category '{category}' does not exist")
        return cat

    @staticmethod
    def _check_local(machine_name: Optional[str]) -> None:
        if not machine_name:
            return
        name = machine_name.lstrip("\\").lower()
        if name in _LOCAL_MACHINE_NAMES or name == socket.gethostname().lower():
            return
        raise CounterConfigurationError(
            f"Remote machine '{machine_name}' is not supported by the psutil counter provider"
        )

    def open_counter(
        self,
        category: str,
        counter: str,
        instance: str,
        machine_name: Optional[str] = None,
        read_only: bool = True,
    ) -> PsutilCounterConnection:
        self._check_local(machine_name)
        if not read_only:
            raise CounterConfigurationError("psutil counters are read-only")

        cat = self._category(category)
        counter_name = cat.lookup.get(counter.casefold())
        if counter_name is None:
            raise CounterConfigurationError(
                f"Counter '{counter}' does not exist in category '{cat.name}'"
            )

        path = f"\\{cat.name}({instance})\\{counter_name}" if instance else f"\\{cat.name}\\{counter_name}"
        log.debug(f"Opened psutil counter {path}")
        return PsutilCounterConnection(path, cat.counters[counter_name], lambda: cat.bind(instance))

    def instance_names(self, category: str, machine_name: Optional[str] = None) -> list[str]:
        self._check_local(machine_name)
        cat = self._category(category)
        if cat.instances is None:
            return []
        return cat.instances()

    def _scan_processes(self) -> dict[str, int]:
        entries: list[tuple[int, str]] = []
        for p in psutil.process_iter(attrs=["pid", "name"]):
            try:
                name = p.info.get("name")
                if name:
                    entries.append((p.info["pid"], process_instance_base_name(str(name))))
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        entries.sort()
        names = unique_instance_names(name for _, name in entries)
        return {name: pid for name, (pid, _) in zip(names, entries)}

    def _refresh_snapshot(self) -> None:
        self._process_snapshot = self._scan_processes()
        self._snapshot_at = time.monotonic()

    def _process_instance_names(self) -> list[str]:
        self._refresh_snapshot()
        return list(self._process_snapshot)

    def _processor_instance_names(self) -> list[str]:
        count = len(psutil.cpu_times(percpu=True))
        return ["_Total"] + [str(i) for i in range(count)]

    def _bind_process(self, instance: str) -> psutil.Process:
        if not instance:
            raise CounterReadError("Counter is not single instance, an instance name needs to be specified")

        # Instance probes right after an enumeration reuse its snapshot
        if time.monotonic() - self._snapshot_at > _SNAPSHOT_MAX_AGE_SECONDS:
            self._refresh_snapshot()

        key = instance.casefold()
        for name, pid in self._process_snapshot.items():
            if name.casefold() == key:
                return psutil.Process(pid)
        raise CounterReadError(f"Instance '{instance}' does not exist in category 'Process'")

    def _bind_processor(self, instance: str) -> Optional[int]:
        if not instance:
            raise CounterReadError("Counter is not single instance, an instance name needs to be specified")
        if instance.casefold() == "_total":
            return None
        if not instance.isdigit():
            raise CounterReadError(f"Instance '{instance}' does not exist in category 'Processor'")
        return int(instance)

    @staticmethod
    def _bind_single(instance: str) -> None:
        return None
