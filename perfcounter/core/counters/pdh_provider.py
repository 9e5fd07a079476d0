"""
Counter provider backed by the Windows Performance Data Helper (pdh.dll).

Counter path format:
  \\Category(instance)\\Counter            (local machine)
  \\\\machine\\Category(instance)\\Counter (remote machine)
  Single-instance categories omit "(instance)".

PDH call pattern per counter:
  1. PdhOpenQueryW - one query per counter, owned by the connection
  2. PdhAddEnglishCounterW (PdhAddCounterW for localized names)
  3. PdhGetCounterTimeBase - frequency of the counter's time stamps (0 if none)
  4. PdhCollectQueryData + PdhGetRawCounterValue - one raw sample per read
  5. PdhCloseQuery - release

Instance enumeration uses PdhEnumObjectItemsW. PDH_MORE_DATA is expected on
the size query; duplicate instance names (several processes with the same
executable) are numbered name, name#1, name#2 like the Performance Monitor.
"""

from __future__ import annotations

import ctypes
import logging
from ctypes import wintypes
from typing import Optional

from .calculator import TICKS_PER_SECOND_100NS
from .errors import CounterConfigurationError, CounterReadError
from .provider import unique_instance_names
from .types import CounterType, RawSample

log = logging.getLogger(__name__)

# PDH constants
ERROR_SUCCESS = 0
PDH_MORE_DATA = 0x800007D2  # expected during buffer size queries
PDH_CSTATUS_VALID_DATA = 0x00000000
PDH_CSTATUS_NEW_DATA = 0x00000001
PERF_DETAIL_WIZARD = 400

# Load PDH DLL
try:
    pdh_dll = ctypes.windll.pdh
    _PDH_AVAILABLE = True
except (AttributeError, OSError):
    pdh_dll = None
    _PDH_AVAILABLE = False

# Counter types whose time stamp is the second raw value, in PdhGetCounterTimeBase ticks
_PERF_TICK_TYPES = frozenset({
    CounterType.SAMPLE_COUNTER,
    CounterType.QUEUE_LENGTH32,
    CounterType.QUEUE_LENGTH64,
    CounterType.RATE_OF_COUNTS_PER_SECOND32,
    CounterType.RATE_OF_COUNTS_PER_SECOND64,
    CounterType.COUNTER_TIMER,
    CounterType.COUNTER_TIMER_INVERSE,
    CounterType.MULTI_TIMER,
    CounterType.MULTI_TIMER_INVERSE,
    CounterType.ELAPSED_TIME,
})

_100NS_TYPES = frozenset({
    CounterType.QUEUE_LENGTH_100NS,
    CounterType.TIMER_100NS,
    CounterType.TIMER_100NS_INVERSE,
    CounterType.MULTI_TIMER_100NS,
    CounterType.MULTI_TIMER_100NS_INVERSE,
})

_MULTI_TIMER_TYPES = frozenset({
    CounterType.MULTI_TIMER,
    CounterType.MULTI_TIMER_INVERSE,
    CounterType.MULTI_TIMER_100NS,
    CounterType.MULTI_TIMER_100NS_INVERSE,
})

# Single-read counters: no time base, every read is used as is
_INSTANT_TYPES = frozenset({
    CounterType.NUMBER_OF_ITEMS_HEX32,
    CounterType.NUMBER_OF_ITEMS_HEX64,
    CounterType.NUMBER_OF_ITEMS32,
    CounterType.NUMBER_OF_ITEMS64,
    CounterType.RAW_FRACTION,
    CounterType.LARGE_RAW_FRACTION,
    CounterType.SAMPLE_BASE,
    CounterType.AVERAGE_BASE,
    CounterType.RAW_BASE,
    CounterType.LARGE_RAW_BASE,
    CounterType.MULTI_BASE,
})


class PDH_RAW_COUNTER(ctypes.Structure):
    _fields_ = [
        ("CStatus", wintypes.DWORD),
        ("TimeStamp", wintypes.FILETIME),
        ("FirstValue", ctypes.c_longlong),
        ("SecondValue", ctypes.c_longlong),
        ("MultiCount", wintypes.DWORD),
    ]


def pdh_available() -> bool:
    return _PDH_AVAILABLE


def _unsigned(result: int) -> int:
    # Use bitwise AND for robust signed/unsigned comparison
    return result & 0xFFFFFFFF


def _check_pdh_result(result: int, func_name: str, error_cls: type[Exception]) -> None:
    """Check PDH result code and raise error_cls if not success."""
    code = _unsigned(result)
    if code != ERROR_SUCCESS:
        raise error_cls(f"PDH {func_name} failed with error code {result} ({hex(code)})")


def _parse_multi_sz(buffer: ctypes.Array, length: int) -> list[str]:
    """Split a MULTI_SZ buffer (null separated, double null terminated)."""
    items = []
    for item in ctypes.wstring_at(buffer, length).split("\0"):
        if not item:
            break
        items.append(item)
    return items


def make_counter_path(
    category: str,
    counter: str,
    instance: str = "",
    machine_name: Optional[str] = None,
) -> str:
    path = f"\\{category}({instance})\\{counter}" if instance else f"\\{category}\\{counter}"
    if machine_name:
        machine = machine_name.lstrip("\\")
        path = f"\\\\{machine}{path}"
    return path


def _filetime_to_int(ft: wintypes.FILETIME) -> int:
    return (ft.dwHighDateTime << 32) | ft.dwLowDateTime


def _to_raw_sample(counter_type: CounterType, raw: PDH_RAW_COUNTER, time_base: int) -> RawSample:
    filetime = _filetime_to_int(raw.TimeStamp)
    # Number of timers sampled, only set for the multi timer types
    multi_count = raw.MultiCount if counter_type in _MULTI_TIMER_TYPES else 0

    if counter_type in _PERF_TICK_TYPES:
        return RawSample(
            raw_value=raw.FirstValue,
            base_value=multi_count,
            timestamp=raw.SecondValue,
            timestamp_100nsec=filetime,
            system_frequency=time_base,
            counter_type=counter_type,
        )

    if counter_type in _100NS_TYPES:
        return RawSample(
            raw_value=raw.FirstValue,
            base_value=multi_count,
            timestamp=filetime,
            timestamp_100nsec=filetime,
            system_frequency=TICKS_PER_SECOND_100NS,
            counter_type=counter_type,
        )

    if counter_type in _INSTANT_TYPES:
        return RawSample(
            raw_value=raw.FirstValue,
            base_value=raw.SecondValue,
            timestamp=filetime,
            timestamp_100nsec=filetime,
            counter_type=counter_type,
        )

    # Deltas, sample fractions and averages: SecondValue is the base. The
    # read time keeps them on the sampler's half-second reference window.
    return RawSample(
        raw_value=raw.FirstValue,
        base_value=raw.SecondValue,
        timestamp=filetime,
        timestamp_100nsec=filetime,
        system_frequency=TICKS_PER_SECOND_100NS,
        counter_frequency=time_base,
        counter_type=counter_type,
    )


class PdhCounterConnection:
    """One PDH query holding exactly one counter."""

    def __init__(self, query_handle: wintypes.HANDLE, counter_handle: wintypes.HANDLE, path: str, time_base: int) -> None:
        self._query_handle: Optional[wintypes.HANDLE] = query_handle
        self._counter_handle = counter_handle
        self._time_base = time_base
        self.path = path

    def next_sample(self) -> RawSample:
        if not self._query_handle:
            raise CounterReadError(f"PDH query for {self.path} is closed")

        result = pdh_dll.PdhCollectQueryData(self._query_handle)
        _check_pdh_result(result, "PdhCollectQueryData", CounterReadError)

        counter_type = wintypes.DWORD()
        raw = PDH_RAW_COUNTER()
        result = pdh_dll.PdhGetRawCounterValue(
            self._counter_handle,
            ctypes.byref(counter_type),
            ctypes.byref(raw),
        )
        _check_pdh_result(result, "PdhGetRawCounterValue", CounterReadError)

        # PDH_CSTATUS_NO_INSTANCE etc. - the instance went away (process exited)
        if raw.CStatus not in (PDH_CSTATUS_VALID_DATA, PDH_CSTATUS_NEW_DATA):
            raise CounterReadError(f"Counter {self.path} returned status {hex(raw.CStatus)}")

        try:
            perf_type = CounterType(counter_type.value)
        except ValueError:
            raise CounterReadError(f"Counter {self.path} has unsupported type {hex(counter_type.value)}") from None

        return _to_raw_sample(perf_type, raw, self._time_base)

    def close(self) -> None:
        """Close PDH query; closing also frees its counters."""
        if self._query_handle:
            result = pdh_dll.PdhCloseQuery(self._query_handle)
            if _unsigned(result) != ERROR_SUCCESS:
                log.debug(f"PdhCloseQuery for {self.path} returned {hex(_unsigned(result))}")
            self._query_handle = None


class PdhCounterProvider:
    """Performance counters through pdh.dll, local or remote."""

    def __init__(self) -> None:
        if not _PDH_AVAILABLE:
            raise RuntimeError("PDH DLL not available")

    def open_counter(
        self,
        category: str,
        counter: str,
        instance: str,
        machine_name: Optional[str] = None,
        read_only: bool = True,
    ) -> PdhCounterConnection:
        # PDH counters are always read-only
        path = make_counter_path(category, counter, instance, machine_name)

        query_handle = wintypes.HANDLE()
        result = pdh_dll.PdhOpenQueryW(None, 0, ctypes.byref(query_handle))
        _check_pdh_result(result, "PdhOpenQueryW", CounterConfigurationError)

        counter_handle = wintypes.HANDLE()
        result = pdh_dll.PdhAddEnglishCounterW(query_handle, path, 0, ctypes.byref(counter_handle))
        if _unsigned(result) != ERROR_SUCCESS:
            # Not an English name, try the localized one
            result = pdh_dll.PdhAddCounterW(query_handle, path, 0, ctypes.byref(counter_handle))
        if _unsigned(result) != ERROR_SUCCESS:
            pdh_dll.PdhCloseQuery(query_handle)
            raise CounterConfigurationError(
                f"Cannot open performance counter {path}: error {hex(_unsigned(result))}"
            )

        time_base = ctypes.c_longlong(0)
        result = pdh_dll.PdhGetCounterTimeBase(counter_handle, ctypes.byref(time_base))
        if _unsigned(result) != ERROR_SUCCESS:
            time_base.value = 0

        log.debug(f"Opened PDH counter {path} (time base {time_base.value})")
        return PdhCounterConnection(query_handle, counter_handle, path, time_base.value)

    def instance_names(self, category: str, machine_name: Optional[str] = None) -> list[str]:
        """Enumerate instances of a category, refreshing PDH's cached object list first."""
        refresh_size = wintypes.DWORD(0)
        pdh_dll.PdhEnumObjectsW(None, machine_name, None, ctypes.byref(refresh_size), PERF_DETAIL_WIZARD, True)

        counter_len = wintypes.DWORD(0)
        instance_len = wintypes.DWORD(0)
        result = pdh_dll.PdhEnumObjectItemsW(
            None, machine_name, category,
            None, ctypes.byref(counter_len),
            None, ctypes.byref(instance_len),
            PERF_DETAIL_WIZARD, 0,
        )
        code = _unsigned(result)
        if code == ERROR_SUCCESS:
            # Single-instance category
            return []
        if code != PDH_MORE_DATA:
            raise CounterConfigurationError(
                f"PdhEnumObjectItemsW for category {category!r} failed: {hex(code)}"
            )

        # Instances can appear between the size query and the real call
        max_retries = 5
        for attempt in range(max_retries):
            counter_buffer = ctypes.create_unicode_buffer(max(counter_len.value, 1))
            instance_buffer = ctypes.create_unicode_buffer(max(instance_len.value, 1))
            result = pdh_dll.PdhEnumObjectItemsW(
                None, machine_name, category,
                counter_buffer, ctypes.byref(counter_len),
                instance_buffer, ctypes.byref(instance_len),
                PERF_DETAIL_WIZARD, 0,
            )
            code = _unsigned(result)
            if code == ERROR_SUCCESS:
                names = _parse_multi_sz(instance_buffer, instance_len.value)
                return unique_instance_names(names)
            if code != PDH_MORE_DATA:
                break
            log.debug(f"Instance buffer too small (attempt {attempt + 1}/{max_retries})")

        raise CounterConfigurationError(
            f"PdhEnumObjectItemsW for category {category!r} failed: {hex(code)}"
        )
