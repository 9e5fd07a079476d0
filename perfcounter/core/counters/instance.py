"""
Current-process instance detection.

When several processes share an executable name, the Process category
exposes them as python, python#1, python#2, ... and the numbering shifts as
processes come and go. The only reliable way to find our own instance is to
ask each one for its "ID Process" counter and compare it with our pid.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from .errors import ErrorSeverity, classify_exception
from .provider import CounterProvider

log = logging.getLogger(__name__)

PROCESS_CATEGORY = "Process"
PROCESS_ID_COUNTER = "ID Process"


def is_process_category(category: Optional[str]) -> bool:
    return bool(category) and category.casefold() == PROCESS_CATEGORY.casefold()


def resolve_process_instance(provider: CounterProvider, category: str, pid: Optional[int] = None) -> str:
    """
    Return the instance name of the process with the given pid (default: this
    process), or "" when no instance matches or the lookup fails.
    """
    # Imported here: handle.py resolves instances through this module
    from .handle import CounterHandle

    if pid is None:
        pid = os.getpid()

    try:
        for instance in provider.instance_names(category):
            if not instance:
                continue
            with CounterHandle.open(provider, category, PROCESS_ID_COUNTER, instance) as probe:
                if probe.next_raw_sample().raw_value == pid:
                    return instance

        log.debug(f"PerformanceCounter - Failed to auto detect current process instance. ProcessId={pid}")
    except BaseException as ex:
        if classify_exception(ex) is ErrorSeverity.FATAL:
            raise
        log.warning(f"PerformanceCounter - Failed to auto detect current process instance: {ex}", exc_info=True)

    return ""
