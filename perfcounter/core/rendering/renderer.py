"""
Performance counter values in log records.

PerformanceCounterRenderer is the host-side wrapper around RateSampler:
initialize() opens the counter, render_value() is called once per log record,
close() releases it. PerformanceCounterFilter plugs a renderer into the
standard logging pipeline by stamping each record with the formatted value:

    renderer = PerformanceCounterRenderer(CounterOptions(category="Process", counter="% Processor Time", name="cpu"))
    renderer.initialize()
    handler.addFilter(PerformanceCounterFilter(renderer))
    handler.setFormatter(logging.Formatter("%(message)s cpu=%(cpu)s"))
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from perfcounter.core.counters.errors import CounterConfigurationError
from perfcounter.core.counters.provider import CounterProvider
from perfcounter.core.counters.sampler import RateSampler
from perfcounter.shared.config import RESERVED_RECORD_ATTRIBUTES, CounterOptions

log = logging.getLogger(__name__)


class PerformanceCounterRenderer:
    def __init__(
        self,
        options: Union[CounterOptions, Mapping[str, Any]],
        provider: Optional[CounterProvider] = None,
    ) -> None:
        if not isinstance(options, CounterOptions):
            try:
                options = CounterOptions.model_validate(options)
            except ValidationError as e:
                raise CounterConfigurationError(f"Invalid performance counter options: {e}") from e
        self.options = options
        self._sampler = RateSampler(provider)

    @property
    def sampler(self) -> RateSampler:
        return self._sampler

    def initialize(self) -> None:
        o = self.options
        self._sampler.open(o.category, o.counter, o.instance, o.machine_name)
        log.info(
            f"Performance counter {o.category}\\{o.counter} opened "
            f"(instance={self._sampler.instance!r}, machine={o.machine_name or 'local'})"
        )

    def close(self) -> None:
        self._sampler.close()

    def render_value(self, record: Optional[logging.LogRecord] = None) -> float:
        return self._sampler.value()

    def get_raw_value(self, record: Optional[logging.LogRecord] = None) -> Any:
        """Unformatted value for structured output."""
        return self.render_value(record)

    def render(self, record: Optional[logging.LogRecord] = None) -> str:
        return format(self.render_value(record), self.options.format)


class PerformanceCounterFilter(logging.Filter):
    """
    Adds the rendered counter value to every record as record.<attribute>.

    Never drops a record. When rendering fails the attribute is "" and a
    warning is logged.
    """

    def __init__(self, renderer: PerformanceCounterRenderer, attribute: Optional[str] = None) -> None:
        super().__init__()
        self.renderer = renderer
        self.attribute = attribute or renderer.options.name
        if self.attribute in RESERVED_RECORD_ATTRIBUTES:
            raise CounterConfigurationError(f"'{self.attribute}' is a built-in log record attribute")
        self._local = threading.local()
        # RateSampler is not thread-safe
        self._lock = threading.Lock()

    def filter(self, record: logging.LogRecord) -> bool:
        # The warning below may come back through this filter
        if getattr(self._local, "rendering", False):
            setattr(record, self.attribute, "")
            return True

        self._local.rendering = True
        try:
            with self._lock:
                text = self.renderer.render(record)
            setattr(record, self.attribute, text)
        except Exception as e:
            setattr(record, self.attribute, "")
            o = self.renderer.options
            log.warning(f"Failed to render performance counter {o.category}\\{o.counter}: {e}")
        finally:
            self._local.rendering = False
        return True
