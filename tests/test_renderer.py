import logging

import pytest
from pydantic import ValidationError

from conftest import ScriptedProvider, gauge_sample, rate_sample
from perfcounter.core.counters.errors import CounterConfigurationError, CounterReadError, SamplerClosedError
from perfcounter.core.rendering.renderer import PerformanceCounterFilter, PerformanceCounterRenderer
from perfcounter.shared.config import CounterOptions


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def make_renderer(samples, **options):
    options.setdefault("category", "Memory")
    options.setdefault("counter", "Available Bytes")
    renderer = PerformanceCounterRenderer(options, ScriptedProvider(samples))
    renderer.initialize()
    return renderer


def test_render_value_returns_float():
    renderer = make_renderer([gauge_sample(1024), gauge_sample(2048)])

    value = renderer.render_value()

    assert isinstance(value, float)
    assert value == 2048.0


def test_raw_value_is_unformatted():
    renderer = make_renderer([gauge_sample(1), gauge_sample(3)])

    assert renderer.get_raw_value(None) == 3.0


def test_render_applies_format_spec():
    renderer = make_renderer([gauge_sample(0), gauge_sample(1234567)], format=",.1f")

    assert renderer.render() == "1,234,567.0"


def test_render_uses_rate_calculation():
    renderer = make_renderer([rate_sample(10.0, 0), rate_sample(10.25, 50)], counter="Page Faults/sec", format=".0f")

    assert renderer.render() == "200"


@pytest.mark.parametrize("options", [{"category": "Process"}, {"category": "", "counter": "x"}, {}])
def test_invalid_options_are_configuration_errors(options):
    with pytest.raises(CounterConfigurationError):
        PerformanceCounterRenderer(options, ScriptedProvider())


def test_close_then_render_fails():
    renderer = make_renderer([gauge_sample(1), gauge_sample(2)])
    renderer.close()
    renderer.close()

    with pytest.raises(SamplerClosedError):
        renderer.render_value()


def test_options_blank_strings_and_default_name():
    options = CounterOptions(category="Process", counter="% Processor Time", instance="", machine_name="")

    assert options.instance is None
    assert options.machine_name is None
    assert options.name == "process_processor_time"


def _logger_with(filter_, name):
    logger = logging.getLogger(f"tests.renderer.{name}")
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = ListHandler()
    handler.addFilter(filter_)
    logger.handlers = [handler]
    return logger, handler


def test_filter_stamps_every_record():
    renderer = make_renderer([gauge_sample(0), gauge_sample(5), gauge_sample(6)], name="free", format=".0f")
    logger, handler = _logger_with(PerformanceCounterFilter(renderer), "stamp")

    logger.info("one")
    logger.info("two")

    assert [r.free for r in handler.records] == ["5", "6"]


def test_filter_leaves_field_blank_on_failure(caplog):
    # Script runs out after the warm-up read: the next read fails
    renderer = make_renderer([gauge_sample(0)], name="free")
    logger, handler = _logger_with(PerformanceCounterFilter(renderer, attribute="mem"), "failure")

    with caplog.at_level(logging.WARNING, logger="perfcounter"):
        logger.info("still logged")

    assert len(handler.records) == 1
    assert handler.records[0].mem == ""
    assert "Failed to render performance counter Memory\\Available Bytes" in caplog.text


def test_filter_is_not_reentered_by_its_own_warning():
    renderer = make_renderer([gauge_sample(0)])
    counter_filter = PerformanceCounterFilter(renderer, attribute="mem")
    root_handler = ListHandler()
    root_handler.addFilter(counter_filter)
    perf_log = logging.getLogger("perfcounter")
    perf_log.addHandler(root_handler)
    try:
        logger, handler = _logger_with(counter_filter, "reentry")
        logger.info("boom")
    finally:
        perf_log.removeHandler(root_handler)

    assert handler.records[0].mem == ""
    # The renderer's own warning passed through with an empty field
    assert [r.mem for r in root_handler.records] == [""]


def test_read_errors_surface_from_render_value():
    renderer = make_renderer([gauge_sample(0)])

    with pytest.raises(CounterReadError):
        renderer.render_value()


def test_default_name_collapses_separators():
    options = CounterOptions(category="Memory", counter="% Committed Bytes In Use")

    assert options.name == "memory_committed_bytes_in_use"


@pytest.mark.parametrize("name", ["msg", "args", "name", "levelname", "message", "asctime"])
def test_record_attributes_cannot_be_counter_names(name):
    with pytest.raises(ValidationError):
        CounterOptions(category="Memory", counter="Available Bytes", name=name)
    with pytest.raises(CounterConfigurationError):
        PerformanceCounterRenderer({"category": "Memory", "counter": "Available Bytes", "name": name}, ScriptedProvider())


def test_filter_rejects_record_attribute():
    renderer = make_renderer([gauge_sample(0)])

    with pytest.raises(CounterConfigurationError):
        PerformanceCounterFilter(renderer, attribute="msg")


def test_derived_name_never_shadows_record_attribute():
    options = CounterOptions(category="Process", counter="%")

    assert options.name == "counter_process"
