import pytest

from conftest import ScriptedProvider, gauge_sample, rate_sample
from perfcounter.core.counters.errors import CounterReadError, SamplerClosedError
from perfcounter.core.counters.sampler import RateSampler
from perfcounter.core.counters.types import EMPTY_SAMPLE


def open_sampler(provider, category="Memory", counter="Page Faults/sec", **kwargs):
    sampler = RateSampler(provider)
    sampler.open(category, counter, **kwargs)
    return sampler


def test_warmup_read_seeds_both_samples_without_empty_delta():
    s0 = rate_sample(10.0, 100)
    sampler = open_sampler(ScriptedProvider([s0]))

    assert sampler.previous_sample == s0
    assert sampler.current_sample == s0


def test_first_value_without_warmup_is_zero_for_rate_counter():
    # Remote counters skip the warm-up read
    provider = ScriptedProvider([rate_sample(3.0, 500)])
    sampler = open_sampler(provider, machine_name="srv01")
    assert provider.connections[0].reads == 0

    assert sampler.value() == 0.0
    assert not sampler.previous_sample.is_empty


def test_first_value_never_compares_against_empty_even_with_small_timestamp():
    s0 = rate_sample(0.2, 50)
    sampler = open_sampler(ScriptedProvider([s0]), machine_name="srv01")

    assert sampler.value() == 0.0
    assert sampler.previous_sample == s0
    assert sampler.current_sample == s0


def test_frequency_counter_rotates_only_after_half_second():
    s0 = rate_sample(10.0, 100)
    s1 = rate_sample(10.2, 150)
    s2 = rate_sample(10.4, 220)
    s3 = rate_sample(10.6, 300)
    s4 = rate_sample(10.8, 310)
    sampler = open_sampler(ScriptedProvider([s0, s1, s2, s3, s4]))

    assert sampler.value() == pytest.approx(250.0)
    assert (sampler.previous_sample, sampler.current_sample) == (s0, s0)

    assert sampler.value() == pytest.approx(300.0)
    assert (sampler.previous_sample, sampler.current_sample) == (s0, s0)

    assert sampler.value() == pytest.approx(200 / 0.6)
    assert (sampler.previous_sample, sampler.current_sample) == (s0, s3)

    # Measured from the retained previous sample, not the last raw read
    assert sampler.value() == pytest.approx(210 / 0.8)
    assert (sampler.previous_sample, sampler.current_sample) == (s0, s3)


def test_fast_reads_keep_pair_but_return_fresh_values():
    s0 = rate_sample(10.0, 0)
    reads = [rate_sample(10.0 + 0.1 * i, 100 * i) for i in range(1, 6)]
    sampler = open_sampler(ScriptedProvider([s0] + reads))

    values = []
    for _ in reads:
        values.append(sampler.value())
        assert (sampler.previous_sample, sampler.current_sample) == (s0, s0)

    # 100 counts per 0.1 s
    assert values == pytest.approx([1000.0] * 5)


def test_backwards_clock_jump_rotates():
    s0 = rate_sample(10.0, 100)
    s1 = rate_sample(5.0, 120)
    sampler = open_sampler(ScriptedProvider([s0, s1]))

    sampler.value()

    assert (sampler.previous_sample, sampler.current_sample) == (s0, s1)


def test_gauge_counter_rotates_on_every_call():
    samples = [gauge_sample(10), gauge_sample(12), gauge_sample(15)]
    sampler = open_sampler(ScriptedProvider(samples))
    assert sampler.previous_sample == EMPTY_SAMPLE
    assert sampler.current_sample == samples[0]

    assert sampler.value() == 12.0
    assert (sampler.previous_sample, sampler.current_sample) == (samples[0], samples[1])

    assert sampler.value() == 15.0
    assert (sampler.previous_sample, sampler.current_sample) == (samples[1], samples[2])


def test_read_failure_propagates_from_value():
    sampler = open_sampler(ScriptedProvider([gauge_sample(1)]))

    with pytest.raises(CounterReadError):
        sampler.value()


def test_warmup_failure_closes_the_counter():
    provider = ScriptedProvider([])

    with pytest.raises(CounterReadError):
        open_sampler(provider)

    assert provider.connections[0].closed


def test_close_resets_state_and_is_idempotent():
    provider = ScriptedProvider([gauge_sample(1), gauge_sample(2)])
    sampler = open_sampler(provider)
    conn = provider.connections[0]

    sampler.close()
    sampler.close()

    assert conn.close_calls == 1
    assert sampler.previous_sample == EMPTY_SAMPLE
    assert sampler.current_sample == EMPTY_SAMPLE
    assert not sampler.is_open


def test_value_after_close_does_not_touch_the_counter():
    provider = ScriptedProvider([gauge_sample(1), gauge_sample(2)])
    sampler = open_sampler(provider)
    conn = provider.connections[0]
    sampler.close()

    with pytest.raises(SamplerClosedError):
        sampler.value()
    assert conn.reads == 1


def test_reopen_starts_from_empty_state():
    provider = ScriptedProvider([gauge_sample(7), gauge_sample(8)])
    sampler = open_sampler(provider)
    sampler.value()

    sampler.open("Memory", "Available Bytes")

    assert provider.connections[0].closed
    assert sampler.previous_sample == EMPTY_SAMPLE
    assert sampler.current_sample == gauge_sample(7)


def test_process_counter_opens_current_process_instance(monkeypatch):
    provider = ScriptedProvider([gauge_sample(1)], instances={"P1": 100, "P2": 200})
    monkeypatch.setattr("perfcounter.core.counters.instance.os.getpid", lambda: 200)

    sampler = open_sampler(provider, category="Process", counter="% Processor Time")

    assert sampler.instance == "P2"
    assert provider.opened[-1] == ("Process", "% Processor Time", "P2", None)
    assert all(probe.closed for probe in provider.probes)


def test_instance_name_uses_provider_enumeration(monkeypatch):
    provider = ScriptedProvider(instances={"P1": 100, "P2": 200})
    monkeypatch.setattr("perfcounter.core.counters.instance.os.getpid", lambda: 100)

    assert RateSampler(provider).instance_name("process") == "P1"
