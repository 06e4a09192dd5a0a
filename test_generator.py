#!/usr/bin/env python3
"""
Tests for scan unit generation
"""

import asyncio
import random

import pytest

from portsweep.core.errors import ConfigurationError, InvalidRange
from portsweep.core.generator import RequestGenerator
from portsweep.core.models import MultiPortScanRequest, ScanConfiguration, ScanParams, ScanRequest
from portsweep.core.ratelimit import END_OF_STREAM


def make_config(**overrides):
    values = dict(
        include_ranges=("10.0.0.0/30",),
        ports=(22, 80, 443),
        randomize_host_order=False,
    )
    values.update(overrides)
    return ScanConfiguration(**values)


def test_one_unit_per_host():
    units = list(RequestGenerator(make_config()))

    assert [u.host for u in units] == ["10.0.0.0", "10.0.0.1", "10.0.0.2", "10.0.0.3"]
    assert all(u.ports == (22, 80, 443) for u in units)


def test_parallel_per_host_splits_ports():
    generator = RequestGenerator(make_config(parallel_per_host=True))
    assert generator.unit_count == 12
    units = list(generator)

    assert len(units) == 12
    assert all(len(u.ports) == 1 for u in units)
    assert [(u.host, u.ports[0]) for u in units[:3]] == [
        ("10.0.0.0", 22), ("10.0.0.0", 80), ("10.0.0.0", 443),
    ]


def test_units_carry_params():
    params = ScanParams(dial_timeout=0.5, banner_timeout=0.25, trigger=b"\r\n")
    units = list(RequestGenerator(make_config(params=params)))
    assert all(u.params is params for u in units)


def test_excluded_hosts_are_skipped():
    units = list(RequestGenerator(make_config(exclude_ranges=("10.0.0.1/32",))))
    assert [u.host for u in units] == ["10.0.0.0", "10.0.0.2", "10.0.0.3"]


def test_randomized_order_is_a_permutation():
    config = make_config(include_ranges=("10.0.0.0/24",), randomize_host_order=True)
    shuffled = [u.host for u in RequestGenerator(config, rng=random.Random(7))]
    ordered = [u.host for u in RequestGenerator(make_config(include_ranges=("10.0.0.0/24",)))]

    assert shuffled != ordered
    assert sorted(shuffled) == sorted(ordered)


def test_seed_makes_order_reproducible():
    config = make_config(include_ranges=("10.0.0.0/26",), randomize_host_order=True, seed=1234)
    first = [u.host for u in RequestGenerator(config)]
    second = [u.host for u in RequestGenerator(config)]
    assert first == second


def test_generator_is_single_pass():
    generator = RequestGenerator(make_config())
    list(generator)
    with pytest.raises(RuntimeError):
        iter(generator)


def test_bad_range_fails_up_front():
    with pytest.raises(InvalidRange):
        RequestGenerator(make_config(include_ranges=("10.0.0.0/40",)))


@pytest.mark.parametrize("overrides", [
    {"ports": ()},
    {"include_ranges": ()},
    {"rate": 0},
    {"burst": 0},
    {"workers": 0},
])
def test_configuration_validation(overrides):
    with pytest.raises(ConfigurationError):
        make_config(**overrides)


@pytest.mark.parametrize("dial, banner", [(0, 1), (1, 0), (-1, 1)])
def test_params_require_positive_timeouts(dial, banner):
    with pytest.raises(ConfigurationError):
        ScanParams(dial_timeout=dial, banner_timeout=banner)


def test_configuration_is_immutable():
    config = make_config(ports=[22, 80])
    assert config.ports == (22, 80)
    with pytest.raises(AttributeError):
        config.rate = 100


def test_worker_count_defaults_to_rate_plus_slack():
    assert make_config(rate=20).worker_count == 36
    assert make_config(rate=20, workers=3).worker_count == 3


def test_expand_preserves_port_order():
    unit = MultiPortScanRequest(host="10.0.0.9", ports=(443, 22, 80))
    assert unit.expand() == [
        ScanRequest("10.0.0.9", 443, unit.params),
        ScanRequest("10.0.0.9", 22, unit.params),
        ScanRequest("10.0.0.9", 80, unit.params),
    ]
    assert ScanRequest("2001:db8::1", 22).hostport == "[2001:db8::1]:22"


async def test_produce_fills_queue_and_closes():
    queue = asyncio.Queue()
    produced = await RequestGenerator(make_config()).produce(queue)

    assert produced == 4
    assert queue.qsize() == 5
    items = [queue.get_nowait() for _ in range(5)]
    assert items[-1] is END_OF_STREAM


async def test_produce_blocks_on_capacity_until_cancelled():
    queue = asyncio.Queue(maxsize=2)
    cancel = asyncio.Event()
    task = asyncio.ensure_future(RequestGenerator(make_config()).produce(queue, cancel))

    await asyncio.sleep(0.05)
    assert not task.done()
    assert queue.qsize() == 2

    cancel.set()
    assert await asyncio.wait_for(task, timeout=1) == 2
