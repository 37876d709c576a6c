import math

import pytest

from forseti.metrics import (
    LOCATIONS_LOADING_DURATION,
    LOCATIONS_LOADING_ERRORS,
    Counter,
    Histogram,
    exponential_buckets,
)


def test_exponential_buckets_shape():
    buckets = exponential_buckets(0.001, 1.5, 15)
    assert len(buckets) == 15
    assert buckets[0] == 0.001
    for low, high in zip(buckets, buckets[1:]):
        assert high == pytest.approx(low * 1.5)


@pytest.mark.parametrize("args", [(0.001, 1.5, 0), (0, 1.5, 3), (0.001, 1.0, 3)])
def test_exponential_buckets_rejects_bad_arguments(args):
    with pytest.raises(ValueError):
        exponential_buckets(*args)


def test_counter_increments():
    counter = Counter("ns", "sub", "errors")
    counter.inc()
    counter.inc(2.5)
    assert counter.value == 3.5


def test_counter_rejects_negative():
    counter = Counter("ns", "sub", "errors")
    with pytest.raises(ValueError):
        counter.inc(-1)
    assert counter.value == 0


def test_histogram_cumulative_counts():
    histogram = Histogram("ns", "sub", "durations", buckets=[1, 2, 4])
    for value in (0.5, 1, 3, 10):
        histogram.observe(value)
    counts = histogram.cumulative_counts()
    assert [bound for bound, _ in counts] == [1, 2, 4, math.inf]
    assert counts[-1][1] == histogram.count == 4
    assert counts[0][1] == 2
    assert histogram.sum == pytest.approx(0.5 + 1 + 3 + 10)


def test_histogram_rejects_unsorted_buckets():
    with pytest.raises(ValueError):
        Histogram("ns", "sub", "durations", buckets=[2, 1])


def test_module_metrics():
    assert LOCATIONS_LOADING_DURATION.bounds == tuple(exponential_buckets(0.001, 1.5, 15))
    assert LOCATIONS_LOADING_ERRORS.name == "forseti_vehicle_locations_loading_errors"