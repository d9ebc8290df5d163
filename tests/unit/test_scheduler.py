from __future__ import annotations

import threading
import time

import pytest

from geoenrich.common.errors import ConfigError, EnrichmentCancelled, ExhaustedRetriesError
from geoenrich.common.models import Location, Point
from geoenrich.enrichment.scheduler import BatchScheduler


def _points(n: int) -> list[Point]:
    return [Point(latitude=-15.0 - i * 0.01, longitude=-56.0, payload={"id": i}) for i in range(n)]


def test_create_batches_and_waves_preserve_order():
    scheduler = BatchScheduler(batch_size=55, max_concurrent_batches=2)
    points = _points(120)

    batches = scheduler.create_batches(points)
    waves = scheduler.create_waves(batches)

    assert [len(b) for b in batches] == [55, 55, 10]
    assert [len(w) for w in waves] == [2, 1]
    assert [p for b in batches for p in b] == points


def test_run_returns_results_in_input_order():
    scheduler = BatchScheduler(batch_size=4, max_concurrent_batches=2)
    points = _points(19)

    def resolve(point):
        time.sleep(0.001 * (point.payload["id"] % 3))
        return Location(cidade=f"C{point.payload['id']}")

    results = scheduler.run(points, resolve)

    assert [r.point for r in results] == points
    assert [r.location.cidade for r in results] == [f"C{i}" for i in range(19)]
    assert scheduler.last_stats.batches == 5
    assert scheduler.last_stats.waves == 3
    assert scheduler.last_stats.resolved == 19


def test_failed_points_are_dropped_and_counted():
    scheduler = BatchScheduler(batch_size=3, max_concurrent_batches=2)
    points = _points(10)

    def resolve(point):
        i = point.payload["id"]
        if i % 2:
            raise ExhaustedRetriesError(f"gave up on {i}")
        if i == 4:
            raise RuntimeError("boom")
        return Location(estado="Mato Grosso")

    results = scheduler.run(points, resolve)

    assert [r.point.payload["id"] for r in results] == [0, 2, 6, 8]
    stats = scheduler.last_stats
    assert stats.submitted == 10
    assert stats.resolved == 4
    assert stats.dropped == 6
    assert [p.payload["id"] for p in stats.dropped_points] == [1, 3, 4, 5, 7, 9]


def test_in_flight_points_never_exceed_wave_capacity():
    scheduler = BatchScheduler(batch_size=3, max_concurrent_batches=2)
    lock = threading.Lock()
    state = {"in_flight": 0, "peak": 0}

    def resolve(point):
        with lock:
            state["in_flight"] += 1
            state["peak"] = max(state["peak"], state["in_flight"])
        time.sleep(0.01)
        with lock:
            state["in_flight"] -= 1
        return Location(cidade="X")

    scheduler.run(_points(20), resolve)

    assert 1 <= state["peak"] <= 6


def test_empty_input_does_nothing():
    scheduler = BatchScheduler()

    assert scheduler.run([], lambda p: pytest.fail("should not resolve")) == []
    assert scheduler.last_stats.submitted == 0


def test_cancel_before_run_resolves_nothing():
    scheduler = BatchScheduler(batch_size=2, max_concurrent_batches=1)
    cancel = threading.Event()
    cancel.set()
    calls = []

    with pytest.raises(EnrichmentCancelled):
        scheduler.run(_points(4), lambda p: calls.append(p) or Location(cidade="X"), cancel)

    assert calls == []


def test_cancel_between_waves_stops_later_waves():
    scheduler = BatchScheduler(batch_size=1, max_concurrent_batches=1)
    cancel = threading.Event()
    calls = []

    def resolve(point):
        calls.append(point)
        cancel.set()
        return Location(cidade="X")

    with pytest.raises(EnrichmentCancelled):
        scheduler.run(_points(5), resolve, cancel)

    assert len(calls) == 1
    assert scheduler.last_stats.waves == 1


def test_config_errors_abort_the_run():
    scheduler = BatchScheduler(batch_size=2, max_concurrent_batches=1)

    def resolve(point):
        raise ConfigError("missing token")

    with pytest.raises(ConfigError):
        scheduler.run(_points(3), resolve)


@pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"max_concurrent_batches": 0}])
def test_rejects_non_positive_sizes(kwargs):
    with pytest.raises(ValueError):
        BatchScheduler(**kwargs)
