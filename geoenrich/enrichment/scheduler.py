"""Bounded-concurrency batch scheduler for remote resolution."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterator, Sequence

from geoenrich.common.constants import DEFAULT_BATCH_SIZE, DEFAULT_MAX_CONCURRENT_BATCHES
from geoenrich.common.errors import ConfigError, EnrichmentCancelled, EnrichmentError
from geoenrich.common.models import EnrichedPoint, Location, Point

logger = logging.getLogger(__name__)

ResolveOne = Callable[[Point], "Location | None"]


@dataclass
class BatchStats:
    submitted: int = 0
    resolved: int = 0
    batches: int = 0
    waves: int = 0
    dropped_points: list[Point] = field(default_factory=list)

    @property
    def dropped(self) -> int:
        return len(self.dropped_points)


def _chunked(values: Sequence, size: int) -> Iterator[Sequence]:
    for i in range(0, len(values), size):
        yield values[i : i + size]


class BatchScheduler:
    """Resolves points in waves of concurrently processed batches.

    Points are split into consecutive batches of ``batch_size``; up to
    ``max_concurrent_batches`` batches form a wave, and every point in a wave
    is resolved concurrently. A wave completes before the next one starts.
    Points whose resolution fails are logged and left out of the result.
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrent_batches: int = DEFAULT_MAX_CONCURRENT_BATCHES,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrent_batches < 1:
            raise ValueError("max_concurrent_batches must be at least 1")
        self.batch_size = batch_size
        self.max_concurrent_batches = max_concurrent_batches
        self.last_stats = BatchStats()

    def create_batches(self, points: Sequence[Point]) -> list[list[Point]]:
        return [list(chunk) for chunk in _chunked(points, self.batch_size)]

    def create_waves(self, batches: list[list[Point]]) -> list[list[list[Point]]]:
        return [list(wave) for wave in _chunked(batches, self.max_concurrent_batches)]

    def _resolve_point(
        self,
        point: Point,
        resolve_one: ResolveOne,
        cancel_event: threading.Event | None,
    ) -> EnrichedPoint | None:
        if cancel_event is not None and cancel_event.is_set():
            raise EnrichmentCancelled("Cancelled before point resolution started")
        try:
            location = resolve_one(point)
        except (EnrichmentCancelled, ConfigError):
            raise
        except EnrichmentError as exc:
            logger.error(
                "point %s dropped: %s",
                point.key,
                exc,
                extra={"event": "POINT_DROPPED", "status": "error", "tier": "remote", "error_code": exc.error_code},
            )
            return None
        except Exception as exc:
            logger.error(
                "point %s dropped after unexpected failure: %s",
                point.key,
                exc,
                extra={"event": "POINT_DROPPED", "status": "error", "tier": "remote", "error_code": "UNEXPECTED_ERROR"},
            )
            return None
        if location is None:
            return None
        return EnrichedPoint(point=point, location=location)

    def _collect_wave(
        self,
        wave_futures: list[list[tuple[Point, Future]]],
        stats: BatchStats,
    ) -> list[EnrichedPoint]:
        results: list[EnrichedPoint] = []
        for batch_futures in wave_futures:
            for point, future in batch_futures:
                enriched = future.result()
                if enriched is None:
                    stats.dropped_points.append(point)
                    continue
                stats.resolved += 1
                results.append(enriched)
        return results

    def run(
        self,
        points: Sequence[Point],
        resolve_one: ResolveOne,
        cancel_event: threading.Event | None = None,
    ) -> list[EnrichedPoint]:
        stats = BatchStats(submitted=len(points))
        self.last_stats = stats
        if not points:
            return []

        batches = self.create_batches(points)
        waves = self.create_waves(batches)
        stats.batches = len(batches)
        max_workers = min(len(points), self.batch_size * self.max_concurrent_batches)

        results: list[EnrichedPoint] = []
        executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="geoenrich")
        try:
            for wave in waves:
                if cancel_event is not None and cancel_event.is_set():
                    raise EnrichmentCancelled(f"Cancelled after {stats.waves} of {len(waves)} wave(s)")
                wave_futures = [
                    [(point, executor.submit(self._resolve_point, point, resolve_one, cancel_event)) for point in batch]
                    for batch in wave
                ]
                results.extend(self._collect_wave(wave_futures, stats))
                stats.waves += 1
        except BaseException:
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        else:
            executor.shutdown(wait=True)

        logger.info(
            "remote resolution finished: %d resolved, %d dropped",
            stats.resolved,
            stats.dropped,
            extra={
                "event": "BATCHES_DONE",
                "status": "ok" if stats.dropped == 0 else "partial",
                "tier": "remote",
                "rows_in": stats.submitted,
                "rows_out": stats.resolved,
            },
        )
        return results
