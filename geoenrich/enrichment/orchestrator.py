"""Three-tier location enrichment: cache, offline spatial match, remote provider."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from types import TracebackType
from typing import Any, Iterable, Sequence

from geoenrich.common.config_loader import EnrichmentConfig
from geoenrich.common.constants import ESCALATION_MODES, UNRESOLVED_POLICIES
from geoenrich.common.errors import EnrichmentError
from geoenrich.common.http import TokenBucket
from geoenrich.common.models import (
    EnrichedPoint,
    Location,
    LocationCache,
    Point,
    ReverseGeocoder,
    SpatialMatcher,
    is_cacheable,
)
from geoenrich.common.time_utils import elapsed_ms
from geoenrich.enrichment.rate_limiter import RateLimiter
from geoenrich.enrichment.retry import RetryPolicy
from geoenrich.enrichment.scheduler import BatchScheduler
from geoenrich.sources.location_cache import SqliteLocationCache
from geoenrich.sources.mapbox import MapboxProvider, MapboxReverseGeocoder
from geoenrich.sources.spatial_matcher import GeoJsonMunicipalityMatcher

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentReport:
    input_count: int = 0
    cache_hits: int = 0
    uncached: int = 0
    tier: str = "none"
    spatial_unresolved: int = 0
    spatial_kept: int = 0
    remote_submitted: int = 0
    remote_resolved: int = 0
    remote_dropped: int = 0
    cache_writes: int = 0
    output_count: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _safe_float(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def records_to_points(records: Iterable[dict[str, Any]]) -> list[Point]:
    points: list[Point] = []
    for record in records:
        lat = _safe_float(record.get("latitude"))
        lon = _safe_float(record.get("longitude"))
        if lat is None or lon is None:
            logger.warning(
                "skipping record with invalid coordinates",
                extra={"event": "INVALID_COORDINATES", "status": "skipped"},
            )
            continue
        points.append(Point(latitude=lat, longitude=lon, payload=dict(record)))
    return points


def _has_municipality(enriched: EnrichedPoint) -> bool:
    return enriched.location is not None and enriched.location.has_municipality()


class FallbackOrchestrator:
    """Attaches a Location to every point, cheapest tier first.

    Cache hits are returned as-is. The remaining points go to the spatial
    matcher; if any of them comes back without a municipality, the matcher's
    output is discarded and the whole uncached set is resolved remotely
    (``escalation="all"``), or only the unresolved subset is
    (``escalation="unresolved"``). Points the provider cannot resolve are
    dropped (``unresolved_policy="drop"``) or returned with no location
    (``unresolved_policy="null"``). Only valid, non-sentinel locations are
    written back to the cache, and only once the chosen tier has finished.
    """

    def __init__(
        self,
        *,
        cache: LocationCache,
        spatial_matcher: SpatialMatcher,
        geocoder: ReverseGeocoder,
        scheduler: BatchScheduler | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        throttle: TokenBucket | None = None,
        unresolved_policy: str = "drop",
        escalation: str = "all",
    ) -> None:
        if unresolved_policy not in UNRESOLVED_POLICIES:
            raise ValueError(f"Unknown unresolved_policy: {unresolved_policy}")
        if escalation not in ESCALATION_MODES:
            raise ValueError(f"Unknown escalation mode: {escalation}")
        self.cache = cache
        self.spatial_matcher = spatial_matcher
        self.geocoder = geocoder
        self.scheduler = scheduler or BatchScheduler()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.retry_policy = retry_policy or RetryPolicy()
        self.throttle = throttle
        self.unresolved_policy = unresolved_policy
        self.escalation = escalation
        self.last_report = EnrichmentReport()

    def close(self) -> None:
        for resource in (self.geocoder, self.cache):
            close = getattr(resource, "close", None)
            if callable(close):
                close()

    def __enter__(self) -> "FallbackOrchestrator":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def split_cached(self, points: Sequence[Point]) -> tuple[list[EnrichedPoint], list[Point]]:
        cached: list[EnrichedPoint] = []
        uncached: list[Point] = []
        for point in points:
            location = self.cache.get(point.latitude, point.longitude)
            if location is not None:
                cached.append(EnrichedPoint(point=point, location=location))
            else:
                uncached.append(point)
        return cached, uncached

    def locate_offline(self, points: Sequence[Point]) -> list[EnrichedPoint]:
        located = self.spatial_matcher.batch_locate(points)
        if len(located) != len(points):
            raise EnrichmentError(
                f"Spatial matcher returned {len(located)} result(s) for {len(points)} point(s)"
            )
        return located

    def resolve_one(self, point: Point, cancel_event: threading.Event | None = None) -> Location:
        def _attempt() -> Location | None:
            self.rate_limiter.acquire(cancel_event)
            if self.throttle is not None:
                self.throttle.acquire(cancel_event=cancel_event)
            return self.geocoder.reverse(point)

        return self.retry_policy.execute_with_retry(_attempt, cancel_event)

    def resolve_remote(
        self,
        points: Sequence[Point],
        cancel_event: threading.Event | None = None,
    ) -> list[EnrichedPoint]:
        return self.scheduler.run(
            points,
            lambda point: self.resolve_one(point, cancel_event),
            cancel_event,
        )

    def write_back(self, resolved: Iterable[EnrichedPoint]) -> int:
        writes = 0
        for enriched in resolved:
            if not is_cacheable(enriched.location):
                logger.debug(
                    "not caching unresolved location for %s",
                    enriched.point.key,
                    extra={"event": "CACHE_SKIP", "status": "skipped"},
                )
                continue
            self.cache.set(enriched.point.latitude, enriched.point.longitude, enriched.location)
            writes += 1
        return writes

    def _enrich(
        self,
        points: Sequence[Point],
        cancel_event: threading.Event | None,
        report: EnrichmentReport,
    ) -> list[EnrichedPoint]:
        cached, uncached = self.split_cached(points)
        report.cache_hits = len(cached)
        report.uncached = len(uncached)
        if not uncached:
            report.tier = "cache"
            return cached

        located = self.locate_offline(uncached)
        unresolved = [enriched for enriched in located if not _has_municipality(enriched)]
        report.spatial_unresolved = len(unresolved)

        if not unresolved:
            report.tier = "spatial"
            report.spatial_kept = len(located)
            report.cache_writes = self.write_back(located)
            logger.info(
                "all uncached points located offline",
                extra={"event": "TIER1_COMPLETE", "status": "ok", "tier": "spatial", "rows_in": len(uncached)},
            )
            return cached + located

        logger.warning(
            "offline match incomplete: %d of %d point(s) without municipality",
            len(unresolved),
            len(uncached),
            extra={
                "event": "TIER1_INCOMPLETE",
                "status": "escalating",
                "tier": "spatial",
                "rows_in": len(uncached),
                "rows_out": len(uncached) - len(unresolved),
            },
        )

        if self.escalation == "unresolved":
            kept = [enriched for enriched in located if _has_municipality(enriched)]
            to_remote = [enriched.point for enriched in unresolved]
            report.tier = "spatial+remote"
        else:
            kept = []
            to_remote = list(uncached)
            report.tier = "remote"
        report.spatial_kept = len(kept)
        report.remote_submitted = len(to_remote)

        remote = self.resolve_remote(to_remote, cancel_event)
        dropped = list(self.scheduler.last_stats.dropped_points)
        report.remote_resolved = len(remote)
        report.remote_dropped = len(dropped)

        report.cache_writes = self.write_back(kept + remote)

        logger.info(
            "remote tier finished",
            extra={
                "event": "TIER2_DONE",
                "status": "ok" if not dropped else "partial",
                "tier": "remote",
                "rows_in": len(to_remote),
                "rows_out": len(remote),
            },
        )

        unresolved_out: list[EnrichedPoint] = []
        if self.unresolved_policy == "null":
            unresolved_out = [EnrichedPoint(point=point, location=None) for point in dropped]
        return cached + kept + remote + unresolved_out

    def enrich(
        self,
        points: Sequence[Point],
        *,
        cancel_event: threading.Event | None = None,
        deadline_seconds: float | None = None,
    ) -> list[EnrichedPoint]:
        started_at = time.monotonic()
        report = EnrichmentReport(input_count=len(points))
        self.last_report = report

        timer: threading.Timer | None = None
        if deadline_seconds is not None:
            if cancel_event is None:
                cancel_event = threading.Event()
            timer = threading.Timer(deadline_seconds, cancel_event.set)
            timer.daemon = True
            timer.start()

        try:
            result = self._enrich(points, cancel_event, report)
        finally:
            if timer is not None:
                timer.cancel()
            report.duration_ms = elapsed_ms(started_at)

        report.output_count = len(result)
        logger.info(
            "enrichment finished via %s",
            report.tier,
            extra={
                "event": "ENRICH_SUMMARY",
                "status": "ok" if report.remote_dropped == 0 else "partial",
                "tier": report.tier,
                "rows_in": report.input_count,
                "rows_out": report.output_count,
                "duration_ms": report.duration_ms,
            },
        )
        return result

    def enrich_records(self, records: Iterable[dict[str, Any]], **kwargs: Any) -> list[dict[str, Any]]:
        points = records_to_points(records)
        return [enriched.to_record() for enriched in self.enrich(points, **kwargs)]


def build_orchestrator(
    config: EnrichmentConfig,
    *,
    cache: LocationCache | None = None,
    spatial_matcher: SpatialMatcher | None = None,
    geocoder: ReverseGeocoder | None = None,
) -> FallbackOrchestrator:
    if cache is None:
        cache = SqliteLocationCache(config.cache.db_path, ttl_seconds=config.cache.ttl_seconds)
    if spatial_matcher is None:
        spatial_matcher = GeoJsonMunicipalityMatcher(
            config.spatial.geojson_path,
            default_state=config.spatial.default_state,
        )
    if geocoder is None:
        provider = MapboxProvider(
            token=config.provider.token,
            base_url=config.provider.base_url,
            timeout_ms=config.provider.timeout_ms,
        )
        geocoder = MapboxReverseGeocoder(
            provider,
            path=config.provider.path,
            language=config.provider.language,
            timeout_ms=config.provider.timeout_ms,
        )

    return FallbackOrchestrator(
        cache=cache,
        spatial_matcher=spatial_matcher,
        geocoder=geocoder,
        scheduler=BatchScheduler(
            batch_size=config.scheduler.batch_size,
            max_concurrent_batches=config.scheduler.max_concurrent_batches,
        ),
        rate_limiter=RateLimiter(
            requests_per_window=config.rate_limit.requests_per_window,
            window_duration_ms=config.rate_limit.window_duration_ms,
        ),
        retry_policy=RetryPolicy(
            max_retries=config.retry.max_retries,
            initial_delay_ms=config.retry.initial_delay_ms,
        ),
        throttle=TokenBucket(config.provider.requests_per_second, capacity=1.0),
        unresolved_policy=config.policy.unresolved_policy,
        escalation=config.policy.escalation,
    )
