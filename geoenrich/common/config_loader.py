"""Configuration loading and validation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from geoenrich.common.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_INITIAL_DELAY_MS,
    DEFAULT_MAX_CONCURRENT_BATCHES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUESTS_PER_WINDOW,
    DEFAULT_WINDOW_DURATION_MS,
)
from geoenrich.common.fs import read_yaml
from geoenrich.common.schema import validate_enrichment_config

CONFIG_FILENAME = "enrichment.yml"


@dataclass(frozen=True)
class SchedulerConfig:
    batch_size: int = DEFAULT_BATCH_SIZE
    max_concurrent_batches: int = DEFAULT_MAX_CONCURRENT_BATCHES


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_window: int = DEFAULT_REQUESTS_PER_WINDOW
    window_duration_ms: int = DEFAULT_WINDOW_DURATION_MS


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS


@dataclass(frozen=True)
class ProviderConfig:
    base_url: str = "https://api.mapbox.com/search"
    path: str = "/geocode/v6/reverse"
    language: str = "pt"
    timeout_ms: int = 10000
    token_env: str = "MAPBOX_TOKEN"
    requests_per_second: float = 4.0
    token: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class SpatialConfig:
    geojson_path: Path | None = None
    default_state: str | None = None


@dataclass(frozen=True)
class CacheConfig:
    db_path: Path = Path("data/cache/geocache.db")
    ttl_seconds: int = 24 * 60 * 60


@dataclass(frozen=True)
class PolicyConfig:
    unresolved_policy: str = "drop"
    escalation: str = "all"


@dataclass(frozen=True)
class EnrichmentConfig:
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    spatial: SpatialConfig = field(default_factory=SpatialConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)

    def with_policy(self, *, unresolved_policy: str | None = None, escalation: str | None = None) -> "EnrichmentConfig":
        policy = replace(
            self.policy,
            unresolved_policy=unresolved_policy or self.policy.unresolved_policy,
            escalation=escalation or self.policy.escalation,
        )
        return replace(self, policy=policy)


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    base = read_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if not overlay:
        return base
    return _deep_merge(base, overlay)


def _optional_path(value: str | None) -> Path | None:
    if not value:
        return None
    return Path(value)


def build_config(cfg: dict, *, environ: dict[str, str] | None = None) -> EnrichmentConfig:
    env = os.environ if environ is None else environ
    provider = cfg["provider"]
    return EnrichmentConfig(
        scheduler=SchedulerConfig(**cfg["scheduler"]),
        rate_limit=RateLimitConfig(**cfg["rate_limit"]),
        retry=RetryConfig(**cfg["retry"]),
        provider=ProviderConfig(
            base_url=provider["base_url"],
            path=provider["path"],
            language=provider["language"],
            timeout_ms=provider["timeout_ms"],
            token_env=provider["token_env"],
            requests_per_second=float(provider["requests_per_second"]),
            token=env.get(provider["token_env"]) or None,
        ),
        spatial=SpatialConfig(
            geojson_path=_optional_path(cfg["spatial"]["geojson_path"]),
            default_state=cfg["spatial"]["default_state"] or None,
        ),
        cache=CacheConfig(
            db_path=Path(cfg["cache"]["db_path"]),
            ttl_seconds=cfg["cache"]["ttl_seconds"],
        ),
        policy=PolicyConfig(**cfg["policy"]),
    )


def load_config(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
    environ: dict[str, str] | None = None,
) -> EnrichmentConfig:
    overlay_path = None
    if overlay_config_dir is not None:
        overlay_path = overlay_config_dir / CONFIG_FILENAME
    raw = _load_yaml_with_overlay(config_dir / CONFIG_FILENAME, overlay_path)
    cfg = validate_enrichment_config(raw, allow_unknown=allow_unknown)
    return build_config(cfg, environ=environ)
