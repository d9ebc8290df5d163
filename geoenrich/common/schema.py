"""Minimal strict schema for the enrichment YAML config."""

from __future__ import annotations

from geoenrich.common.constants import ESCALATION_MODES, UNRESOLVED_POLICIES
from geoenrich.common.errors import ConfigError

SECTION_KEYS = {
    "scheduler": {"batch_size", "max_concurrent_batches"},
    "rate_limit": {"requests_per_window", "window_duration_ms"},
    "retry": {"max_retries", "initial_delay_ms"},
    "provider": {"base_url", "path", "language", "timeout_ms", "token_env", "requests_per_second"},
    "spatial": {"geojson_path", "default_state"},
    "cache": {"db_path", "ttl_seconds"},
    "policy": {"unresolved_policy", "escalation"},
}

POSITIVE_INT_KEYS = {
    "scheduler": ("batch_size", "max_concurrent_batches"),
    "rate_limit": ("requests_per_window", "window_duration_ms"),
    "retry": ("max_retries",),
    "provider": ("timeout_ms",),
    "cache": ("ttl_seconds",),
}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_positive_int(value: object, ctx: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{ctx} must be a positive integer, got {value!r}")


def _assert_positive_number(value: object, ctx: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{ctx} must be a positive number, got {value!r}")


def _assert_choice(value: object, choices: tuple[str, ...], ctx: str) -> None:
    if value not in choices:
        raise ConfigError(f"{ctx} must be one of {', '.join(choices)}, got {value!r}")


def validate_enrichment_config(cfg: dict | None, *, allow_unknown: bool = False) -> dict:
    if not isinstance(cfg, dict):
        raise ConfigError("enrichment config must be a mapping")

    _assert_required_keys(cfg, set(SECTION_KEYS), "enrichment config")
    _assert_no_unknown_keys(cfg, set(SECTION_KEYS), "enrichment config", allow_unknown)

    for section, keys in SECTION_KEYS.items():
        if not isinstance(cfg[section], dict):
            raise ConfigError(f"{section} must be a mapping")
        _assert_required_keys(cfg[section], keys, section)
        _assert_no_unknown_keys(cfg[section], keys, section, allow_unknown)

    for section, keys in POSITIVE_INT_KEYS.items():
        for key in keys:
            _assert_positive_int(cfg[section][key], f"{section}.{key}")

    _assert_positive_number(cfg["provider"]["requests_per_second"], "provider.requests_per_second")

    delay = cfg["retry"]["initial_delay_ms"]
    if isinstance(delay, bool) or not isinstance(delay, int) or delay < 0:
        raise ConfigError(f"retry.initial_delay_ms must be a non-negative integer, got {delay!r}")

    _assert_choice(cfg["policy"]["unresolved_policy"], UNRESOLVED_POLICIES, "policy.unresolved_policy")
    _assert_choice(cfg["policy"]["escalation"], ESCALATION_MODES, "policy.escalation")

    return cfg
