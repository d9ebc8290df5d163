"""Normalise raw reverse-geocoding responses into Location values."""

from __future__ import annotations

import logging
from typing import Any, Callable

from geoenrich.common.models import Location

logger = logging.getLogger(__name__)


def _context_name(section: str) -> Callable[[dict[str, Any]], Any]:
    def _accessor(props: dict[str, Any]) -> Any:
        context = props.get("context")
        if not isinstance(context, dict):
            return None
        entry = context.get(section)
        if not isinstance(entry, dict):
            return None
        return entry.get("name")

    return _accessor


def _top_level(key: str) -> Callable[[dict[str, Any]], Any]:
    def _accessor(props: dict[str, Any]) -> Any:
        return props.get(key)

    return _accessor


LOCATION_FIELDS: tuple[tuple[str, Callable[[dict[str, Any]], Any]], ...] = (
    ("tipo", _top_level("feature_type")),
    ("nome", _top_level("name")),
    ("endereco", _top_level("full_address")),
    ("bairro", _context_name("neighborhood")),
    ("cidade", _context_name("place")),
    ("estado", _context_name("region")),
    ("pais", _context_name("country")),
    ("cep", _context_name("postcode")),
)


def first_feature_properties(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    features = raw.get("features")
    if not isinstance(features, list) or not features:
        return None
    first = features[0]
    if not isinstance(first, dict):
        return None
    props = first.get("properties")
    if not isinstance(props, dict):
        return None
    return props


def _as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def map_properties(props: dict[str, Any]) -> dict[str, str | None]:
    return {name: _as_text(accessor(props)) for name, accessor in LOCATION_FIELDS}


def map_response(raw: Any) -> Location | None:
    props = first_feature_properties(raw)
    if props is None:
        logger.debug("provider response has no usable feature", extra={"event": "EMPTY_RESPONSE", "tier": "remote"})
        return None
    return Location(**map_properties(props), raw=raw)
