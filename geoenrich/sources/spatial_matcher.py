"""Offline municipality matching against a GeoJSON boundary file."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Sequence

from shapely import STRtree
from shapely.geometry import Point as ShapelyPoint
from shapely.geometry import shape

from geoenrich.common.constants import UNASSOCIATED_REGION, UNRESOLVED_MUNICIPALITY
from geoenrich.common.models import EnrichedPoint, Location, Point

logger = logging.getLogger(__name__)


def _load_feature_collection(path: Path | None) -> dict[str, Any]:
    if path is None:
        logger.warning(
            "no boundary file configured, offline matching disabled",
            extra={"event": "BOUNDARIES_MISSING", "tier": "spatial"},
        )
        return {"features": []}
    try:
        with Path(path).open("r", encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, ValueError) as exc:
        logger.error(
            "failed to load municipality boundaries from %s: %s",
            path,
            exc,
            extra={"event": "BOUNDARIES_LOAD_FAILED", "status": "error", "tier": "spatial"},
        )
        return {"features": []}
    if not isinstance(payload, dict) or not isinstance(payload.get("features"), list):
        logger.error(
            "boundary file %s is not a FeatureCollection",
            path,
            extra={"event": "BOUNDARIES_LOAD_FAILED", "status": "error", "tier": "spatial"},
        )
        return {"features": []}
    return payload


class GeoJsonMunicipalityMatcher:
    """Point-in-polygon lookup of municipality and regional command.

    Boundaries are read once; every lookup goes through an STR-tree over the
    feature geometries. Points on a boundary count as inside. When features
    overlap, the first one in file order wins.
    """

    def __init__(self, geojson_path: Path | str | None, *, default_state: str | None = None) -> None:
        self.geojson_path = Path(geojson_path) if geojson_path is not None else None
        self.default_state = default_state
        self.geometries: list[Any] = []
        self.properties: list[dict[str, Any]] = []
        self._load()
        self.tree = STRtree(self.geometries) if self.geometries else None

    def _load(self) -> None:
        collection = _load_feature_collection(self.geojson_path)
        for idx, feature in enumerate(collection["features"]):
            geometry = (feature or {}).get("geometry")
            if not geometry:
                continue
            try:
                geom = shape(geometry)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "skipping feature %d with unreadable geometry: %s",
                    idx,
                    exc,
                    extra={"event": "BOUNDARY_SKIPPED", "tier": "spatial"},
                )
                continue
            self.geometries.append(geom)
            self.properties.append(feature.get("properties") or {})

    def __len__(self) -> int:
        return len(self.geometries)

    def find_municipality(self, latitude: float, longitude: float) -> tuple[str, str] | None:
        if self.tree is None:
            return None
        candidate = ShapelyPoint(longitude, latitude)
        hits = sorted(int(i) for i in self.tree.query(candidate, predicate="intersects"))
        if not hits:
            return None
        props = self.properties[hits[0]]
        raw_name = props.get("name")
        municipio = raw_name.upper() if isinstance(raw_name, str) and raw_name else UNRESOLVED_MUNICIPALITY
        comando_regional = props.get("comandoRegional") or UNASSOCIATED_REGION
        return municipio, comando_regional

    def locate(self, point: Point) -> Location:
        match = self.find_municipality(point.latitude, point.longitude)
        if match is None:
            return Location(cidade=UNRESOLVED_MUNICIPALITY)
        municipio, comando_regional = match
        return Location(
            cidade=municipio,
            estado=self.default_state,
            comando_regional=comando_regional,
        )

    def batch_locate(self, points: Sequence[Point]) -> list[EnrichedPoint]:
        return [EnrichedPoint(point=point, location=self.locate(point)) for point in points]
