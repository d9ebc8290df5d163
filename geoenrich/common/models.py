"""Data models and collaborator protocols used across the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Protocol, Sequence

from geoenrich.common.constants import COORDINATE_PRECISION, UNRESOLVED_MUNICIPALITY

LOCATION_KEYS = ("tipo", "nome", "endereco", "bairro", "cidade", "estado", "pais", "cep")


def canonical_coordinate(latitude: float, longitude: float) -> str:
    return f"{float(latitude):.{COORDINATE_PRECISION}f},{float(longitude):.{COORDINATE_PRECISION}f}"


@dataclass(frozen=True)
class Point:
    latitude: float
    longitude: float
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return canonical_coordinate(self.latitude, self.longitude)


@dataclass(frozen=True)
class Location:
    tipo: str | None = None
    nome: str | None = None
    endereco: str | None = None
    bairro: str | None = None
    cidade: str | None = None
    estado: str | None = None
    pais: str | None = None
    cep: str | None = None
    comando_regional: str | None = None
    raw: dict[str, Any] | None = field(default=None, compare=False, repr=False)

    def is_valid(self) -> bool:
        return bool(self.cidade) or bool(self.estado)

    def has_municipality(self) -> bool:
        return bool(self.cidade) and self.cidade != UNRESOLVED_MUNICIPALITY

    def to_dict(self) -> dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "raw"}
        if out["comando_regional"] is None:
            del out["comando_regional"]
        return out

    @classmethod
    def from_mapping(cls, data: dict[str, Any], raw: dict[str, Any] | None = None) -> "Location":
        values = {key: data.get(key) or None for key in LOCATION_KEYS}
        return cls(**values, comando_regional=data.get("comando_regional") or None, raw=raw)


def is_cacheable(location: Location | None) -> bool:
    return location is not None and location.is_valid() and location.cidade != UNRESOLVED_MUNICIPALITY


@dataclass(frozen=True)
class EnrichedPoint:
    point: Point
    location: Location | None = None

    def with_location(self, location: Location | None) -> "EnrichedPoint":
        return replace(self, location=location)

    def to_record(self) -> dict[str, Any]:
        return {
            **self.point.payload,
            "localizacao": self.location.to_dict() if self.location is not None else None,
        }


class LocationCache(Protocol):
    def get(self, latitude: float, longitude: float) -> Location | None: ...

    def set(self, latitude: float, longitude: float, location: Location) -> None: ...


class SpatialMatcher(Protocol):
    def batch_locate(self, points: Sequence[Point]) -> list[EnrichedPoint]: ...


class Provider(Protocol):
    def get(self, path: str, params: dict[str, Any]) -> dict[str, Any]: ...


class ReverseGeocoder(Protocol):
    def reverse(self, point: Point) -> Location | None: ...
