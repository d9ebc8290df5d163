from __future__ import annotations

from geoenrich.common.models import (
    EnrichedPoint,
    Location,
    Point,
    canonical_coordinate,
    is_cacheable,
)


def test_canonical_coordinate_rounds_to_five_decimals():
    assert canonical_coordinate(-15.6, -56.1) == "-15.60000,-56.10000"
    assert canonical_coordinate(-15.600004, -56.100001) == canonical_coordinate(-15.6, -56.1)
    assert canonical_coordinate(-15.600006, -56.1) != canonical_coordinate(-15.6, -56.1)


def test_point_key_uses_canonical_form():
    assert Point(latitude=0, longitude=0).key == "0.00000,0.00000"


def test_location_validity_needs_city_or_state():
    assert Location(cidade="Cuiabá").is_valid()
    assert Location(estado="Mato Grosso").is_valid()
    assert not Location(bairro="Centro", pais="Brasil").is_valid()
    assert not Location(cidade="", estado="").is_valid()


def test_sentinel_city_is_valid_but_not_cacheable():
    sentinel = Location(cidade="N/A")

    assert sentinel.is_valid()
    assert not sentinel.has_municipality()
    assert not is_cacheable(sentinel)
    assert not is_cacheable(None)
    assert not is_cacheable(Location())
    assert is_cacheable(Location(estado="Mato Grosso"))
    assert is_cacheable(Location(cidade="CUIABÁ", comando_regional="CR BM I"))


def test_location_equality_ignores_raw_payload():
    assert Location(cidade="Sinop", raw={"a": 1}) == Location(cidade="Sinop", raw={"b": 2})


def test_to_dict_omits_raw_and_absent_regional_command():
    assert "comando_regional" not in Location(cidade="Sinop").to_dict()
    data = Location(cidade="SINOP", comando_regional="CR BM VI", raw={"x": 1}).to_dict()
    assert data["comando_regional"] == "CR BM VI"
    assert "raw" not in data


def test_from_mapping_normalises_empty_strings():
    location = Location.from_mapping({"cidade": "Sorriso", "bairro": "", "extra": "ignored"})

    assert location.cidade == "Sorriso"
    assert location.bairro is None


def test_to_record_keeps_payload_and_adds_location():
    point = Point(latitude=-12.5, longitude=-55.7, payload={"id": "h1", "satelite": "AQUA_M-T"})
    enriched = EnrichedPoint(point=point, location=Location(cidade="SORRISO"))

    record = enriched.to_record()

    assert record["id"] == "h1"
    assert record["satelite"] == "AQUA_M-T"
    assert record["localizacao"]["cidade"] == "SORRISO"
    assert enriched.with_location(None).to_record()["localizacao"] is None
