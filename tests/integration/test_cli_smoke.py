import json
from pathlib import Path

import pytest

from geoenrich.cli import parse_args, run_command
from geoenrich.common.models import EnrichedPoint, Location
from geoenrich.enrichment.orchestrator import FallbackOrchestrator
from geoenrich.enrichment.retry import RetryPolicy
from geoenrich.sources.location_cache import SqliteLocationCache

CONFIG = """scheduler:
  batch_size: 55
  max_concurrent_batches: 6
rate_limit:
  requests_per_window: 600
  window_duration_ms: 60000
retry:
  max_retries: 3
  initial_delay_ms: 0
provider:
  base_url: "https://api.mapbox.com/search"
  path: "/geocode/v6/reverse"
  language: pt
  timeout_ms: 10000
  token_env: GEOENRICH_TEST_UNSET_TOKEN
  requests_per_second: 4
spatial:
  geojson_path: "{geojson}"
  default_state: "Mato Grosso"
cache:
  db_path: "{db}"
  ttl_seconds: 86400
policy:
  unresolved_policy: drop
  escalation: all
"""

BOUNDARIES = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "properties": {"name": "Cuiabá", "comandoRegional": "CR BM I"},
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[-56.5, -16.0], [-55.5, -16.0], [-55.5, -15.0], [-56.5, -15.0], [-56.5, -16.0]]],
            },
        }
    ],
}


def _setup(tmp_path: Path, rows: list[dict]) -> tuple[Path, Path, Path]:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    geojson = tmp_path / "mun.geojson"
    geojson.write_text(json.dumps(BOUNDARIES), encoding="utf-8")
    (config_dir / "enrichment.yml").write_text(
        CONFIG.format(geojson=geojson.as_posix(), db=(tmp_path / "cache" / "geo.db").as_posix()),
        encoding="utf-8",
    )
    input_path = tmp_path / "hotspots.json"
    input_path.write_text(json.dumps(rows), encoding="utf-8")
    return config_dir, input_path, tmp_path / "out" / "enriched.json"


@pytest.mark.integration
def test_cli_enrich_resolves_offline_and_writes_output(tmp_path: Path):
    rows = [
        {"id": "h1", "latitude": -15.6, "longitude": -56.1},
        {"id": "h2", "latitude": -15.2, "longitude": -55.9},
    ]
    config_dir, input_path, output_path = _setup(tmp_path, rows)
    args = parse_args(
        [
            "enrich",
            "--input",
            str(input_path),
            "--output",
            str(output_path),
            "--config-dir",
            str(config_dir),
            "--run-id",
            "enrich-test",
            "--log-dir",
            str(tmp_path / "logs"),
        ]
    )

    exit_code = run_command(args)

    assert exit_code == 0
    payload = json.loads(output_path.read_text(encoding="utf-8"))
    assert payload["run_id"] == "enrich-test"
    assert payload["report"]["tier"] == "spatial"
    assert [row["localizacao"]["cidade"] for row in payload["rows"]] == ["CUIABÁ", "CUIABÁ"]
    assert payload["rows"][0]["localizacao"]["comando_regional"] == "CR BM I"
    assert (tmp_path / "logs" / "enrich-test.log.jsonl").exists()

    with SqliteLocationCache(tmp_path / "cache" / "geo.db") as cache:
        assert cache.get(-15.6, -56.1).cidade == "CUIABÁ"


@pytest.mark.integration
def test_cli_reports_partial_when_points_are_dropped(tmp_path: Path):
    class NothingMatcher:
        def batch_locate(self, points):
            return [EnrichedPoint(point=p, location=Location(cidade="N/A")) for p in points]

    class EmptyGeocoder:
        def reverse(self, point):
            return None

    config_dir, input_path, output_path = _setup(tmp_path, [{"id": "ocean", "latitude": 0, "longitude": 0}])
    orchestrator = FallbackOrchestrator(
        cache=SqliteLocationCache(":memory:"),
        spatial_matcher=NothingMatcher(),
        geocoder=EmptyGeocoder(),
        retry_policy=RetryPolicy(3, 0, sleep=lambda _s: None),
    )
    args = parse_args(["enrich", "--input", str(input_path), "--output", str(output_path)])

    exit_code = run_command(args, orchestrator=orchestrator)

    assert exit_code == 10
    payload = json.loads(output_path.read_text(encoding="utf-8"))
    assert payload["rows"] == []
    assert payload["report"]["remote_dropped"] == 1


@pytest.mark.integration
def test_cli_missing_token_is_a_hard_failure(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("GEOENRICH_TEST_UNSET_TOKEN", raising=False)
    config_dir, input_path, output_path = _setup(tmp_path, [{"id": "ocean", "latitude": 0, "longitude": 0}])
    args = parse_args(
        ["enrich", "--input", str(input_path), "--output", str(output_path), "--config-dir", str(config_dir)]
    )

    exit_code = run_command(args)

    assert exit_code == 20
    assert not output_path.exists()
