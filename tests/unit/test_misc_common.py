import json
import logging
import time
from pathlib import Path

import pytest

from geoenrich.common.constants import JSON_LOG_FIELDS
from geoenrich.common.errors import EnrichmentError
from geoenrich.common.fs import read_json, write_json
from geoenrich.common.ids import generate_run_id
from geoenrich.common.logging import JsonLineFormatter, build_logger, log_event
from geoenrich.common.time_utils import elapsed_ms


def test_generate_run_id_prefix():
    assert generate_run_id().startswith("enrich-")


def test_elapsed_ms_is_non_negative():
    assert elapsed_ms(time.monotonic()) >= 0


def test_write_json_round_trips_non_ascii(tmp_path: Path):
    path = tmp_path / "nested" / "out.json"
    write_json(path, {"cidade": "CUIABÁ"})

    assert read_json(path) == {"cidade": "CUIABÁ"}
    assert "CUIABÁ" in path.read_text(encoding="utf-8")
    assert [p.name for p in path.parent.iterdir()] == ["out.json"]


def test_read_json_reports_missing_and_corrupt_files(tmp_path: Path):
    corrupt = tmp_path / "bad.json"
    corrupt.write_text("[{", encoding="utf-8")

    with pytest.raises(EnrichmentError):
        read_json(tmp_path / "absent.json")
    with pytest.raises(EnrichmentError):
        read_json(corrupt)


def test_json_formatter_emits_every_schema_field():
    record = logging.LogRecord("geoenrich.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    record.event = "RETRY"
    record.attempt = 2

    payload = json.loads(JsonLineFormatter().format(record))

    assert set(JSON_LOG_FIELDS) <= set(payload)
    assert payload["message"] == "hello world"
    assert payload["event"] == "RETRY"
    assert payload["attempt"] == 2
    assert payload["tier"] is None


def test_build_logger_writes_json_lines_to_run_file(tmp_path: Path):
    logger = build_logger("enrich-test", log_dir=tmp_path, level="DEBUG")
    try:
        log_event(logger, "enrichment start", run_id="enrich-test", stage="enrich", event="STAGE_START")
        logging.getLogger("geoenrich.enrichment.scheduler").info("child record", extra={"event": "BATCHES_DONE"})
        for handler in logger.handlers:
            handler.flush()

        lines = (tmp_path / "enrich-test.log.jsonl").read_text(encoding="utf-8").splitlines()
    finally:
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    events = [json.loads(line)["event"] for line in lines]
    assert events == ["STAGE_START", "BATCHES_DONE"]
