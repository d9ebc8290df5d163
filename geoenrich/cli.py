"""CLI entrypoint for hotspot location enrichment."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from geoenrich.common.config_loader import load_config
from geoenrich.common.constants import (
    ESCALATION_MODES,
    EXIT_HARD_FAIL,
    EXIT_PARTIAL,
    EXIT_SUCCESS,
    UNRESOLVED_POLICIES,
)
from geoenrich.common.errors import EnrichmentError
from geoenrich.common.fs import read_json, write_json
from geoenrich.common.ids import generate_run_id
from geoenrich.common.logging import build_logger, log_event
from geoenrich.enrichment.orchestrator import FallbackOrchestrator, build_orchestrator


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=["enrich"])
    parser.add_argument("--input", required=True)
    parser.add_argument("--output", required=True)
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--log-dir", default=None)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--deadline-seconds", type=float, default=None)
    parser.add_argument("--unresolved-policy", default=None, choices=list(UNRESOLVED_POLICIES))
    parser.add_argument("--escalation", default=None, choices=list(ESCALATION_MODES))
    return parser.parse_args(argv)


def load_records(path: Path) -> list[dict]:
    payload = read_json(path)
    if isinstance(payload, dict):
        payload = payload.get("rows", [])
    if not isinstance(payload, list):
        raise EnrichmentError(f"Input {path} must be a JSON list or an object with a 'rows' list")
    return [row for row in payload if isinstance(row, dict)]


def run_command(args: argparse.Namespace, orchestrator: FallbackOrchestrator | None = None) -> int:
    run_id = args.run_id or generate_run_id()
    logger = build_logger(run_id, log_dir=Path(args.log_dir) if args.log_dir else None, level=args.log_level)
    log_event(logger, "enrichment start", run_id=run_id, stage="enrich", event="STAGE_START", status="ok")

    try:
        records = load_records(Path(args.input))
        if orchestrator is None:
            config = load_config(
                Path(args.config_dir),
                overlay_config_dir=Path(args.overlay_config_dir) if args.overlay_config_dir else None,
            ).with_policy(unresolved_policy=args.unresolved_policy, escalation=args.escalation)
            orchestrator = build_orchestrator(config)

        with orchestrator:
            rows = orchestrator.enrich_records(records, deadline_seconds=args.deadline_seconds)
        report = orchestrator.last_report
    except EnrichmentError as exc:
        log_event(
            logger,
            f"enrichment failed: {exc}",
            level=logging.ERROR,
            run_id=run_id,
            stage="enrich",
            event="STAGE_FAIL",
            status="error",
            error_code=exc.error_code,
        )
        return EXIT_HARD_FAIL

    write_json(Path(args.output), {"run_id": run_id, "report": report.to_dict(), "rows": rows})

    unresolved = sum(1 for row in rows if row.get("localizacao") is None)
    partial = report.remote_dropped > 0 or unresolved > 0 or len(rows) < len(records)
    log_event(
        logger,
        "enrichment end",
        run_id=run_id,
        stage="enrich",
        event="STAGE_END",
        status="partial" if partial else "ok",
        rows_in=len(records),
        rows_out=len(rows),
        duration_ms=report.duration_ms,
    )
    return EXIT_PARTIAL if partial else EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        return run_command(args)
    except EnrichmentError:
        return EXIT_HARD_FAIL
    except Exception:
        logging.getLogger("geoenrich").exception(
            "enrichment aborted by unexpected failure",
            extra={"stage": "enrich", "event": "STAGE_FAIL", "status": "error", "error_code": "UNEXPECTED_ERROR"},
        )
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
