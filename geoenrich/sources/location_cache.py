"""SQLite-backed location cache keyed by canonical coordinates."""

from __future__ import annotations

import json
import logging
import math
import sqlite3
import threading
import time
from pathlib import Path
from types import TracebackType
from typing import Any, Callable

from geoenrich.common.constants import COORDINATE_PRECISION
from geoenrich.common.fs import ensure_dir
from geoenrich.common.models import LOCATION_KEYS, Location

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS locations (
    latitude TEXT NOT NULL,
    longitude TEXT NOT NULL,
    tipo TEXT,
    nome TEXT,
    endereco TEXT,
    bairro TEXT,
    cidade TEXT,
    estado TEXT,
    pais TEXT,
    cep TEXT,
    comando_regional TEXT,
    outros_dados TEXT,
    created_at REAL NOT NULL,
    PRIMARY KEY (latitude, longitude)
);
CREATE INDEX IF NOT EXISTS idx_city_state ON locations (cidade, estado);
"""

COLUMNS = ("latitude", "longitude", *LOCATION_KEYS, "comando_regional", "outros_dados", "created_at")


def format_coord(value: float) -> str:
    return f"{float(value):.{COORDINATE_PRECISION}f}"


def _is_valid_coord(value: object) -> bool:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False
    return math.isfinite(number)


class SqliteLocationCache:
    """Persistent cache of resolved locations.

    Entries older than ``ttl_seconds`` read as misses and are removed on
    access. Writes for an existing coordinate replace the previous entry.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        ttl_seconds: int = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = str(db_path)
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        if self.db_path != ":memory:":
            ensure_dir(Path(self.db_path).parent)
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0)
        self.conn.row_factory = sqlite3.Row
        with self._lock:
            self.conn.executescript(SCHEMA)
            self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def __enter__(self) -> "SqliteLocationCache":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _is_expired(self, created_at: float) -> bool:
        return created_at + self.ttl_seconds < self.clock()

    @staticmethod
    def _row_to_location(row: sqlite3.Row) -> Location:
        data = dict(row)
        raw = json.loads(data["outros_dados"]) if data.get("outros_dados") else None
        return Location.from_mapping(data, raw=raw)

    def get(self, latitude: float, longitude: float) -> Location | None:
        lat, lon = format_coord(latitude), format_coord(longitude)
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM locations WHERE latitude = ? AND longitude = ?",
                (lat, lon),
            ).fetchone()
            if row is None:
                return None
            if self._is_expired(row["created_at"]):
                self.conn.execute("DELETE FROM locations WHERE latitude = ? AND longitude = ?", (lat, lon))
                self.conn.commit()
                return None
        return self._row_to_location(row)

    def set(self, latitude: float, longitude: float, location: Location) -> None:
        if not (_is_valid_coord(latitude) and _is_valid_coord(longitude)):
            logger.warning(
                "refusing to cache location with invalid coordinates (%r, %r)",
                latitude,
                longitude,
                extra={"event": "CACHE_INVALID_COORDINATES", "status": "skipped"},
            )
            return
        values: dict[str, Any] = {key: getattr(location, key) or None for key in LOCATION_KEYS}
        row = (
            format_coord(latitude),
            format_coord(longitude),
            *(values[key] for key in LOCATION_KEYS),
            location.comando_regional,
            json.dumps(location.raw, ensure_ascii=False) if location.raw else None,
            self.clock(),
        )
        placeholders = ", ".join("?" for _ in COLUMNS)
        with self._lock:
            self.conn.execute(
                f"INSERT OR REPLACE INTO locations ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                row,
            )
            self.conn.commit()

    def delete(self, latitude: float, longitude: float) -> None:
        with self._lock:
            self.conn.execute(
                "DELETE FROM locations WHERE latitude = ? AND longitude = ?",
                (format_coord(latitude), format_coord(longitude)),
            )
            self.conn.commit()

    def list_all(self) -> list[dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute("SELECT * FROM locations ORDER BY created_at DESC").fetchall()
        out = []
        for row in rows:
            data = dict(row)
            if data.get("outros_dados"):
                data["outros_dados"] = json.loads(data["outros_dados"])
            out.append(data)
        return out

    def clear(self) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM locations")
            self.conn.commit()

    def get_by_city_state(self, cidade: str, estado: str) -> list[Location]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM locations WHERE cidade = ? AND estado = ?",
                (cidade, estado),
            ).fetchall()
        return [self._row_to_location(row) for row in rows]

    def force_expire(self) -> None:
        with self._lock:
            self.conn.execute("UPDATE locations SET created_at = created_at - ?", (self.ttl_seconds + 1,))
            self.conn.commit()
