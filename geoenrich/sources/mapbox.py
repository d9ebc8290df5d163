"""Mapbox reverse-geocoding provider."""

from __future__ import annotations

from typing import Any

from geoenrich.common.errors import ConfigError, TransportError
from geoenrich.common.http import HttpClient, TimeoutConfig
from geoenrich.common.models import Location, Point, Provider
from geoenrich.enrichment.mapper import map_response

DEFAULT_BASE_URL = "https://api.mapbox.com/search"
REVERSE_PATH = "/geocode/v6/reverse"


class MapboxProvider:
    def __init__(
        self,
        token: str | None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_ms: int = 5000,
        http_client: HttpClient | None = None,
    ) -> None:
        self.token = token
        self.owns_client = http_client is None
        self.client = http_client or HttpClient(base_url=base_url, timeout=TimeoutConfig.from_ms(timeout_ms))

    def is_configured(self) -> bool:
        return bool(self.token)

    def _auth_params(self, params: dict[str, Any]) -> dict[str, Any]:
        return {**params, "access_token": self.token}

    def get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self.is_configured():
            raise ConfigError("Mapbox client is not configured: missing access token")
        query = dict(params)
        timeout = None
        timeout_ms = query.pop("timeout", None)
        if timeout_ms:
            timeout = TimeoutConfig.from_ms(int(timeout_ms))
        try:
            return self.client.get_json(path, params=self._auth_params(query), timeout=timeout)
        except TransportError as exc:
            if self.token not in str(exc):
                raise
            # requests errors can echo the full URL, query string included
            raise type(exc)(str(exc).replace(self.token, "***")) from None

    def close(self) -> None:
        if self.owns_client:
            self.client.close()


class MapboxReverseGeocoder:
    def __init__(
        self,
        provider: Provider,
        *,
        path: str = REVERSE_PATH,
        language: str = "pt",
        timeout_ms: int = 10000,
    ) -> None:
        self.provider = provider
        self.path = path
        self.language = language
        self.timeout_ms = timeout_ms

    def reverse(self, point: Point) -> Location | None:
        raw = self.provider.get(
            self.path,
            {
                "longitude": point.longitude,
                "latitude": point.latitude,
                "language": self.language,
                "timeout": self.timeout_ms,
            },
        )
        return map_response(raw)

    def close(self) -> None:
        close = getattr(self.provider, "close", None)
        if callable(close):
            close()
