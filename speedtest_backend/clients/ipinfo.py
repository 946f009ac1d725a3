"""HTTP client for the IPinfo geolocation service."""

import logging
from typing import Optional

import requests

from speedtest_backend.bootstrap.config import ServerConfig
from speedtest_backend.domain.client_locator import GeoLookupResult
from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter
from speedtest_backend.domain.distance import Coordinate, parse_location

IPINFO_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.clients.ipinfo"), {}
)


class IpInfoClient:
    """Looks up addresses with a bounded timeout; failures yield an empty result."""

    def __init__(
        self,
        base_url: str = "https://ipinfo.io",
        api_key: str = "",
        timeout: float = 3.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._http = session if session is not None else requests

    def lookup_url(self, address: str = "") -> str:
        if address:
            return f"{self._base_url}/{address}/json"
        return f"{self._base_url}/json"

    def lookup(self, address: str = "") -> GeoLookupResult:
        """Fetch the record for ``address``, or for this host when it is empty."""
        params = {"token": self._api_key} if self._api_key else None
        try:
            response = self._http.get(
                self.lookup_url(address), params=params, timeout=self._timeout
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as error:
            IPINFO_LOGGER.error(
                "Geolocation lookup failed",
                extra={
                    "event": "geo_lookup_failed",
                    "lookup_ip": address or "self",
                    "error_type": type(error).__name__,
                },
            )
            return GeoLookupResult()

        if not isinstance(payload, dict):
            IPINFO_LOGGER.error(
                "Unexpected geolocation response",
                extra={"event": "geo_lookup_failed", "lookup_ip": address or "self"},
            )
            return GeoLookupResult()
        return GeoLookupResult.from_wire(payload)


def resolve_server_location(config: ServerConfig, client: IpInfoClient) -> Coordinate:
    """Return the configured coordinates, looking them up once if none are set."""
    if config.server_lat != 0 or config.server_lng != 0:
        IPINFO_LOGGER.info(
            "Using configured server coordinates",
            extra={
                "event": "server_location",
                "server_lat": config.server_lat,
                "server_lng": config.server_lng,
            },
        )
        return Coordinate(config.server_lat, config.server_lng)

    if not config.server_auto_locate:
        return Coordinate(0.0, 0.0)

    location = parse_location(client.lookup().location)
    if location is None:
        IPINFO_LOGGER.warning(
            "Server coordinates unknown, distances are measured from 0,0",
            extra={"event": "server_location_unknown"},
        )
        return Coordinate(0.0, 0.0)

    IPINFO_LOGGER.info(
        "Fetched server coordinates",
        extra={
            "event": "server_location",
            "server_lat": location.lat,
            "server_lng": location.lng,
        },
    )
    return location
