"""Client IP reporting: classification, ISP enrichment and distance."""

import logging
import re
from dataclasses import asdict, dataclass, field, fields
from typing import Callable, Optional

from speedtest_backend.domain.correlation_id import CorrelationLoggerAdapter
from speedtest_backend.domain.distance import Coordinate, estimate_distance
from speedtest_backend.domain.ip_classification import (
    classify_address,
    normalize_client_address,
)

LOCATOR_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("speedtest.domain.client_locator"), {}
)

UNKNOWN_ISP = "Unknown ISP"
AS_NUMBER_PATTERN = re.compile(r"AS\d+(?:\s+|$)")

_WIRE_NAMES = {"location": "loc", "organization": "org"}


@dataclass(frozen=True)
class GeoLookupResult:
    """Geolocation record as returned by the lookup service; fields may be empty."""

    ip: str = ""
    hostname: str = ""
    city: str = ""
    region: str = ""
    country: str = ""
    location: str = ""
    organization: str = ""
    postal: str = ""
    timezone: str = ""
    readme: str = ""

    @classmethod
    def from_wire(cls, payload: dict) -> "GeoLookupResult":
        """Build a result from the service's JSON object, ignoring unknown keys."""
        values = {}
        for item in fields(cls):
            value = payload.get(_WIRE_NAMES.get(item.name, item.name))
            if value is not None:
                values[item.name] = str(value)
        return cls(**values)

    def is_empty(self) -> bool:
        return not any(asdict(self).values())

    def to_wire(self) -> dict[str, str]:
        if self.is_empty():
            return {}
        return {
            _WIRE_NAMES.get(name, name): value for name, value in asdict(self).items()
        }


@dataclass(frozen=True)
class ResultEnvelope:
    processed_string: str
    raw_isp_info: GeoLookupResult = field(default_factory=GeoLookupResult)

    def to_wire(self) -> dict:
        return {
            "processedString": self.processed_string,
            "rawIspInfo": self.raw_isp_info.to_wire(),
        }


def clean_organization(organization: str) -> str:
    """Drop autonomous system number tokens such as ``AS12345 ``."""
    cleaned = AS_NUMBER_PATTERN.sub("", organization).strip()
    return cleaned or UNKNOWN_ISP


class ClientLocator:
    """Builds the IP report for a client address.

    ``lookup`` is called only for public addresses and only when ISP details
    are requested.
    """

    def __init__(
        self,
        server_location: Coordinate,
        lookup: Callable[[str], GeoLookupResult],
        default_unit: str = "km",
    ) -> None:
        self._server_location = server_location
        self._lookup = lookup
        self._default_unit = default_unit

    @property
    def server_location(self) -> Coordinate:
        return self._server_location

    def locate(
        self,
        remote_addr: str,
        include_isp: bool = False,
        distance_unit: Optional[str] = None,
    ) -> ResultEnvelope:
        client = normalize_client_address(remote_addr)
        label = classify_address(client.ip)
        if label is not None:
            return ResultEnvelope(f"{client.ip} - {label}")

        if not include_isp:
            return ResultEnvelope(client.ip)

        info = self._lookup(client.ip)
        if info.is_empty():
            LOCATOR_LOGGER.info(
                "No ISP information available",
                extra={"event": "isp_info_missing", "lookup_ip": client.ip},
            )
            return ResultEnvelope(client.ip, info)

        description = clean_organization(info.organization)
        if info.country:
            description += f", {info.country}"
        if info.location:
            distance = estimate_distance(
                self._server_location,
                info.location,
                distance_unit,
                self._default_unit,
            )
            if distance is None:
                LOCATOR_LOGGER.warning(
                    "Unparsable client location",
                    extra={"event": "location_invalid", "lookup_ip": client.ip},
                )
            else:
                description += f" ({distance})"
        return ResultEnvelope(f"{client.ip} - {description}", info)
