from geopal.ip_utils import IpScope, classify_ip
from geopal.logger import logger
from geopal.models.common import DatabaseKind, GeoRecord, NetworkRecord
from geopal.models.response_models import LocationResponse
from geopal.store import DatabaseStore

INVALID_IP_MESSAGE = "Invalid or missing IP address"
PRIVATE_IP_MESSAGE = "Cannot geolocate private/local IP addresses"
PRIVATE_IP_NOTE = "Private IP ranges (10.x, 192.168.x, 172.16-31.x) and localhost cannot be geolocated"
NOT_LOADED_MESSAGE = "MaxMind databases not loaded. Please set MAXMIND_LICENSE_KEY environment variable."
NOT_FOUND_MESSAGE = "No geolocation data found for this IP address"
INTERNAL_ERROR_MESSAGE = "Internal server error"


class LookupService:
    """Resolves an IP address against the databases held by a `DatabaseStore`."""

    def __init__(self, store: DatabaseStore) -> None:
        self._store = store

    def locate(self, ip: str | None) -> LocationResponse:
        """Build the location result for an already normalized candidate IP.

        Classification failures and missing data are reported through
        `status="fail"`; a malformed database record yields `status="error"`.
        """
        scope = classify_ip(ip)
        if scope is IpScope.invalid:
            return LocationResponse(status="fail", message=INVALID_IP_MESSAGE, query=ip or "none")

        if scope is IpScope.private_or_local:
            return LocationResponse(status="fail", message=PRIVATE_IP_MESSAGE, query=ip, note=PRIVATE_IP_NOTE)

        if not any(self._store.is_loaded(kind) for kind in DatabaseKind):
            return LocationResponse(status="fail", message=NOT_LOADED_MESSAGE, query=ip)

        try:
            return self._assemble(ip)
        except Exception as exc:
            logger.exception(f"Failed to assemble location result ip={ip} error={exc!r}")
            return LocationResponse(status="error", message=INTERNAL_ERROR_MESSAGE, query=ip, error=str(exc))

    def _assemble(self, ip: str) -> LocationResponse:
        result = LocationResponse(status="success", query=ip)
        found = False

        raw_city = self._store.query(DatabaseKind.city, ip)
        if raw_city is not None:
            geo = GeoRecord.from_maxmind(raw_city)
            found = found or geo.has_data()
            # Missing values flatten to ""/0 in the public contract.
            result.country = geo.country_name or ""
            result.country_code = geo.country_code or ""
            result.region = geo.region_code or ""
            result.region_name = geo.region_name or ""
            result.city = geo.city or ""
            result.zip = geo.postal_code or ""
            result.lat = geo.latitude or 0
            result.lon = geo.longitude or 0
            result.timezone = geo.timezone or ""

        raw_asn = self._store.query(DatabaseKind.asn, ip)
        if raw_asn is not None:
            network = NetworkRecord.from_maxmind(raw_asn)
            found = found or network.has_data()
            result.as_ = network.as_label
            result.isp = network.organization or ""
            result.org = network.organization or ""

        if not found:
            result.status = "fail"
            result.message = NOT_FOUND_MESSAGE
        return result
