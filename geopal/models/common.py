from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel

NAME_LOCALE = "en"


class DatabaseKind(str, Enum):
    """GeoLite2 database editions served by GeoPal."""

    city = "City"
    asn = "ASN"

    @property
    def edition_id(self) -> str:
        return f"GeoLite2-{self.value}"

    @property
    def filename(self) -> str:
        return f"{self.edition_id}.mmdb"

    @property
    def health_key(self) -> str:
        return self.name


class RefreshOutcome(str, Enum):
    """Result of one refresh attempt for a single database kind."""

    downloaded = "downloaded"
    skipped_no_credential = "skipped_no_credential"
    skipped_unauthorized = "skipped_unauthorized"
    failed_transient = "failed_transient"


def _names(section: Mapping[str, Any]) -> str | None:
    return (section.get("names") or {}).get(NAME_LOCALE)


class GeoRecord(BaseModel):
    """City-level result of a lookup. Every field is independently optional."""

    country_name: str | None = None
    country_code: str | None = None
    region_code: str | None = None
    region_name: str | None = None
    city: str | None = None
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timezone: str | None = None

    @classmethod
    def from_maxmind(cls, raw: Mapping[str, Any]) -> "GeoRecord":
        """Build a record from a raw GeoLite2-City entry.

        Only the most general subdivision is used for the region, and only
        English names are read.
        """
        country = raw.get("country") or {}
        subdivisions = raw.get("subdivisions") or [{}]
        subdivision = subdivisions[0]
        city = raw.get("city") or {}
        postal = raw.get("postal") or {}
        location = raw.get("location") or {}
        return cls(
            country_name=_names(country),
            country_code=country.get("iso_code"),
            region_code=subdivision.get("iso_code"),
            region_name=_names(subdivision),
            city=_names(city),
            postal_code=postal.get("code"),
            latitude=location.get("latitude"),
            longitude=location.get("longitude"),
            timezone=location.get("time_zone"),
        )

    def has_data(self) -> bool:
        return any(value not in (None, "") for value in self.model_dump().values())


class NetworkRecord(BaseModel):
    """Network ownership (ASN) result of a lookup."""

    as_number: int | None = None
    organization: str | None = None

    @classmethod
    def from_maxmind(cls, raw: Mapping[str, Any]) -> "NetworkRecord":
        """Build a record from a raw GeoLite2-ASN entry."""
        return cls(
            as_number=raw.get("autonomous_system_number"),
            organization=raw.get("autonomous_system_organization"),
        )

    @property
    def as_label(self) -> str:
        """E.g. `AS15169 Google LLC`."""
        number = "" if self.as_number is None else self.as_number
        return f"AS{number} {self.organization or ''}".strip()

    def has_data(self) -> bool:
        return self.as_number is not None or bool(self.organization)
