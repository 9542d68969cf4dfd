from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class LocationResponse(BaseModel):
    """Response model for the location endpoint.

    Field names follow the public JSON contract (camelCase, `as`, `zip`);
    fields that were not populated are left out of the serialized body.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["success", "fail", "error"]
    query: str
    message: str | None = None
    note: str | None = None
    error: str | None = None
    country: str | None = None
    country_code: str | None = Field(default=None, alias="countryCode")
    region: str | None = None
    region_name: str | None = Field(default=None, alias="regionName")
    city: str | None = None
    zip: str | None = None
    lat: float | None = None
    lon: float | None = None
    timezone: str | None = None
    as_: str | None = Field(default=None, alias="as")
    isp: str | None = None
    org: str | None = None


class DatabasesStatus(BaseModel):
    """Which database kinds currently have a loaded handle."""

    city: bool
    asn: bool


class HealthResponse(BaseModel):
    """Response model for the health check endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    status: str
    databases: DatabasesStatus
    last_update: str | None = Field(default=None, alias="lastUpdate")


class EndpointPaths(BaseModel):
    location: str
    health: str


class ServiceDescriptor(BaseModel):
    """Response model for the root endpoint."""

    name: str
    description: str
    endpoints: EndpointPaths


class ErrorResponse(BaseModel):
    """Body returned with HTTP 500 for unexpected errors."""

    status: Literal["error"] = "error"
    message: str
    error: str | None = None
