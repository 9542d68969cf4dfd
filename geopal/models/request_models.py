from pydantic import BaseModel, Field, field_validator


class LocationRequest(BaseModel):
    """Query parameters for the location endpoint.

    If `ip` is provided, the service looks up that address. If it is omitted
    or blank, the caller's address is derived from the request instead.

    Unlike a typical validated query, malformed addresses are accepted here and
    reported in the response body with `status: fail`.
    """

    ip: str | None = Field(
        default=None,
        description="IPv4 or IPv6 address to look up. If omitted, the client's IP is used.",
        examples=["8.8.8.8", "2001:4860:4860::8888"],
    )

    @field_validator("ip", mode="before")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value_str = str(value).strip()
        return value_str or None
