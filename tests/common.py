import io
import struct
import tarfile
from collections.abc import Mapping
from typing import Any

import httpx

from geopal.models.common import DatabaseKind
from geopal.store import DatabaseStore

CITY_RECORD: dict[str, Any] = {
    "city": {"names": {"en": "Los Angeles"}},
    "country": {"iso_code": "US", "names": {"en": "United States"}},
    "location": {"latitude": 34.0544, "longitude": -118.244, "time_zone": "America/Los_Angeles"},
    "postal": {"code": "90009"},
    "subdivisions": [{"iso_code": "CA", "names": {"en": "California"}}],
}

ASN_RECORD: dict[str, Any] = {
    "autonomous_system_number": 396356,
    "autonomous_system_organization": "Latitude.sh",
}


class FakeDatabase:
    """In-memory stand-in for an opened MaxMind database."""

    def __init__(self, records: Mapping[str, Any] | None = None, tag: str | None = None) -> None:
        self.records = dict(records or {})
        self.tag = tag
        self.closed = False

    def lookup(self, ip: str) -> Any:
        if self.tag is not None:
            return {"tag": self.tag}
        return self.records.get(ip)

    def close(self) -> None:
        self.closed = True


def make_store(tmp_path, city: FakeDatabase | None = None, asn: FakeDatabase | None = None) -> DatabaseStore:
    store = DatabaseStore(tmp_path)
    store.swap(DatabaseKind.city, city)
    store.swap(DatabaseKind.asn, asn)
    return store


def build_archive(
    kind: DatabaseKind,
    payload: bytes,
    build: str = "20240102",
    dirname: str | None = None,
) -> bytes:
    """Build a .tar.gz laid out like a GeoLite2 download: `<edition>_<build>/<edition>.mmdb`."""
    dirname = dirname or f"{kind.edition_id}_{build}"
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        directory = tarfile.TarInfo(dirname)
        directory.type = tarfile.DIRTYPE
        directory.mode = 0o755
        tar.addfile(directory)
        for name, data in ((kind.filename, payload), ("COPYRIGHT.txt", b"Database and Contents Copyright (c) MaxMind")):
            member = tarfile.TarInfo(f"{dirname}/{name}")
            member.size = len(data)
            member.mode = 0o644
            tar.addfile(member, io.BytesIO(data))
    return buffer.getvalue()


class ProviderStub:
    """httpx transport answering download requests per edition id.

    Each entry in `responses` is either a `(status_code, body)` tuple or an
    exception instance to raise.
    """

    def __init__(self, responses: Mapping[str, tuple[int, bytes] | Exception]) -> None:
        self.responses = dict(responses)
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses[request.url.params["edition_id"]]
        if isinstance(outcome, Exception):
            raise outcome
        status_code, body = outcome
        return httpx.Response(status_code, content=body)

    @property
    def requested_editions(self) -> list[str]:
        return [request.url.params["edition_id"] for request in self.requests]


# Minimal MaxMind DB writer, enough to produce a valid IPv4 database holding
# one record for every address whose first bit is 1 (128.0.0.0/1).
MMDB_METADATA_MARKER = b"\xab\xcd\xefMaxMind.com"


def _mmdb_control(type_id: int, size: int) -> bytes:
    if size < 29:
        size_bits, extra = size, b""
    elif size < 29 + 256:
        size_bits, extra = 29, bytes([size - 29])
    else:
        raise ValueError("value too large for test database")
    if type_id <= 7:
        return bytes([(type_id << 5) | size_bits]) + extra
    return bytes([size_bits, type_id - 7]) + extra


def _mmdb_uint(type_id: int, value: int) -> bytes:
    payload = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return _mmdb_control(type_id, len(payload)) + payload


def _mmdb_encode(value: Any) -> bytes:
    if isinstance(value, str):
        data = value.encode()
        return _mmdb_control(2, len(data)) + data
    if isinstance(value, float):
        return _mmdb_control(3, 8) + struct.pack(">d", value)
    if isinstance(value, int):
        return _mmdb_uint(6, value)
    if isinstance(value, Mapping):
        return _mmdb_control(7, len(value)) + b"".join(
            _mmdb_encode(key) + _mmdb_encode(item) for key, item in value.items()
        )
    if isinstance(value, list):
        return _mmdb_control(11, len(value)) + b"".join(_mmdb_encode(item) for item in value)
    raise TypeError(f"unsupported value {value!r}")


def build_mmdb(record: Mapping[str, Any], database_type: str, build_epoch: int = 1_704_153_600) -> bytes:
    node_count = 1
    # One node, 24-bit records: left (bit 0) is "not found", right points at offset 0 of the data section.
    tree = (node_count).to_bytes(3, "big") + (node_count + 16).to_bytes(3, "big")
    metadata = {
        "binary_format_major_version": _mmdb_uint(5, 2),
        "binary_format_minor_version": _mmdb_uint(5, 0),
        "build_epoch": _mmdb_uint(9, build_epoch),
        "database_type": _mmdb_encode(database_type),
        "description": _mmdb_encode({"en": "GeoPal test database"}),
        "ip_version": _mmdb_uint(5, 4),
        "languages": _mmdb_encode(["en"]),
        "node_count": _mmdb_uint(6, node_count),
        "record_size": _mmdb_uint(5, 24),
    }
    encoded_metadata = _mmdb_control(7, len(metadata)) + b"".join(
        _mmdb_encode(key) + value for key, value in metadata.items()
    )
    return tree + bytes(16) + _mmdb_encode(record) + MMDB_METADATA_MARKER + encoded_metadata
