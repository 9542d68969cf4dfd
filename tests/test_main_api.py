import os
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from geopal.lookup import NOT_LOADED_MESSAGE
from geopal.main import app, get_database_store, get_lookup_service
from geopal.models.common import DatabaseKind
from geopal.store import DatabaseStore
from tests.common import ASN_RECORD, CITY_RECORD, FakeDatabase, make_store

IP = "185.223.152.25"


class _ExplodingLookupService:
    """Test double whose lookups always fail unexpectedly."""

    def locate(self, ip: str | None) -> None:
        raise RuntimeError("lookup exploded")


@pytest.fixture
def store(tmp_path) -> DatabaseStore:
    return make_store(
        tmp_path,
        city=FakeDatabase(records={IP: CITY_RECORD}),
        asn=FakeDatabase(records={IP: ASN_RECORD}),
    )


@pytest.fixture
def client(store: DatabaseStore) -> Iterator[TestClient]:
    app.dependency_overrides[get_database_store] = lambda: store
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


def test_root_describes_endpoints(client: TestClient) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {
        "name": "GeoPal",
        "description": "Geolocation service using MaxMind databases",
        "endpoints": {"location": "/api/location", "health": "/health"},
    }


def test_location_for_explicit_ip(client: TestClient) -> None:
    response = client.get("/api/location", params={"ip": IP})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["query"] == IP
    assert body["country"] == "United States"
    assert body["countryCode"] == "US"
    assert body["regionName"] == "California"
    assert body["city"] == "Los Angeles"
    assert body["lat"] == pytest.approx(34.0544)
    assert body["lon"] == pytest.approx(-118.244)
    assert body["as"] == "AS396356 Latitude.sh"
    assert body["isp"] == "Latitude.sh"
    assert body["org"] == "Latitude.sh"
    assert "message" not in body


def test_location_strips_ipv4_mapped_prefix(client: TestClient) -> None:
    response = client.get("/api/location", params={"ip": f"::ffff:{IP}"})

    assert response.json()["query"] == IP


def test_location_uses_forwarded_headers(client: TestClient) -> None:
    response = client.get("/api/location", headers={"X-Forwarded-For": f"{IP}, 10.0.0.1"})

    body = response.json()
    assert body["status"] == "success"
    assert body["query"] == IP


def test_location_prefers_cloudflare_header(client: TestClient) -> None:
    response = client.get(
        "/api/location",
        headers={"CF-Connecting-IP": IP, "X-Forwarded-For": "8.8.8.8", "X-Real-IP": "9.9.9.9"},
    )

    assert response.json()["query"] == IP


def test_location_invalid_ip_is_200_fail(client: TestClient) -> None:
    response = client.get("/api/location", params={"ip": "not-an-ip"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "fail"
    assert body["query"] == "not-an-ip"
    assert body["message"] == "Invalid or missing IP address"


def test_location_private_ip_is_200_fail(client: TestClient) -> None:
    response = client.get("/api/location", params={"ip": "192.168.1.1"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "fail"
    assert body["message"] == "Cannot geolocate private/local IP addresses"
    assert "note" in body


def test_location_not_found(client: TestClient) -> None:
    response = client.get("/api/location", params={"ip": "8.8.8.8"})

    body = response.json()
    assert response.status_code == 200
    assert body == {
        "status": "fail",
        "query": "8.8.8.8",
        "message": "No geolocation data found for this IP address",
    }


def test_location_without_databases(tmp_path) -> None:
    app.dependency_overrides[get_database_store] = lambda: DatabaseStore(tmp_path)
    try:
        response = TestClient(app).get("/api/location", params={"ip": "8.8.8.8"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json()["message"] == NOT_LOADED_MESSAGE


def test_location_malformed_record_returns_500(client: TestClient, store: DatabaseStore) -> None:
    store.swap(DatabaseKind.city, FakeDatabase(records={IP: {"subdivisions": "CA"}}))

    response = client.get("/api/location", params={"ip": IP})

    assert response.status_code == 500
    body = response.json()
    assert body["status"] == "error"
    assert body["message"] == "Internal server error"
    assert body["error"]


def test_unexpected_exception_returns_structured_500(client: TestClient) -> None:
    app.dependency_overrides[get_lookup_service] = lambda: _ExplodingLookupService()

    response = client.get("/api/location", params={"ip": IP})

    assert response.status_code == 500
    assert response.json() == {
        "status": "error",
        "message": "Internal server error",
        "error": "lookup exploded",
    }


def test_health_reports_loaded_databases(client: TestClient, store: DatabaseStore) -> None:
    path = store.path_for(DatabaseKind.city)
    path.write_bytes(b"db")
    os.utime(path, (1_700_000_000, 1_700_000_000))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "databases": {"city": True, "asn": True},
        "lastUpdate": "2023-11-14T22:13:20.000Z",
    }


def test_health_city_flag_is_independent_of_asn(client: TestClient, store: DatabaseStore) -> None:
    store.swap(DatabaseKind.city, None)

    body = client.get("/health").json()
    assert body["databases"] == {"city": False, "asn": True}
    assert body["lastUpdate"] is None

    store.swap(DatabaseKind.city, FakeDatabase())
    store.swap(DatabaseKind.asn, None)

    body = client.get("/health").json()
    assert body["databases"] == {"city": True, "asn": False}


@pytest.mark.parametrize("path", ["/api/location", "/health", "/anything"])
def test_cors_preflight_is_answered_for_every_path(client: TestClient, path: str) -> None:
    response = client.options(
        path,
        headers={"Origin": "https://example.com", "Access-Control-Request-Method": "GET"},
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "GET" in response.headers["access-control-allow-methods"]


def test_cors_headers_on_simple_request(client: TestClient) -> None:
    response = client.get("/health", headers={"Origin": "https://example.com"})

    assert response.headers["access-control-allow-origin"] == "*"


def test_lifespan_starts_and_stops_service(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("MAXMIND_LICENSE_KEY", raising=False)
    monkeypatch.delenv("CRON_SCHEDULE", raising=False)

    with TestClient(app) as client:
        scheduler = app.state.scheduler
        assert scheduler.running
        assert scheduler.next_run_time.day == 1

        body = client.get("/health").json()
        assert body["databases"] == {"city": False, "asn": False}
        assert body["lastUpdate"] is None

    assert not scheduler.running
    assert (tmp_path / "data").is_dir()
