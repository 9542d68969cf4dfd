from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from geopal.config import Settings
from geopal.exception_handlers import build_error_response, unhandled_exception_handler
from geopal.ip_utils import extract_client_ip, normalize_ip
from geopal.logger import logger
from geopal.lookup import LookupService
from geopal.models.common import DatabaseKind
from geopal.models.request_models import LocationRequest
from geopal.models.response_models import (
    DatabasesStatus,
    EndpointPaths,
    HealthResponse,
    LocationResponse,
    ServiceDescriptor,
)
from geopal.refresh import RefreshOrchestrator
from geopal.scheduler import RefreshScheduler
from geopal.store import DatabaseStore

SERVICE_NAME = "GeoPal"
LOCATION_PATH = "/api/location"
HEALTH_PATH = "/health"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load the databases, start the refresh schedule, and tear both down on exit."""
    settings = Settings.from_env()
    store = DatabaseStore(settings.data_dir)
    orchestrator = RefreshOrchestrator(settings, store)
    logger.info(f"Starting {SERVICE_NAME} server data_dir={settings.data_dir}")

    await orchestrator.initialize()
    scheduler = RefreshScheduler(settings.cron_schedule, orchestrator.run_cycle)
    scheduler.start()

    app.state.settings = settings
    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.scheduler = scheduler
    logger.info(f"{SERVICE_NAME} ready location={LOCATION_PATH} health={HEALTH_PATH}")
    try:
        yield
    finally:
        scheduler.shutdown()
        store.close()


app = FastAPI(
    title=f"{SERVICE_NAME} IP Geolocation Service",
    version="0.1.0",
    description="Geolocation service using MaxMind databases",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)
app.add_exception_handler(Exception, unhandled_exception_handler)


def get_database_store(request: Request) -> DatabaseStore:
    """Dependency returning the store created during application startup."""
    return request.app.state.store


def get_lookup_service(store: Annotated[DatabaseStore, Depends(get_database_store)]) -> LookupService:
    return LookupService(store)


@app.get(
    "/",
    tags=["meta"],
    response_model=ServiceDescriptor,
    status_code=status.HTTP_200_OK,
    summary="Service descriptor",
)
async def root() -> ServiceDescriptor:
    return ServiceDescriptor(
        name=SERVICE_NAME,
        description="Geolocation service using MaxMind databases",
        endpoints=EndpointPaths(location=LOCATION_PATH, health=HEALTH_PATH),
    )


@app.get(
    HEALTH_PATH,
    tags=["health"],
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
)
async def health(store: Annotated[DatabaseStore, Depends(get_database_store)]) -> HealthResponse:
    """Report which databases are loaded and when the City database was last written."""
    last_update = store.last_modified(DatabaseKind.city)
    return HealthResponse(
        status="ok",
        databases=DatabasesStatus(
            city=store.is_loaded(DatabaseKind.city),
            asn=store.is_loaded(DatabaseKind.asn),
        ),
        last_update=last_update.isoformat(timespec="milliseconds").replace("+00:00", "Z") if last_update else None,
    )


@app.get(
    LOCATION_PATH,
    tags=["ip"],
    response_model=LocationResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Look up geolocation information for an IP address.",
    responses={status.HTTP_500_INTERNAL_SERVER_ERROR: {"description": "Unexpected internal error"}},
)
def location(
    request: Request,
    query: Annotated[LocationRequest, Depends()],
    lookup_service: Annotated[LookupService, Depends(get_lookup_service)],
) -> LocationResponse | JSONResponse:
    """Look up geolocation information for either a specific IP or the caller's IP.

    - If `query.ip` is provided, that IP is used.
    - Otherwise the client's IP is taken from `CF-Connecting-IP`,
      `X-Forwarded-For`, `X-Real-IP` or the connection peer, in that order.

    Invalid, private and unknown addresses still return HTTP 200 with
    `status: fail`; only unexpected errors produce HTTP 500.
    """
    peer_host = request.client.host if request.client else None
    ip = normalize_ip(extract_client_ip(query.ip, request.headers, peer_host))
    logger.debug(
        f"Performing IP lookup path={request.url.path} ip={ip} explicit={query.ip is not None} peer={peer_host}"
    )

    result = lookup_service.locate(ip)
    if result.status == "error":
        return build_error_response(result.error)
    if result.status == "fail":
        logger.info(f"IP lookup failed ip={ip} message={result.message!r}")
    return result
