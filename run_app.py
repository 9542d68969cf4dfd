import uvicorn

from geopal.config import Settings
from geopal.logger import build_log_config


def main() -> None:
    """Run the GeoPal FastAPI application with uvicorn."""
    settings = Settings.from_env()
    uvicorn.run(
        "geopal.main:app",
        host=settings.host,
        port=settings.port,
        log_config=build_log_config(),
    )


if __name__ == "__main__":
    main()
