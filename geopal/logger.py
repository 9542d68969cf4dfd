import os
from logging import config, getLogger

LOGGER_NAME = "geopal"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()  # DEBUG, WARNING, ERROR


def build_log_config(level: str = LOG_LEVEL) -> dict:
    """Logging config shared by the app logger and the uvicorn server.

    `run_app.py` hands the same dict to uvicorn so server startup/shutdown
    lines and access logs use the formatting of the application logs.
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(levelprefix)s %(asctime)s [%(name)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": '%(levelprefix)s %(asctime)s [access] %(client_addr)s "%(request_line)s" %(status_code)s',
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "default": {"class": "logging.StreamHandler", "formatter": "default", "stream": "ext://sys.stderr"},
            "access": {"class": "logging.StreamHandler", "formatter": "access", "stream": "ext://sys.stdout"},
        },
        "loggers": {
            LOGGER_NAME: {"handlers": ["default"], "level": level, "propagate": False},
            # Server lifecycle messages ("Uvicorn running on ...") and tracebacks.
            "uvicorn.error": {"handlers": ["default"], "level": level, "propagate": False},
            "uvicorn.access": {"handlers": ["access"], "level": level, "propagate": False},
            "apscheduler": {"handlers": ["default"], "level": "WARNING", "propagate": False},
        },
    }


config.dictConfig(build_log_config())

logger = getLogger(LOGGER_NAME)
