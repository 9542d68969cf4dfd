from fastapi import Request, status
from fastapi.responses import JSONResponse

from geopal.logger import logger
from geopal.lookup import INTERNAL_ERROR_MESSAGE
from geopal.models.response_models import ErrorResponse


def build_error_response(error: str | None) -> JSONResponse:
    """Structured 500 body shared by the location endpoint and the catch-all handler."""
    content = ErrorResponse(message=INTERNAL_ERROR_MESSAGE, error=error)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content.model_dump(),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected errors to return a structured 500 response."""
    logger.exception(
        "Unhandled exception while processing request: "
        f"{repr(exc)} path={request.url.path} method={request.method}"
    )
    return build_error_response(str(exc))
