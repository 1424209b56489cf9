"""Error mapping for the track HTTP endpoints."""

import functools
import logging
from collections.abc import Callable

from fastapi import HTTPException, status

from core.exceptions import (
    ResourceNotFoundError,
    TrackPersistenceError,
    TrackPipelineError,
    ValidationError,
)

# Checked in order; the first matching class wins.
ERROR_STATUS_CODES: tuple[tuple[type[TrackPipelineError], int, int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST, logging.WARNING),
    (ResourceNotFoundError, status.HTTP_404_NOT_FOUND, logging.INFO),
    (TrackPersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR, logging.ERROR),
)


def status_for(error: TrackPipelineError) -> tuple[int, int]:
    """HTTP status code and log level for a pipeline error."""
    for error_type, status_code, level in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code, level
    return status.HTTP_500_INTERNAL_SERVER_ERROR, logging.ERROR


def api_route(logger: logging.Logger):
    """
    Decorator for track endpoints.

    ``HTTPException`` passes through untouched. Pipeline errors become an
    ``HTTPException`` whose detail is the error message, with the status from
    :data:`ERROR_STATUS_CODES`; anything else is logged with its traceback
    and returned as a 500.

    Usage:
        @router.get("/api/tracks/example")
        @api_route(logger)
        async def my_endpoint():
            return result
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except HTTPException:
                raise
            except TrackPipelineError as e:
                status_code, level = status_for(e)
                logger.log(
                    level,
                    "%s failed with %s: %s",
                    func.__name__,
                    type(e).__name__,
                    e.message,
                    exc_info=level >= logging.ERROR,
                )
                raise HTTPException(status_code=status_code, detail=e.message) from e
            except Exception as e:
                logger.exception("Unexpected error in %s", func.__name__)
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail=str(e),
                ) from e

        return wrapper

    return decorator
