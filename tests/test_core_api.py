import logging

import pytest
from fastapi import HTTPException, status

from core.api import api_route, status_for
from core.exceptions import (
    InvalidGenerationModeError,
    ResourceNotFoundError,
    TrackPersistenceError,
    TrackPipelineError,
    ValidationError,
)

logger = logging.getLogger("tests.core_api")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("exc", "expected_status", "expected_detail"),
    [
        (ValidationError("bad input"), status.HTTP_400_BAD_REQUEST, "bad input"),
        (
            InvalidGenerationModeError("Unknown generation mode: 'weekly'"),
            status.HTTP_400_BAD_REQUEST,
            "Unknown generation mode: 'weekly'",
        ),
        (
            ResourceNotFoundError("missing"),
            status.HTTP_404_NOT_FOUND,
            "missing",
        ),
        (
            TrackPersistenceError("write failed"),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "write failed",
        ),
    ],
)
async def test_api_route_maps_domain_exceptions(
    exc: Exception,
    expected_status: int,
    expected_detail: str,
) -> None:
    @api_route(logger)
    async def handler():
        raise exc

    with pytest.raises(HTTPException) as raised:
        await handler()

    assert raised.value.status_code == expected_status
    assert raised.value.detail == expected_detail


@pytest.mark.asyncio
async def test_api_route_allows_http_exception_passthrough() -> None:
    @api_route(logger)
    async def handler():
        raise HTTPException(status_code=418, detail="nope")

    with pytest.raises(HTTPException) as raised:
        await handler()

    assert raised.value.status_code == 418
    assert raised.value.detail == "nope"


@pytest.mark.asyncio
async def test_api_route_wraps_unexpected_exception() -> None:
    @api_route(logger)
    async def handler():
        raise ValueError("boom")

    with pytest.raises(HTTPException) as raised:
        await handler()

    assert raised.value.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert raised.value.detail == "boom"


def test_status_for_prefers_the_most_specific_mapping() -> None:
    assert status_for(InvalidGenerationModeError("weekly")) == (
        status.HTTP_400_BAD_REQUEST,
        logging.WARNING,
    )
    assert status_for(TrackPipelineError("other")) == (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        logging.ERROR,
    )
