"""
Gatehouse — API Root Route
============================

GET /api/v1/ returns a welcome payload pointing at the docs.
"""

from fastapi import APIRouter

from gatehouse.schemas.errors import COMMON_ERROR_RESPONSES, WelcomeResponse

router = APIRouter(tags=["App"])


@router.get(
    "/",
    response_model=WelcomeResponse,
    responses=COMMON_ERROR_RESPONSES,
    summary="Root endpoint",
)
async def welcome() -> WelcomeResponse:
    return WelcomeResponse(
        message="Welcome to Pulsefy/Soter API",
        version="v1",
        docs="/api/docs",
    )
