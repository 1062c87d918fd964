"""
Gatehouse — Error Diagnostics Routes
======================================

What:  Endpoints that fail on purpose, one per failure class, so the error
       contract can be checked end to end against a running service.
When:  Mounted under /api/v1/test-error only in development and test
       environments (see main.create_app).

Route Inventory:
    GET  /test-error/generic-error                → 500 unclassified
    GET  /test-error/bad-request                  → 400 framework HTTP error
    GET  /test-error/internal-server-error        → 500 framework HTTP error
    POST /test-error/validation-error             → 422 request validation
    GET  /test-error/persistence-error-simulation → 409 unique constraint
    GET  /test-error/record-not-found             → 404 SQLAlchemy NoResultFound
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import NoResultFound

from gatehouse.exceptions import PersistenceError
from gatehouse.schemas.errors import ErrorResponse

router = APIRouter(prefix="/test-error", tags=["Diagnostics"])


class ApplicantName(BaseModel):
    model_config = {"extra": "forbid"}

    first: str = Field(min_length=1, max_length=100)
    last: str = Field(min_length=1, max_length=100)


class VerificationProbe(BaseModel):
    """Shaped like a verification request; unknown fields are rejected."""

    model_config = {"extra": "forbid"}

    applicant: ApplicantName
    document_id: str = Field(min_length=4, max_length=64)


@router.get("/generic-error", responses={500: {"model": ErrorResponse}})
async def generic_error():
    raise RuntimeError("This is a generic error")


@router.get("/bad-request", responses={400: {"model": ErrorResponse}})
async def bad_request():
    raise HTTPException(status_code=400, detail="This is a bad request error")


@router.get("/internal-server-error", responses={500: {"model": ErrorResponse}})
async def internal_server_error():
    raise HTTPException(status_code=500, detail="This is an internal server error")


@router.post("/validation-error", responses={422: {"model": ErrorResponse}})
async def validation_error(body: VerificationProbe):
    return {
        "message": "This endpoint is for testing validation errors",
        "data": body.model_dump(),
    }


@router.get("/persistence-error-simulation", responses={409: {"model": ErrorResponse}})
async def persistence_error_simulation():
    raise PersistenceError(
        message="Database error",
        code="P2002",
        client_version="5.0.0",
        meta={"target": ["email"]},
    )


@router.get("/record-not-found", responses={404: {"model": ErrorResponse}})
async def record_not_found():
    raise NoResultFound("No row was found when one was required")
