"""Domain errors and their translation into API responses."""

from fastapi import Request
from fastapi.responses import JSONResponse


class RecruitFlowError(Exception):
    """Base error; ``status_code`` is used when the error reaches the API layer."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(RecruitFlowError):
    status_code = 404


class ValidationFailure(RecruitFlowError):
    status_code = 400


class RemoteQueryError(RecruitFlowError):
    """A bulk or point query against the data store failed."""
    status_code = 503


class RelayError(RecruitFlowError):
    """A relay function could not complete its upstream call."""
    status_code = 400


class CommunicationError(RecruitFlowError):
    """A relay failed and no native fallback was available."""
    status_code = 502


async def recruitflow_error_handler(_: Request, exc: RecruitFlowError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
