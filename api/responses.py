"""
WEBCORE - Standard API Response

Every endpoint answers with the same envelope:

    {"httpCode": 401, "errorCode": 2, "errorName": "UNAUTHORIZED",
     "message": "...", "data": ..., "details": ..., "stack": [...]}

Empty fields are omitted. ``stack`` is only filled in development.
"""
import traceback
from typing import Any, List, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.errors import WebcoreError


class APIResponse(BaseModel):
    """Standard response envelope."""

    model_config = ConfigDict(populate_by_name=True)

    http_code: int = Field(default=200, alias="httpCode")
    error_code: Optional[int] = Field(default=None, alias="errorCode")
    error_name: Optional[str] = Field(default=None, alias="errorName")
    message: Optional[str] = None
    data: Any = None
    details: Optional[Any] = None
    stack: Optional[List[str]] = None

    def to_json_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.http_code,
            content=self.model_dump(by_alias=True, exclude_none=True, mode="json"),
        )


def success(data: Any = None, message: Optional[str] = None) -> APIResponse:
    return APIResponse(data=data, message=message)


def error(
    http_code: int,
    error_code: int,
    error_name: str,
    message: str,
    details: Any = None,
    stack: Optional[List[str]] = None,
) -> APIResponse:
    return APIResponse(
        http_code=http_code,
        error_code=error_code,
        error_name=error_name,
        message=message,
        details=details or None,
        stack=stack,
    )


def from_exception(exc: WebcoreError, include_stack: bool = False) -> APIResponse:
    """Render a webcore error, with its traceback when asked to."""
    stack = None
    if include_stack and exc.__traceback__ is not None:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).splitlines()

    return error(
        http_code=exc.status_code,
        error_code=int(exc.api_error),
        error_name=exc.api_error.name,
        message=exc.message,
        details=exc.details,
        stack=stack,
    )
