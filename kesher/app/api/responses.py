"""
OperationResult to HTTP response mapping.
"""
from __future__ import annotations

import math

from fastapi.responses import JSONResponse

from kesher.errors import ErrorCode, OperationResult

STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.NOT_AVAILABLE: 404,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.BUSY: 409,
    ErrorCode.LOGGED_OUT: 409,
    ErrorCode.THROTTLED: 429,
    ErrorCode.INVALID_TARGET: 400,
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.TRANSPORT_UNREACHABLE: 502,
    ErrorCode.NOT_CONNECTED: 503,
    ErrorCode.CREDENTIAL_STORE_FAILURE: 503,
}


def respond(result: OperationResult, success_status: int = 200) -> JSONResponse:
    if result.success or result.error is None:
        return JSONResponse(status_code=success_status, content=result.to_dict())

    headers: dict[str, str] = {}
    if result.error.retry_after is not None:
        headers["Retry-After"] = str(math.ceil(result.error.retry_after))

    return JSONResponse(
        status_code=STATUS_CODES.get(result.error.code, 500),
        content=result.to_dict(),
        headers=headers,
    )
