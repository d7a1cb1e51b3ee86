"""JSON response envelopes for the HTTP API."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .models import OperationResult, PaginatedRows
from .utils.errors import ErrorKind, HTTP_STATUS_BY_KIND, OperationError


# bytea columns arrive as memoryview; render them the way psql prints bytea.
ROW_VALUE_ENCODERS = {
    memoryview: lambda value: "\\x" + value.tobytes().hex(),
    bytes: lambda value: "\\x" + value.hex(),
}


def _encode(content: Dict[str, Any]) -> Any:
    return jsonable_encoder(content, custom_encoder=ROW_VALUE_ENCODERS)


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def success_response(
    data: Any = None,
    message: str = "Operation successful",
    status_code: int = 200,
    meta: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "status": "success",
        "message": message,
        "timestamp": _timestamp(),
    }
    if data is not None:
        content["data"] = data
    if meta:
        content["meta"] = meta
    return JSONResponse(status_code=status_code, content=_encode(content))


def error_response(
    error: OperationError, debug: bool = False, status_code: Optional[int] = None
) -> JSONResponse:
    content = {"status": "error", **error.to_payload(debug), "timestamp": _timestamp()}
    return JSONResponse(
        status_code=status_code or error.status_code, content=_encode(content)
    )


def validation_response(errors: List[str], message: str = "Validation failed") -> JSONResponse:
    error = OperationError(kind=ErrorKind.VALIDATION, message=message, errors=errors)
    return error_response(error)


def render_result(result: OperationResult, debug: bool = False) -> JSONResponse:
    """Render a service result with the status code its outcome maps to."""
    if not result.ok:
        return error_response(result.error, debug)

    if isinstance(result.data, PaginatedRows):
        page = result.data
        return success_response(
            page.rows,
            result.message,
            result.status_code,
            meta={"table_name": page.table_name, "columns": page.columns, "pagination": page.pagination_meta()},
        )

    return success_response(result.data, result.message, result.status_code)


def unexpected_error_response(exc: Exception, debug: bool = False) -> JSONResponse:
    context: Dict[str, Any] = {}
    if debug:
        context = {"exception": type(exc).__name__, "message": str(exc)}
    error = OperationError(
        kind=ErrorKind.DATABASE, message="An unexpected error occurred", context=context
    )
    return error_response(error, debug, status_code=HTTP_STATUS_BY_KIND[ErrorKind.DATABASE])
