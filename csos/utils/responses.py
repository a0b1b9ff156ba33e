"""
JSON response helpers.

Every handler answers with either {"success": true, "message"?, "data"} or
{"error": "..."} so the frontend can render results and alert banners the
same way everywhere.
"""
from typing import Any, Optional

from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from csos.utils.error_handling import AuthenticationError, AuthorizationError

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]
CORS_ALLOW_METHODS = ["POST", "GET", "OPTIONS", "PUT", "DELETE"]


def json_response(data: Any, status: int = 200) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(data), status_code=status)


def error_response(message: str, status: int = 400) -> JSONResponse:
    return json_response({"error": message}, status)


def success_response(data: Any, message: Optional[str] = None) -> JSONResponse:
    body = {"success": True}
    if message:
        body["message"] = message
    body["data"] = data
    return json_response(body)


def auth_error_response(error: Exception) -> JSONResponse:
    """Map gate failures to 401 (who are you) or 400 (not allowed)."""
    if isinstance(error, AuthenticationError):
        return error_response(str(error), 401)
    if isinstance(error, AuthorizationError):
        return error_response(str(error), 400)
    raise TypeError(f"Not an auth error: {error!r}")
