from typing import Any, Optional

from fastapi.encoders import jsonable_encoder


def success_response(data: Any = None, message: Optional[str] = None) -> dict:
    """Wrap a payload in the ``{success, message?, data?}`` envelope."""
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = jsonable_encoder(data, by_alias=True)
    return body


def error_response(message: str, error: Optional[str] = None, details: Any = None) -> dict:
    body = {"success": False, "message": message}
    if error:
        body["error"] = error
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return body
