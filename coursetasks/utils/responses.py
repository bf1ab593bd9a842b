from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(
    data: Any = None, message: Optional[str] = None, status_code: int = 200, **extra: Any
) -> JSONResponse:
    """Wrap a result in the ``{"success": true, "data": ..., "message": ...}`` envelope."""
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))
