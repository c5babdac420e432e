from __future__ import annotations

import json
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"error": message, **extra}))


async def read_json_object(request: Request) -> dict[str, Any] | None:
    """Parsed JSON body, or None when the body is not a JSON object."""
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body or b"null")
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return payload if isinstance(payload, dict) else None
