"""
api/responses.py -- Envelope rendering shared by routes and exception handlers.
"""

from __future__ import annotations

from collections.abc import Iterable

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.models import Envelope


def respond(status_code: int, message: str, data: Iterable[BaseModel] = (), headers: dict | None = None) -> JSONResponse:
    """Return a JSONResponse whose body is Envelope{status, message, data}."""
    envelope = Envelope[dict](
        status=status_code,
        message=message,
        data=[item.model_dump(mode="json") for item in data],
    )
    return JSONResponse(status_code=status_code, content=envelope.model_dump(mode="json"), headers=headers)
