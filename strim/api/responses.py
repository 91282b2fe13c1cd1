"""{status, data, error?} envelope helpers shared by every route."""

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from strim.context import AppContext
from strim.db.schemas import ApiResponse


def envelope(
    status: int,
    data: Any = None,
    error: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Envelope response whose HTTP status matches the envelope status."""
    body: dict[str, Any] = {"status": status, "data": jsonable_encoder(data, by_alias=True)}
    if error is not None:
        body["error"] = error
    return JSONResponse(status_code=status, content=body, headers=headers)


def from_api_response(result: ApiResponse, headers: dict[str, str] | None = None) -> JSONResponse:
    """Envelope for an adapter result; failures get a default error message."""
    if result.ok:
        return envelope(result.status, result.data, headers=headers)
    status = result.status if result.status >= 400 else 502
    return envelope(status, None, result.error or "Upstream request failed")


def bad_request(error: str) -> JSONResponse:
    return envelope(400, None, error)


def check_source(context: AppContext, source: str | None, required: bool = True) -> JSONResponse | None:
    """400 envelope for a missing or unsupported source, else None."""
    if source is None:
        return bad_request("Missing required parameter: source") if required else None
    if not context.registry.is_supported(source):
        return bad_request(f"Unsupported source: {source}")
    return None
