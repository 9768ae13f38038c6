"""Shared request validation helpers for marketplace routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, TypeVar

from service_commons.exceptions import ServiceError

if TYPE_CHECKING:
    from fastapi import Request

_T = TypeVar("_T")

ACTOR_HEADER = "X-User-Id"


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure. An empty body is an empty object."""
    if raw_body == b"":
        return {}
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def require_actor(request: Request) -> str:
    """Identity of the caller, as asserted by the upstream auth gateway."""
    actor_id = request.headers.get(ACTOR_HEADER)
    if actor_id is None or not actor_id.strip():
        raise ServiceError(
            "UNAUTHORIZED",
            f"Missing {ACTOR_HEADER} header",
            401,
            {},
        )
    return actor_id


def require_component(component: _T | None, name: str) -> _T:
    if component is None:
        msg = f"{name} not initialized"
        raise RuntimeError(msg)
    return component


def extract_str(data: dict[str, Any], field_name: str) -> str:
    """Extract a required string field; blank-string checks are left to the service layer."""
    value = extract_optional_str(data, field_name)
    if value is None:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Missing required field: {field_name}",
            400,
            {},
        )
    return value


def extract_optional_str(data: dict[str, Any], field_name: str) -> str | None:
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Field '{field_name}' must be a string",
            400,
            {},
        )
    return value


def extract_int(data: dict[str, Any], field_name: str, *, error: str = "INVALID_PAYLOAD") -> int:
    """Extract a required integer field (booleans and floats rejected)."""
    value = extract_optional_int(data, field_name, error=error)
    if value is None:
        raise ServiceError(error, f"Missing required field: {field_name}", 400, {})
    return value


def extract_optional_int(
    data: dict[str, Any], field_name: str, *, error: str = "INVALID_PAYLOAD"
) -> int | None:
    value = data.get(field_name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ServiceError(error, f"Field '{field_name}' must be an integer", 400, {})
    return value


def query_int(request: Request, name: str, *, minimum: int) -> int | None:
    """Parse an optional integer query parameter."""
    raw = request.query_params.get(name)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be an integer", 400, {}) from exc
    if value < minimum:
        raise ServiceError("INVALID_PAYLOAD", f"{name} must be >= {minimum}", 400, {})
    return value


def query_bool(request: Request, name: str) -> bool:
    raw = request.query_params.get(name)
    if raw is None:
        return False
    if raw.lower() in ("true", "1"):
        return True
    if raw.lower() in ("false", "0"):
        return False
    raise ServiceError("INVALID_PAYLOAD", f"{name} must be true or false", 400, {})


def extract_optional_bool(data: dict[str, Any], field_name: str) -> bool | None:
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Field '{field_name}' must be a boolean",
            400,
            {},
        )
    return value
