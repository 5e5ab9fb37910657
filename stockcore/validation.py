from __future__ import annotations

from typing import Any

from flask import g, request

from .errors import ValidationError


def require_fields(payload: dict, *fields: str) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}", details={"missing": missing})


def coerce_int(value: Any, field: str) -> int | None:
    """
    Strict integer coercion for ids coming from JSON or query strings.

    Rejects bools, floats and scientific notation.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise ValidationError(f"{field} must be an integer", details={field: str(value)})


def query_int(name: str, *, required: bool = False, default: int | None = None) -> int | None:
    value = coerce_int(request.args.get(name), name)
    if value is None:
        if required:
            raise ValidationError(f"{name} query parameter required")
        return default
    return value


def request_tenant_id(payload: dict | None = None) -> int | None:
    """
    Tenant the request asks to act on.

    Defaults to the actor's tenant; an explicit tenant_id is passed through so
    the service layer rejects a mismatch with AccessDeniedError.
    """
    explicit = None
    if payload is not None:
        explicit = coerce_int(payload.get("tenant_id"), "tenant_id")
    if explicit is None:
        explicit = coerce_int(request.args.get("tenant_id"), "tenant_id")
    return explicit if explicit is not None else g.actor.tenant_id
