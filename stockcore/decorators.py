# Overview: Request decorators that establish the authenticated actor for API routes.

from functools import wraps

from flask import current_app, jsonify, request

from .services.tenant_service import ActorContext, set_actor


def _header_int(name: str):
    value = request.headers.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


def require_actor(f):
    """
    Require an authenticated actor and establish tenant context.

    Authentication happens in the gateway in front of this service, which
    injects the verified identity as headers:
    - X-Tenant-Id: the actor's tenant (REQUIRED)
    - X-Actor-Id: the user id
    - X-Actor-Role: the actor's role ("system" for maintenance callers)

    Sets g.actor to an ActorContext. Every service call still compares the
    tenant it is asked to act on against g.actor.tenant_id.

    SECURITY: Returns 401 if identity headers are not trusted or the tenant
    header is missing/invalid.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_app.config.get("TRUST_IDENTITY_HEADERS"):
            return jsonify({"error": "Authentication required"}), 401

        tenant_id = _header_int("X-Tenant-Id")
        if tenant_id is None:
            return jsonify({"error": "Invalid session: missing tenant context"}), 401

        set_actor(ActorContext(
            tenant_id=tenant_id,
            actor_id=_header_int("X-Actor-Id"),
            role=request.headers.get("X-Actor-Role") or None,
        ))
        return f(*args, **kwargs)

    return decorated_function
