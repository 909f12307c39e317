# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services.cart_schemas import Actor, ROLES


def _header_int(name: str) -> int | None:
    raw = (request.headers.get(name) or "").strip()
    return int(raw) if raw.isdigit() else None


def require_tenant(f):
    """
    Establish tenant and actor context from the upstream auth gateway.

    Authentication happens outside this service; the gateway forwards:
    - X-Shop-Id: tenant (shop) id - REQUIRED
    - X-User-Id: acting user id - REQUIRED
    - X-User-Role: cashier | admin | super_admin (defaults to cashier)

    Sets g.shop_id and g.actor. Returns 401 when the context is missing or
    malformed; an unknown role never escalates, it is rejected.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        shop_id = _header_int("X-Shop-Id")
        user_id = _header_int("X-User-Id")
        if shop_id is None or user_id is None:
            return jsonify({"error": "Tenant context required"}), 401

        role = (request.headers.get("X-User-Role") or "cashier").strip().lower()
        if role not in ROLES:
            return jsonify({"error": f"Unknown role: {role}"}), 401

        g.shop_id = shop_id
        g.actor = Actor(user_id=user_id, role=role)
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Restrict a route (already wrapped by require_tenant) to the given roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None or actor.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "details": {"required_roles": list(roles)},
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
