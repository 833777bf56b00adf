# Overview: Request decorators for API routes.

from functools import wraps
from flask import current_app, request, jsonify, g


def require_tenant(f):
    """
    Require a tenant context and expose it as g.tenant_id.

    MULTI-TENANT: The upstream auth layer resolves the session cookie/JWT
    and forwards the tenant in TENANT_HEADER (default X-Tenant-Id). Routes
    never read tenant ids from request bodies.

    Returns 400 when the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        header_name = current_app.config.get("TENANT_HEADER", "X-Tenant-Id")
        tenant_id = (request.headers.get(header_name) or "").strip()

        if not tenant_id:
            return jsonify({
                "ok": False,
                "error": "missing_field",
                "message": "Missing tenant",
                "details": {"field": header_name},
            }), 400

        g.tenant_id = tenant_id
        return f(*args, **kwargs)

    return decorated_function
