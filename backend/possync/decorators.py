# Overview: Request decorators for API routes (tenant context from the transport layer).

from functools import wraps
from flask import request, jsonify, g

from .services.tenant_service import TenantNotFound, require_organization

# Set by the upstream gateway after it verified the caller's credentials
TENANT_HEADER = "X-Org-Id"
ACTOR_HEADER = "X-Actor-Id"


def require_tenant_context(f):
    """
    Establish tenant context from the gateway-resolved (tenant, actor) pair.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.org_id: The organization ID (tenant context) - REQUIRED
    - g.actor_id: The acting user's identity (may be None for service callers)

    TRUST: The core does not authenticate. It trusts the tenant scoping it is
    handed and only checks that the organization exists.

    Returns 401 if the tenant header is missing or malformed, 404 if the
    organization does not exist or is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_org_id = request.headers.get(TENANT_HEADER)
        if not raw_org_id:
            return jsonify({"error": "Tenant context required"}), 401

        try:
            org_id = int(raw_org_id)
        except ValueError:
            return jsonify({"error": "Invalid tenant context"}), 401

        try:
            require_organization(org_id)
        except TenantNotFound:
            return jsonify({"error": "Organization not found"}), 404

        g.org_id = org_id
        g.actor_id = request.headers.get(ACTOR_HEADER) or None

        return f(*args, **kwargs)

    return decorated_function
