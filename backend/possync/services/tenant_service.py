"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: Centralize tenant validation logic for reuse across services and routes.
Every unit of work is scoped to exactly one organization, and no query may
reach rows of another organization.

SECURITY INVARIANTS:
1. Every request handled by the core has g.org_id and g.actor_id set
   (resolved upstream by the transport/auth layer and trusted as-is)
2. Every tenant-owned query goes through scoped_query(model, org_id)
3. Lookups of another tenant's ids behave exactly like missing ids

USAGE:
    from possync.services.tenant_service import require_organization, scoped_query

    org = require_organization(g.org_id)
    tables = scoped_query(DiningTable, org.id).all()
"""

from flask import g

from ..extensions import db
from ..models import Organization


class TenantNotFound(Exception):
    """Raised when the organization does not exist or is deactivated."""
    def __init__(self, org_id):
        super().__init__(f"Organization {org_id} not found")
        self.org_id = org_id


class TenantContextMissing(Exception):
    """Raised when a request reaches the core without tenant context."""
    pass


def get_current_org_id() -> int:
    """
    Get current tenant's org_id from Flask g context.

    Raises TenantContextMissing if org_id not set. This should never happen
    after @require_tenant_context.
    """
    if not hasattr(g, 'org_id') or g.org_id is None:
        raise TenantContextMissing("Tenant context not established")
    return g.org_id


def get_current_actor_id() -> str | None:
    """Acting user identity forwarded by the transport layer (may be None)."""
    return getattr(g, 'actor_id', None)


def require_organization(org_id: int) -> Organization:
    """
    Load an active organization or raise TenantNotFound.

    Call this once at the top of every unit of work that takes an org_id
    from outside the core.
    """
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org or not org.is_active:
        raise TenantNotFound(org_id)
    return org


def scoped_query(model, org_id: int):
    """
    Return a query for `model` filtered to one organization.

    Every tenant-owned model carries org_id; callers add their own filters.
    """
    return db.session.query(model).filter(model.org_id == org_id)
