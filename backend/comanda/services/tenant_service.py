# Overview: Service-layer operations for tenancy; tenant-scoped lookups that hide foreign rows as missing.

"""
Multi-Tenant Service: Scoped lookups

WHY: Every entity a request names (order, item, table, shift, supplier...)
must be fetched together with the caller's tenant_id. An id that exists
under another tenant gets exactly the same NotFoundError as an id that
does not exist at all, so clients cannot probe other tenants.

Cross-tenant hits are still logged server-side for security monitoring.
"""

from flask import current_app

from ..errors import NotFoundError
from ..extensions import db
from .concurrency import lock_for_update


def get_scoped(model, entity_id, tenant_id: int, *, label: str | None = None, lock: bool = False):
    """
    Fetch model by id within tenant_id or raise NotFoundError.

    Args:
        model: Mapped class with id and tenant_id columns
        entity_id: Primary key from client input
        tenant_id: Tenant of the authenticated caller
        label: Entity name used in the error message
        lock: SELECT ... FOR UPDATE the row
    """
    label = label or model.__name__
    if entity_id is None:
        raise NotFoundError(label)

    query = db.session.query(model).filter(model.id == entity_id, model.tenant_id == tenant_id)
    if lock:
        query = lock_for_update(query)
    entity = query.first()

    if entity is None:
        _log_cross_tenant_attempt(model, entity_id, tenant_id)
        raise NotFoundError(label)
    return entity


def find_scoped(model, entity_id, tenant_id: int):
    """Like get_scoped but returns None instead of raising."""
    if entity_id is None:
        return None
    return db.session.query(model).filter(model.id == entity_id, model.tenant_id == tenant_id).first()


def _log_cross_tenant_attempt(model, entity_id, tenant_id: int) -> None:
    owner = db.session.query(model.tenant_id).filter(model.id == entity_id).scalar()
    if owner is not None and owner != tenant_id:
        current_app.logger.warning(
            "CROSS_TENANT_ACCESS_DENIED entity=%s id=%s requested_by_tenant=%s",
            model.__tablename__, entity_id, tenant_id,
        )
