"""
Tenant-scoped query helpers.

Every get-by-id in the services goes through ``get_scoped`` instead of
``db.session.get(Model, pk)``. A bare ``get`` ignores tenant_id and would
let one practice read another's customers.

Usage:
    customer = get_scoped(Customer, customer_id, tenant_id=tenant_id)

    # Nested scope: the period must belong to this retainer as well
    period = get_scoped(RetainerPeriod, period_id, tenant_id=tenant_id,
                        retainer_id=retainer_id)
"""

import logging

from sqlalchemy import select

from practicehub.core.exceptions import NotFoundError
from practicehub.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: int,
    *,
    tenant_id: int | None = None,
    retainer_id: int | None = None,
):
    """Fetch a single entity by PK with mandatory tenant scope.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError → HTTP 404.

    Raises:
        ValueError: tenant_id missing, or a scope names a column the model
                    does not have.
        NotFoundError: entity missing or outside the given scope.
    """
    if tenant_id is None:
        raise ValueError(
            f"{model.__name__} id={pk} requires tenant_id. "
            "Unscoped lookups bypass tenant isolation."
        )

    scopes = {"tenant_id": tenant_id, "retainer_id": retainer_id}
    scopes = {k: v for k, v in scopes.items() if v is not None}

    missing = sorted(field for field in scopes if not hasattr(model, field))
    if missing:
        raise ValueError(f"{model.__name__} has no scope column(s) {missing}")

    stmt = select(model).where(model.id == pk)
    for field, value in scopes.items():
        stmt = stmt.where(getattr(model, field) == value)

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug("get_scoped: %s id=%s not found in scope %s", model.__name__, pk, scopes)
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    return result
