"""
Customer provisioning and reads.

Customers are always created as PROSPECT; ``lifecycle_status`` is never
writable here. Every later status change goes through
``lifecycle_service.transition``.
"""

import logging

from practicehub.core.exceptions import ValidationError
from practicehub.models import db
from practicehub.models.customer import CUSTOMER_TYPES, Customer, CustomerContact, LifecycleStatus
from practicehub.services.helpers.scoped_queries import get_scoped
from practicehub.services.helpers.transactions import check_expected_version, commit_or_conflict
from practicehub.utils.errors import E

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("name", "email", "custom_fields")


def _validate_type(customer_type):
    if customer_type not in CUSTOMER_TYPES:
        raise ValidationError(
            f"customer_type must be one of {sorted(CUSTOMER_TYPES)}",
            code=E.VALIDATION_INVALID,
        )


def create_customer(
    tenant_id: int,
    name: str,
    *,
    email: str | None = None,
    customer_type: str = "COMPANY",
    custom_fields: dict | None = None,
    contacts: list[dict] | None = None,
    actor_id: str | None = None,
) -> Customer:
    if not name or not name.strip():
        raise ValidationError("Customer name is required", code=E.VALIDATION_REQUIRED)
    _validate_type(customer_type)
    if custom_fields is not None and not isinstance(custom_fields, dict):
        raise ValidationError("custom_fields must be an object", code=E.VALIDATION_INVALID)

    customer = Customer(
        tenant_id=tenant_id,
        name=name.strip(),
        email=email,
        customer_type=customer_type,
        lifecycle_status=LifecycleStatus.PROSPECT.value,
        custom_fields=custom_fields or {},
        created_by=actor_id,
    )
    for contact in contacts or []:
        if not (contact.get("name") or "").strip():
            raise ValidationError("Contact name is required", code=E.VALIDATION_REQUIRED)
        customer.contacts.append(CustomerContact(
            tenant_id=tenant_id,
            name=contact["name"].strip(),
            email=contact.get("email"),
            is_primary=bool(contact.get("is_primary", False)),
        ))
    db.session.add(customer)
    db.session.commit()
    logger.info("Customer %s created", customer.id,
                extra={"tenant_id": tenant_id, "customer_id": customer.id})
    return customer


def update_customer(
    tenant_id: int,
    customer_id: int,
    data: dict,
    *,
    expected_version: int | None = None,
) -> Customer:
    """Update name, email or custom fields. Status is not accepted here."""
    if "lifecycle_status" in data:
        raise ValidationError(
            "lifecycle_status can only change through a lifecycle transition",
            code=E.VALIDATION_CONSTRAINT,
        )
    customer = get_scoped(Customer, customer_id, tenant_id=tenant_id)
    check_expected_version(customer, expected_version, "Customer")

    if "name" in data and not (data["name"] or "").strip():
        raise ValidationError("Customer name is required", code=E.VALIDATION_REQUIRED)
    if "custom_fields" in data and not isinstance(data["custom_fields"], dict):
        raise ValidationError("custom_fields must be an object", code=E.VALIDATION_INVALID)

    for field in _UPDATABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == "name":
            value = value.strip()
        elif field == "custom_fields":
            # JSON columns only notice reassignment
            value = {**(customer.custom_fields or {}), **value}
        setattr(customer, field, value)

    commit_or_conflict("Customer", customer_id)
    return customer


def add_contact(tenant_id: int, customer_id: int, name: str, email: str | None = None,
                is_primary: bool = False) -> CustomerContact:
    customer = get_scoped(Customer, customer_id, tenant_id=tenant_id)
    if not name or not name.strip():
        raise ValidationError("Contact name is required", code=E.VALIDATION_REQUIRED)
    contact = CustomerContact(
        tenant_id=tenant_id, customer_id=customer.id,
        name=name.strip(), email=email, is_primary=is_primary,
    )
    db.session.add(contact)
    db.session.commit()
    return contact


def get_customer(tenant_id: int, customer_id: int) -> Customer:
    return get_scoped(Customer, customer_id, tenant_id=tenant_id)


def list_customers(tenant_id: int, *, status: str | None = None):
    q = Customer.query_for_tenant(tenant_id)
    if status:
        try:
            q = q.filter_by(lifecycle_status=LifecycleStatus(status).value)
        except ValueError:
            raise ValidationError(f"Unknown lifecycle status: {status}", code=E.VALIDATION_INVALID) from None
    return q.order_by(Customer.name, Customer.id)
