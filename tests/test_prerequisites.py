"""
tests/test_prerequisites.py — Prerequisite Gate.

Covers: field prerequisites per context, type-aware emptiness, structural
        rules per context, violation ordering and determinism, read-only
        behaviour, require_prerequisites, HTTP endpoint.
"""

import pytest
from sqlalchemy import event

from practicehub.core.exceptions import DependencyError, NotFoundError, ValidationError
from practicehub.models import db
from practicehub.models.customer import Customer, CustomerContact, LifecycleStatus
from practicehub.models.field_definition import FieldDefinition
from practicehub.services import checklist_service, prerequisite_service

ACTOR = "member-1"


def _field(tenant_id, slug, *, contexts, name=None, field_type="TEXT", sort_order=0, active=True):
    fd = FieldDefinition(
        tenant_id=tenant_id, entity_type="CUSTOMER", name=name or slug.replace("_", " ").title(),
        slug=slug, field_type=field_type, required_for_contexts=contexts,
        sort_order=sort_order, active=active,
    )
    db.session.add(fd)
    db.session.commit()
    return fd


def _add_contact(customer, email):
    db.session.add(CustomerContact(
        tenant_id=customer.tenant_id, customer_id=customer.id, name="Jo Finance", email=email,
    ))
    db.session.commit()


def _codes(result):
    return [v.code.value for v in result.violations]


# ═════════════════════════════════════════════════════════════════════════
# Field prerequisites
# ═════════════════════════════════════════════════════════════════════════

class TestFieldPrerequisites:
    def test_no_definitions_passes(self, tenant, make_customer):
        customer = make_customer()
        for context in prerequisite_service.PrerequisiteContext:
            if context.value in ("INVOICE_GENERATION", "PROPOSAL_SEND"):
                continue
            assert prerequisite_service.check(tenant.id, context, "CUSTOMER", customer.id).passed

    def test_missing_field_reported(self, tenant, make_customer):
        customer = make_customer()
        _field(tenant.id, "vat_number", contexts=["DOCUMENT_GENERATION"], name="VAT number")

        result = prerequisite_service.check(tenant.id, "DOCUMENT_GENERATION", "CUSTOMER", customer.id)

        assert not result.passed
        violation = result.violations[0]
        assert violation.code.value == "MISSING_FIELD"
        assert violation.field_slug == "vat_number"
        assert violation.entity_id == customer.id
        assert "VAT number" in violation.resolution

    def test_field_only_applies_to_its_contexts(self, tenant, make_customer):
        customer = make_customer()
        _field(tenant.id, "vat_number", contexts=["DOCUMENT_GENERATION"])
        assert prerequisite_service.check(tenant.id, "PROJECT_CREATION", "CUSTOMER", customer.id).passed

    def test_inactive_definition_ignored(self, tenant, make_customer):
        customer = make_customer()
        _field(tenant.id, "vat_number", contexts=["PROJECT_CREATION"], active=False)
        assert prerequisite_service.check(tenant.id, "PROJECT_CREATION", "CUSTOMER", customer.id).passed

    def test_other_tenant_definitions_ignored(self, tenant, other_tenant, make_customer):
        customer = make_customer()
        _field(other_tenant.id, "vat_number", contexts=["PROJECT_CREATION"])
        assert prerequisite_service.check(tenant.id, "PROJECT_CREATION", "CUSTOMER", customer.id).passed

    @pytest.mark.parametrize("field_type, value, filled", [
        ("TEXT", "   ", False),
        ("TEXT", "GB123", True),
        ("NUMBER", 0, True),
        ("BOOLEAN", False, True),
        ("BOOLEAN", "", False),
        ("MULTISELECT", [], False),
        ("MULTISELECT", ["tax"], True),
    ])
    def test_type_aware_emptiness(self, tenant, make_customer, field_type, value, filled):
        customer = make_customer(custom_fields={"answer": value})
        _field(tenant.id, "answer", contexts=["PROJECT_CREATION"], field_type=field_type)
        result = prerequisite_service.check(tenant.id, "PROJECT_CREATION", "CUSTOMER", customer.id)
        assert result.passed is filled

    def test_violations_follow_field_order(self, tenant, make_customer):
        customer = make_customer()
        _field(tenant.id, "zeta", contexts=["PROJECT_CREATION"], name="Zeta", sort_order=1)
        _field(tenant.id, "beta", contexts=["PROJECT_CREATION"], name="Beta", sort_order=2)
        _field(tenant.id, "alpha", contexts=["PROJECT_CREATION"], name="Alpha", sort_order=1)

        result = prerequisite_service.check(tenant.id, "PROJECT_CREATION", "CUSTOMER", customer.id)

        assert [v.field_slug for v in result.violations] == ["alpha", "zeta", "beta"]


# ═════════════════════════════════════════════════════════════════════════
# Structural prerequisites
# ═════════════════════════════════════════════════════════════════════════

class TestStructuralPrerequisites:
    def test_invoice_needs_an_email(self, tenant, make_customer):
        customer = make_customer(email=None)
        result = prerequisite_service.check(tenant.id, "INVOICE_GENERATION", "CUSTOMER", customer.id)
        assert _codes(result) == ["STRUCTURAL"]

    def test_invoice_accepts_customer_email(self, tenant, make_customer):
        customer = make_customer(email="ap@acme.test")
        assert prerequisite_service.check(tenant.id, "INVOICE_GENERATION", "CUSTOMER", customer.id).passed

    def test_invoice_accepts_contact_email(self, tenant, make_customer):
        customer = make_customer(email=None)
        _add_contact(customer, "jo@acme.test")
        assert prerequisite_service.check(tenant.id, "INVOICE_GENERATION", "CUSTOMER", customer.id).passed

    def test_proposal_needs_contact_email(self, tenant, make_customer):
        customer = make_customer(email="ap@acme.test")
        result = prerequisite_service.check(tenant.id, "PROPOSAL_SEND", "CUSTOMER", customer.id)
        assert _codes(result) == ["STRUCTURAL"]

        _add_contact(customer, "jo@acme.test")
        assert prerequisite_service.check(tenant.id, "PROPOSAL_SEND", "CUSTOMER", customer.id).passed

    def test_blank_contact_email_does_not_count(self, tenant, make_customer):
        customer = make_customer(email=None)
        _add_contact(customer, "  ")
        assert not prerequisite_service.check(tenant.id, "PROPOSAL_SEND", "CUSTOMER", customer.id).passed

    def test_activation_lists_open_checklist_items(self, tenant, make_customer, make_template):
        customer = make_customer(status=LifecycleStatus.ONBOARDING)
        checklist_service.instantiate(tenant.id, customer.id, make_template().id, ACTOR)

        result = prerequisite_service.check(tenant.id, "LIFECYCLE_ACTIVATION", "CUSTOMER", customer.id)

        assert _codes(result) == ["UNMET_DEPENDENCY", "MISSING_DOCUMENT"]
        assert "Certified ID copy" in result.violations[1].message

    def test_fields_come_before_structural(self, tenant, make_customer):
        customer = make_customer(email=None)
        _field(tenant.id, "billing_ref", contexts=["INVOICE_GENERATION"])
        result = prerequisite_service.check(tenant.id, "INVOICE_GENERATION", "CUSTOMER", customer.id)
        assert _codes(result) == ["MISSING_FIELD", "STRUCTURAL"]


# ═════════════════════════════════════════════════════════════════════════
# Contract
# ═════════════════════════════════════════════════════════════════════════

class TestCheckContract:
    def test_deterministic(self, tenant, make_customer):
        customer = make_customer(email=None)
        _field(tenant.id, "a", contexts=["INVOICE_GENERATION"])
        _field(tenant.id, "b", contexts=["INVOICE_GENERATION"])

        first = prerequisite_service.check(tenant.id, "INVOICE_GENERATION", "CUSTOMER", customer.id)
        second = prerequisite_service.check(tenant.id, "INVOICE_GENERATION", "CUSTOMER", customer.id)

        assert first.to_dict() == second.to_dict()

    def test_read_only(self, tenant, make_customer):
        customer = make_customer(email=None)
        version = customer.version
        prerequisite_service.check(tenant.id, "INVOICE_GENERATION", "CUSTOMER", customer.id)
        assert not db.session.new
        assert not db.session.dirty
        assert db.session.get(Customer, customer.id).version == version

    def test_pending_changes_not_flushed(self, tenant, make_customer):
        customer = make_customer(email=None)
        # Read ids first; touching an expired instance would itself autoflush
        tenant_id, customer_id = tenant.id, customer.id
        customer.email = "new@acme.test"

        flushes = []

        def _count(session, flush_context, instances):
            flushes.append(1)

        event.listen(db.session, "before_flush", _count)
        try:
            prerequisite_service.check(tenant_id, "PROJECT_CREATION", "CUSTOMER", customer_id)
        finally:
            event.remove(db.session, "before_flush", _count)

        assert flushes == []
        assert customer in db.session.dirty
        db.session.rollback()

    def test_unknown_context(self, tenant, make_customer):
        with pytest.raises(ValidationError) as exc:
            prerequisite_service.check(tenant.id, "TAX_FILING", "CUSTOMER", make_customer().id)
        assert exc.value.code == "ERR_VALIDATION_CONSTRAINT"

    def test_unsupported_entity_type(self, tenant, make_customer):
        with pytest.raises(ValidationError):
            prerequisite_service.check(tenant.id, "PROJECT_CREATION", "PROJECT", make_customer().id)

    def test_other_tenant_customer_not_found(self, other_tenant, make_customer):
        customer = make_customer()
        with pytest.raises(NotFoundError):
            prerequisite_service.check(other_tenant.id, "PROJECT_CREATION", "CUSTOMER", customer.id)

    def test_require_raises_with_every_violation(self, tenant, make_customer):
        customer = make_customer(email=None)
        _field(tenant.id, "billing_ref", contexts=["INVOICE_GENERATION"])
        with pytest.raises(DependencyError) as exc:
            prerequisite_service.require_prerequisites(tenant.id, "INVOICE_GENERATION", "CUSTOMER", customer.id)
        assert exc.value.code == "ERR_PREREQUISITE_UNMET"
        assert len(exc.value.violations) == 2
        assert exc.value.resolution == exc.value.violations[0]["resolution"]


# ═════════════════════════════════════════════════════════════════════════
# HTTP
# ═════════════════════════════════════════════════════════════════════════

class TestPrerequisiteAPI:
    def test_check_returns_result(self, client, tenant, make_customer):
        customer = make_customer(email=None)
        rv = client.get(
            f"/api/v1/prerequisites/check?tenant_id={tenant.id}"
            f"&context=invoice_generation&entity_id={customer.id}"
        )
        assert rv.status_code == 200
        body = rv.get_json()
        assert body["passed"] is False
        assert body["context"] == "INVOICE_GENERATION"
        assert body["violations"][0]["code"] == "STRUCTURAL"

    def test_passed_result(self, client, tenant, make_customer):
        customer = make_customer()
        rv = client.get(
            f"/api/v1/prerequisites/check?tenant_id={tenant.id}"
            f"&context=INVOICE_GENERATION&entity_id={customer.id}"
        )
        assert rv.get_json()["passed"] is True

    def test_entity_id_required(self, client, tenant):
        rv = client.get(f"/api/v1/prerequisites/check?tenant_id={tenant.id}&context=PROPOSAL_SEND")
        assert rv.status_code == 400

    def test_unknown_context_is_422(self, client, tenant, make_customer):
        customer = make_customer()
        rv = client.get(
            f"/api/v1/prerequisites/check?tenant_id={tenant.id}&context=NOPE&entity_id={customer.id}"
        )
        assert rv.status_code == 422

    def test_missing_customer_is_404(self, client, tenant):
        rv = client.get(
            f"/api/v1/prerequisites/check?tenant_id={tenant.id}&context=PROPOSAL_SEND&entity_id=9999"
        )
        assert rv.status_code == 404
