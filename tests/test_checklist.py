"""
tests/test_checklist.py — Checklist Tracker.

Covers: template validation, instantiation (incl. dependency mapping and
        duplicates), complete / skip / reopen rules, instance status,
        optimistic locking, audit rows, HTTP contract.
"""

import pytest

from practicehub.core.exceptions import ConflictError, NotFoundError, ValidationError
from practicehub.models import db
from practicehub.models.audit import AuditLog
from practicehub.models.checklist import ChecklistItem
from practicehub.services import checklist_service

ACTOR = "member-1"

DEPENDENT_ITEMS = [
    {"name": "Engagement letter", "required": True},
    {"name": "KYC documents", "required": True, "requires_document": True, "depends_on": 0},
    {"name": "Portal invite", "required": False, "depends_on": 1},
]


def _instance(tenant, customer, template):
    instance = checklist_service.instantiate(tenant.id, customer.id, template.id, ACTOR)
    return instance, {i.name: i for i in instance.items}


def _bump_version(item_id):
    """Simulate another writer committing first."""
    db.session.execute(
        db.text("UPDATE checklist_items SET version = version + 1 WHERE id = :id"), {"id": item_id},
    )


# ═════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════

class TestTemplates:
    def test_create_with_dependency(self, tenant, make_template):
        template = make_template(DEPENDENT_ITEMS)
        items = template.items
        assert [i.sort_order for i in items] == [0, 1, 2]
        assert items[1].depends_on_item_id == items[0].id
        assert items[2].depends_on_item_id == items[1].id

    def test_forward_dependency_rejected(self, tenant):
        with pytest.raises(ValidationError) as exc:
            checklist_service.create_template(tenant.id, "Bad", [
                {"name": "A", "depends_on": 1},
                {"name": "B"},
            ])
        assert exc.value.code == "ERR_VALIDATION_CONSTRAINT"

    def test_self_dependency_rejected(self, tenant):
        with pytest.raises(ValidationError):
            checklist_service.create_template(tenant.id, "Bad", [{"name": "A", "depends_on": 0}])

    def test_needs_items(self, tenant):
        with pytest.raises(ValidationError):
            checklist_service.create_template(tenant.id, "Empty", [])

    def test_list_active_only(self, tenant, make_template):
        active = make_template(name="B active")
        inactive = make_template(name="A inactive")
        inactive.active = False
        db.session.commit()

        assert [t.id for t in checklist_service.list_templates(tenant.id)] == [active.id]
        assert len(checklist_service.list_templates(tenant.id, active_only=False)) == 2


# ═════════════════════════════════════════════════════════════════════════
# Instantiation
# ═════════════════════════════════════════════════════════════════════════

class TestInstantiate:
    def test_copies_items_and_maps_dependencies(self, tenant, make_customer, make_template):
        customer = make_customer()
        instance, items = _instance(tenant, customer, make_template(DEPENDENT_ITEMS))

        assert instance.status == "IN_PROGRESS"
        assert all(i.status == "PENDING" for i in instance.items)
        assert items["KYC documents"].depends_on_item_id == items["Engagement letter"].id
        assert items["Portal invite"].depends_on_item_id == items["KYC documents"].id

    def test_duplicate_rejected(self, tenant, make_customer, make_template):
        customer = make_customer()
        template = make_template()
        checklist_service.instantiate(tenant.id, customer.id, template.id, ACTOR)
        with pytest.raises(ConflictError) as exc:
            checklist_service.instantiate(tenant.id, customer.id, template.id, ACTOR)
        assert exc.value.code == "ERR_CONFLICT_DUPLICATE"

    def test_inactive_template_rejected(self, tenant, make_customer, make_template):
        template = make_template()
        template.active = False
        db.session.commit()
        with pytest.raises(ValidationError):
            checklist_service.instantiate(tenant.id, make_customer().id, template.id, ACTOR)

    def test_other_tenant_template_not_found(self, tenant, other_tenant, make_customer):
        template = checklist_service.create_template(other_tenant.id, "Theirs", [{"name": "X"}])
        with pytest.raises(NotFoundError):
            checklist_service.instantiate(tenant.id, make_customer().id, template.id, ACTOR)

    def test_audit_row_written(self, tenant, make_customer, make_template):
        instance, _ = _instance(tenant, make_customer(), make_template())
        log = AuditLog.query.filter_by(action="checklist_instance.created").one()
        assert log.entity_id == str(instance.id)
        assert log.diff["item_count"] == 3


# ═════════════════════════════════════════════════════════════════════════
# Item transitions
# ═════════════════════════════════════════════════════════════════════════

class TestComplete:
    def test_complete_simple_item(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        item = checklist_service.complete_item(
            tenant.id, items["Sign engagement letter"].id, ACTOR, notes="Signed 3 May",
        )
        assert item.status == "COMPLETED"
        assert item.completed_by == ACTOR
        assert item.notes == "Signed 3 May"
        assert item.completed_at is not None

    def test_document_required(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        with pytest.raises(ValidationError) as exc:
            checklist_service.complete_item(tenant.id, items["Collect ID"].id, ACTOR)
        assert exc.value.code == "ERR_DOCUMENT_REQUIRED"
        assert exc.value.details["required_document_label"] == "Certified ID copy"

        item = checklist_service.complete_item(tenant.id, items["Collect ID"].id, ACTOR, document_id="doc-42")
        assert item.document_id == "doc-42"

    def test_dependency_must_be_resolved(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template(DEPENDENT_ITEMS))
        with pytest.raises(ValidationError) as exc:
            checklist_service.complete_item(tenant.id, items["KYC documents"].id, ACTOR, document_id="d")
        assert exc.value.code == "ERR_DEPENDENCY_NOT_MET"

        checklist_service.complete_item(tenant.id, items["Engagement letter"].id, ACTOR)
        item = checklist_service.complete_item(tenant.id, items["KYC documents"].id, ACTOR, document_id="d")
        assert item.status == "COMPLETED"

    def test_skipped_dependency_counts_as_resolved(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template([
            {"name": "Optional intro", "required": False},
            {"name": "Kick-off", "required": True, "depends_on": 0},
        ]))
        checklist_service.skip_item(tenant.id, items["Optional intro"].id, ACTOR, "Not needed")
        assert checklist_service.complete_item(tenant.id, items["Kick-off"].id, ACTOR).status == "COMPLETED"

    def test_complete_twice_rejected(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        item_id = items["Sign engagement letter"].id
        checklist_service.complete_item(tenant.id, item_id, ACTOR)
        with pytest.raises(ValidationError) as exc:
            checklist_service.complete_item(tenant.id, item_id, ACTOR)
        assert exc.value.code == "ERR_INVALID_ITEM_STATE"

    def test_instance_completes_when_required_items_done(self, tenant, make_customer, make_template):
        instance, items = _instance(tenant, make_customer(), make_template())
        checklist_service.complete_item(tenant.id, items["Sign engagement letter"].id, ACTOR)
        assert instance.status == "IN_PROGRESS"
        checklist_service.complete_item(tenant.id, items["Collect ID"].id, ACTOR, document_id="d")

        instance = checklist_service.get_instance(tenant.id, instance.id)
        assert instance.status == "COMPLETED"
        assert instance.completed_by == ACTOR
        assert instance.progress() == {
            "total": 3, "completed": 2, "skipped": 0, "required": 2, "required_completed": 2,
        }


class TestSkip:
    def test_skip_optional_item(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        item = checklist_service.skip_item(tenant.id, items["Welcome call"].id, ACTOR, "Customer declined")
        assert item.status == "SKIPPED"
        assert item.skip_reason == "Customer declined"

    def test_required_item_never_skippable(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        item_id = items["Sign engagement letter"].id
        for actor in (ACTOR, "admin", "system"):
            with pytest.raises(ValidationError) as exc:
                checklist_service.skip_item(tenant.id, item_id, actor, "Please")
            assert exc.value.code == "ERR_REQUIRED_ITEM_NOT_SKIPPABLE"
        assert db.session.get(ChecklistItem, item_id).status == "PENDING"

    def test_reason_required(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        with pytest.raises(ValidationError):
            checklist_service.skip_item(tenant.id, items["Welcome call"].id, ACTOR, "   ")

    def test_skip_needs_resolved_dependency(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template(DEPENDENT_ITEMS))
        with pytest.raises(ValidationError) as exc:
            checklist_service.skip_item(tenant.id, items["Portal invite"].id, ACTOR, "later")
        assert exc.value.code == "ERR_DEPENDENCY_NOT_MET"


class TestReopen:
    def test_reopen_completed_item(self, tenant, make_customer, make_template):
        instance, items = _instance(tenant, make_customer(), make_template())
        checklist_service.complete_item(tenant.id, items["Sign engagement letter"].id, ACTOR)
        checklist_service.complete_item(tenant.id, items["Collect ID"].id, ACTOR, document_id="d")
        assert checklist_service.get_instance(tenant.id, instance.id).status == "COMPLETED"

        item = checklist_service.reopen_item(tenant.id, items["Collect ID"].id, ACTOR)

        assert item.status == "PENDING"
        assert item.document_id is None
        assert checklist_service.get_instance(tenant.id, instance.id).status == "IN_PROGRESS"

    def test_reopen_does_not_cascade(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template(DEPENDENT_ITEMS))
        checklist_service.complete_item(tenant.id, items["Engagement letter"].id, ACTOR)
        checklist_service.complete_item(tenant.id, items["KYC documents"].id, ACTOR, document_id="d")

        checklist_service.reopen_item(tenant.id, items["Engagement letter"].id, ACTOR)

        assert db.session.get(ChecklistItem, items["KYC documents"].id).status == "COMPLETED"

    def test_reopen_pending_or_skipped_rejected(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        checklist_service.skip_item(tenant.id, items["Welcome call"].id, ACTOR, "no")
        for name in ("Sign engagement letter", "Welcome call"):
            with pytest.raises(ValidationError) as exc:
                checklist_service.reopen_item(tenant.id, items[name].id, ACTOR)
            assert exc.value.code == "ERR_INVALID_ITEM_STATE"

    def test_audit_trail(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        item_id = items["Sign engagement letter"].id
        checklist_service.complete_item(tenant.id, item_id, ACTOR)
        checklist_service.reopen_item(tenant.id, item_id, ACTOR)
        actions = [
            log.action for log in
            AuditLog.query.filter_by(entity_type="checklist_item", entity_id=str(item_id)).order_by(AuditLog.id)
        ]
        assert actions == ["checklist_item.completed", "checklist_item.reopened"]


class TestItemConcurrency:
    def test_expected_version_mismatch(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        item = items["Sign engagement letter"]
        with pytest.raises(ConflictError) as exc:
            checklist_service.complete_item(tenant.id, item.id, ACTOR, expected_version=item.version + 1)
        assert exc.value.code == "ERR_STALE_VERSION"

    def test_concurrent_write_loses(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        item = items["Sign engagement letter"]
        assert item.version == 1
        _bump_version(item.id)
        with pytest.raises(ConflictError) as exc:
            checklist_service.complete_item(tenant.id, item.id, ACTOR)
        assert exc.value.code == "ERR_STALE_VERSION"
        assert db.session.get(ChecklistItem, item.id).status == "PENDING"
        assert AuditLog.query.filter_by(action="checklist_item.completed").count() == 0

    def test_concurrent_skip_loses(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        item = items["Welcome call"]
        _bump_version(item.id)
        with pytest.raises(ConflictError):
            checklist_service.skip_item(tenant.id, item.id, ACTOR, "Customer declined")
        assert db.session.get(ChecklistItem, item.id).status == "PENDING"
        assert AuditLog.query.filter_by(action="checklist_item.skipped").count() == 0

    def test_concurrent_reopen_loses(self, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        item_id = items["Sign engagement letter"].id
        item = checklist_service.complete_item(tenant.id, item_id, ACTOR)
        assert item.version == 2
        _bump_version(item_id)
        with pytest.raises(ConflictError):
            checklist_service.reopen_item(tenant.id, item_id, ACTOR)
        assert db.session.get(ChecklistItem, item_id).status == "COMPLETED"
        assert AuditLog.query.filter_by(action="checklist_item.reopened").count() == 0

    def test_concurrent_write_is_409(self, client, tenant, make_customer, make_template):
        _, items = _instance(tenant, make_customer(), make_template())
        item_id = items["Sign engagement letter"].id
        _bump_version(item_id)
        rv = client.post(f"/api/v1/checklist-items/{item_id}/complete", json={
            "tenant_id": tenant.id, "actor_id": ACTOR,
        })
        assert rv.status_code == 409
        assert rv.get_json()["code"] == "ERR_STALE_VERSION"


# ═════════════════════════════════════════════════════════════════════════
# HTTP
# ═════════════════════════════════════════════════════════════════════════

class TestChecklistAPI:
    def _template(self, client, tenant):
        rv = client.post("/api/v1/checklist-templates", json={
            "tenant_id": tenant.id, "name": "Onboarding", "items": DEPENDENT_ITEMS,
        })
        assert rv.status_code == 201
        return rv.get_json()

    def test_create_and_list_templates(self, client, tenant):
        tpl = self._template(client, tenant)
        assert [i["name"] for i in tpl["items"]] == ["Engagement letter", "KYC documents", "Portal invite"]
        rv = client.get(f"/api/v1/checklist-templates?tenant_id={tenant.id}")
        assert rv.get_json()["total"] == 1

    def test_items_must_be_list(self, client, tenant):
        rv = client.post("/api/v1/checklist-templates", json={
            "tenant_id": tenant.id, "name": "X", "items": "nope",
        })
        assert rv.status_code == 400

    def test_instantiate_and_complete(self, client, tenant, make_customer):
        tpl = self._template(client, tenant)
        customer = make_customer()
        rv = client.post(f"/api/v1/customers/{customer.id}/checklists", json={
            "tenant_id": tenant.id, "template_id": tpl["id"], "actor_id": ACTOR,
        })
        assert rv.status_code == 201
        instance = rv.get_json()
        first = instance["items"][0]

        rv = client.post(f"/api/v1/checklist-items/{first['id']}/complete", json={
            "tenant_id": tenant.id, "actor_id": ACTOR, "expected_version": first["version"],
        })
        assert rv.status_code == 200
        assert rv.get_json()["status"] == "COMPLETED"

        rv = client.get(f"/api/v1/checklist-instances/{instance['id']}?tenant_id={tenant.id}")
        assert rv.get_json()["progress"]["completed"] == 1

    def test_skip_required_returns_422(self, client, tenant, make_customer):
        tpl = self._template(client, tenant)
        customer = make_customer()
        instance = client.post(f"/api/v1/customers/{customer.id}/checklists", json={
            "tenant_id": tenant.id, "template_id": tpl["id"], "actor_id": ACTOR,
        }).get_json()

        rv = client.post(f"/api/v1/checklist-items/{instance['items'][0]['id']}/skip", json={
            "tenant_id": tenant.id, "actor_id": ACTOR, "reason": "skip it",
        })
        assert rv.status_code == 422
        assert rv.get_json()["code"] == "ERR_REQUIRED_ITEM_NOT_SKIPPABLE"

    def test_duplicate_instance_returns_409(self, client, tenant, make_customer):
        tpl = self._template(client, tenant)
        customer = make_customer()
        body = {"tenant_id": tenant.id, "template_id": tpl["id"], "actor_id": ACTOR}
        client.post(f"/api/v1/customers/{customer.id}/checklists", json=body)
        rv = client.post(f"/api/v1/customers/{customer.id}/checklists", json=body)
        assert rv.status_code == 409

    def test_complete_requires_actor(self, client, tenant):
        rv = client.post("/api/v1/checklist-items/1/complete", json={"tenant_id": tenant.id})
        assert rv.status_code == 400
