"""
Checklist Tracker blueprint.

Endpoint groups:
  Templates     GET/POST /api/v1/checklist-templates
                GET      /api/v1/checklist-templates/<id>
  Instances     GET/POST /api/v1/customers/<id>/checklists
                GET      /api/v1/checklist-instances/<id>
  Items         POST /api/v1/checklist-items/<id>/complete
                POST /api/v1/checklist-items/<id>/skip
                POST /api/v1/checklist-items/<id>/reopen

tenant_id is resolved from query param or JSON body.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import practicehub.services.checklist_service as checklists
from practicehub.blueprints import actor_from_request, optional_int, tenant_required
from practicehub.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

checklist_bp = Blueprint("checklist", __name__, url_prefix="/api/v1")
register_error_handlers(checklist_bp)


def _item_write_args():
    """Common body fields for item writes: (data, actor_id, expected_version, error)."""
    data = request.get_json(silent=True) or {}
    actor_id = actor_from_request(data)
    if not actor_id:
        return data, None, None, api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    try:
        expected_version = optional_int(data, "expected_version")
    except ValueError as exc:
        return data, None, None, api_error(E.VALIDATION_INVALID, str(exc))
    return data, actor_id, expected_version, None


# ── Templates ────────────────────────────────────────────────────────────────


@checklist_bp.route("/checklist-templates", methods=["GET"])
def list_templates():
    """Query params: tenant_id (required), include_inactive?"""
    tenant_id, err = tenant_required()
    if err:
        return err
    active_only = request.args.get("include_inactive", "false").lower() != "true"
    templates = checklists.list_templates(tenant_id, active_only=active_only)
    return jsonify({"items": [t.to_dict() for t in templates], "total": len(templates)}), 200


@checklist_bp.route("/checklist-templates", methods=["POST"])
def create_template():
    """Body: {
        tenant_id, name, description?, customer_type?, auto_instantiate?,
        items: [{name, description?, required?, requires_document?,
                 required_document_label?, depends_on?}]
    }
    ``depends_on`` is the 0-based index of an earlier item.
    """
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    items = data.get("items")
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        return api_error(E.VALIDATION_INVALID, "items must be a list of objects")

    template = checklists.create_template(
        tenant_id, name, items,
        description=data.get("description") or "",
        customer_type=data.get("customer_type"),
        auto_instantiate=bool(data.get("auto_instantiate", False)),
    )
    return jsonify(template.to_dict()), 201


@checklist_bp.route("/checklist-templates/<int:template_id>", methods=["GET"])
def get_template(template_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    return jsonify(checklists.get_template(tenant_id, template_id).to_dict()), 200


# ── Instances ────────────────────────────────────────────────────────────────


@checklist_bp.route("/customers/<int:customer_id>/checklists", methods=["GET"])
def list_instances(customer_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    instances = checklists.list_instances(tenant_id, customer_id)
    return jsonify({"items": [i.to_dict() for i in instances], "total": len(instances)}), 200


@checklist_bp.route("/customers/<int:customer_id>/checklists", methods=["POST"])
def instantiate(customer_id):
    """Body: {tenant_id, template_id, actor_id}"""
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    try:
        template_id = optional_int(data, "template_id")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    if template_id is None:
        return api_error(E.VALIDATION_REQUIRED, "template_id is required")
    actor_id = actor_from_request(data)
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")

    instance = checklists.instantiate(tenant_id, customer_id, template_id, actor_id)
    return jsonify(instance.to_dict()), 201


@checklist_bp.route("/checklist-instances/<int:instance_id>", methods=["GET"])
def get_instance(instance_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    return jsonify(checklists.get_instance(tenant_id, instance_id).to_dict()), 200


# ── Items ────────────────────────────────────────────────────────────────────


@checklist_bp.route("/checklist-items/<int:item_id>/complete", methods=["POST"])
def complete_item(item_id):
    """Body: {tenant_id, actor_id, notes?, document_id?, expected_version?}"""
    tenant_id, err = tenant_required()
    if err:
        return err
    data, actor_id, expected_version, err = _item_write_args()
    if err:
        return err
    document_id = data.get("document_id")
    item = checklists.complete_item(
        tenant_id, item_id, actor_id,
        notes=data.get("notes"),
        document_id=str(document_id) if document_id is not None else None,
        expected_version=expected_version,
    )
    return jsonify(item.to_dict()), 200


@checklist_bp.route("/checklist-items/<int:item_id>/skip", methods=["POST"])
def skip_item(item_id):
    """Body: {tenant_id, actor_id, reason?, expected_version?}"""
    tenant_id, err = tenant_required()
    if err:
        return err
    data, actor_id, expected_version, err = _item_write_args()
    if err:
        return err
    item = checklists.skip_item(
        tenant_id, item_id, actor_id, data.get("reason"), expected_version=expected_version,
    )
    return jsonify(item.to_dict()), 200


@checklist_bp.route("/checklist-items/<int:item_id>/reopen", methods=["POST"])
def reopen_item(item_id):
    """Body: {tenant_id, actor_id, expected_version?}"""
    tenant_id, err = tenant_required()
    if err:
        return err
    _, actor_id, expected_version, err = _item_write_args()
    if err:
        return err
    item = checklists.reopen_item(tenant_id, item_id, actor_id, expected_version=expected_version)
    return jsonify(item.to_dict()), 200
