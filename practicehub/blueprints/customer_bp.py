"""
Customer lifecycle blueprint.

Endpoint groups:
  Customers           GET/POST  /api/v1/customers
                      GET/PATCH /api/v1/customers/<id>
                      POST      /api/v1/customers/<id>/contacts
  Lifecycle           POST /api/v1/customers/<id>/transition
                      GET  /api/v1/customers/<id>/lifecycle
                      GET  /api/v1/customers/lifecycle-summary
  Dormancy            POST /api/v1/customers/dormancy-check

tenant_id is resolved from query param or JSON body.
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import practicehub.services.customer_service as cs
import practicehub.services.dormancy_service as dormancy
import practicehub.services.lifecycle_service as lifecycle
from practicehub.blueprints import actor_from_request, optional_int, paginate_query, tenant_required
from practicehub.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

customer_bp = Blueprint("customer", __name__, url_prefix="/api/v1")
register_error_handlers(customer_bp)


# ═════════════════════════════════════════════════════════════════════════
# Customers
# ═════════════════════════════════════════════════════════════════════════


@customer_bp.route("/customers", methods=["GET"])
def list_customers():
    """Query params: tenant_id (required), status?, limit?, offset?"""
    tenant_id, err = tenant_required()
    if err:
        return err
    query = cs.list_customers(tenant_id, status=request.args.get("status"))
    items, total = paginate_query(query)
    return jsonify({"items": [c.to_dict() for c in items], "total": total}), 200


@customer_bp.route("/customers", methods=["POST"])
def create_customer():
    """Body: {tenant_id, name, email?, customer_type?, custom_fields?, contacts?, actor_id?}"""
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    contacts = data.get("contacts") or []
    if not isinstance(contacts, list):
        return api_error(E.VALIDATION_INVALID, "contacts must be a list")

    customer = cs.create_customer(
        tenant_id,
        name,
        email=data.get("email"),
        customer_type=data.get("customer_type") or "COMPANY",
        custom_fields=data.get("custom_fields"),
        contacts=contacts,
        actor_id=actor_from_request(data),
    )
    return jsonify(customer.to_dict(include_contacts=True)), 201


@customer_bp.route("/customers/<int:customer_id>", methods=["GET"])
def get_customer(customer_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    customer = cs.get_customer(tenant_id, customer_id)
    data = customer.to_dict(include_contacts=True)
    data["available_transitions"] = [s.value for s in lifecycle.get_available_transitions(customer)]
    return jsonify(data), 200


@customer_bp.route("/customers/<int:customer_id>", methods=["PATCH"])
def update_customer(customer_id):
    """Body: {tenant_id, name?, email?, custom_fields?, expected_version?}"""
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    try:
        expected_version = optional_int(data, "expected_version")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    changes = {k: v for k, v in data.items() if k not in ("tenant_id", "expected_version", "actor_id")}
    customer = cs.update_customer(tenant_id, customer_id, changes, expected_version=expected_version)
    return jsonify(customer.to_dict(include_contacts=True)), 200


@customer_bp.route("/customers/<int:customer_id>/contacts", methods=["POST"])
def add_contact(customer_id):
    """Body: {tenant_id, name, email?, is_primary?}"""
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    contact = cs.add_contact(
        tenant_id, customer_id, name,
        email=data.get("email"), is_primary=bool(data.get("is_primary", False)),
    )
    return jsonify(contact.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════


@customer_bp.route("/customers/<int:customer_id>/transition", methods=["POST"])
def transition_customer(customer_id):
    """Apply one lifecycle edge.

    Body: {tenant_id, target_status, actor_id, reason?, expected_version?}
    Returns: {success, new_status, version, transition}
    """
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    target = (data.get("target_status") or "").strip().upper()
    if not target:
        return api_error(E.VALIDATION_REQUIRED, "target_status is required")
    actor_id = actor_from_request(data)
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    try:
        expected_version = optional_int(data, "expected_version")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    record = lifecycle.transition(
        tenant_id, customer_id, target, actor_id,
        reason=data.get("reason"), expected_version=expected_version,
    )
    customer = cs.get_customer(tenant_id, customer_id)
    return jsonify({
        "success": True,
        "new_status": customer.lifecycle_status,
        "version": customer.version,
        "transition": record.to_dict(),
    }), 200


@customer_bp.route("/customers/<int:customer_id>/lifecycle", methods=["GET"])
def lifecycle_history(customer_id):
    """Current status, reachable targets and the applied transitions, oldest first."""
    tenant_id, err = tenant_required()
    if err:
        return err
    customer = cs.get_customer(tenant_id, customer_id)
    history = lifecycle.get_lifecycle_history(tenant_id, customer_id)
    return jsonify({
        "customer_id": customer.id,
        "lifecycle_status": customer.lifecycle_status,
        "available_transitions": [s.value for s in lifecycle.get_available_transitions(customer)],
        "history": [t.to_dict() for t in history],
    }), 200


@customer_bp.route("/customers/lifecycle-summary", methods=["GET"])
def lifecycle_summary():
    tenant_id, err = tenant_required()
    if err:
        return err
    return jsonify({"counts": lifecycle.get_lifecycle_summary(tenant_id)}), 200


# ═════════════════════════════════════════════════════════════════════════
# Dormancy
# ═════════════════════════════════════════════════════════════════════════


@customer_bp.route("/customers/dormancy-check", methods=["POST"])
def dormancy_check():
    """Report candidates for dormancy. Read-only; nobody is transitioned.

    Body: {tenant_id, threshold_days?}
    """
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    try:
        threshold = optional_int(data, "threshold_days")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    threshold = dormancy.resolve_threshold(tenant_id, threshold)
    candidates = dormancy.scan(tenant_id, threshold)
    return jsonify({
        "threshold_days": threshold,
        "candidates": [c.to_dict() for c in candidates],
        "total": len(candidates),
    }), 200
