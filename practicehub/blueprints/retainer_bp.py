"""
Retainer blueprint.

Endpoint groups:
  Retainers        GET/POST  /api/v1/retainers
                   GET/PATCH /api/v1/retainers/<id>
                   POST      /api/v1/retainers/<id>/pause|resume|terminate
  Periods          GET  /api/v1/retainers/<id>/periods
                   GET  /api/v1/retainers/<id>/periods/current
                   POST /api/v1/retainers/<id>/periods/<period_id>/close
                   GET  /api/v1/retainer-periods/ready-to-close
  Invoices         GET  /api/v1/invoices/<id>

Dates and amounts are parsed here; a malformed value is a 400. Business
rules (fee > 0, end after start, ...) are the service's and answer 422.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import practicehub.services.invoice_service as invoices
import practicehub.services.retainer_period_service as periods
import practicehub.services.retainer_service as retainers
from practicehub.blueprints import actor_from_request, optional_int, paginate_query, tenant_required
from practicehub.utils.errors import E, api_error, register_error_handlers
from practicehub.utils.helpers import parse_date_input, parse_decimal

logger = logging.getLogger(__name__)

retainer_bp = Blueprint("retainer", __name__, url_prefix="/api/v1")
register_error_handlers(retainer_bp)

_DATE_FIELDS = ("start_date", "end_date")
_DECIMAL_FIELDS = ("allocated_hours", "period_fee", "rollover_cap_hours")
_TERM_FIELDS = (
    "name", "type", "frequency", "rollover_policy", "notes",
) + _DATE_FIELDS + _DECIMAL_FIELDS


def _parse_terms(data: dict) -> dict:
    """Copy retainer term fields out of *data*, typed. Raises ValueError."""
    terms = {}
    for field in _TERM_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field in _DATE_FIELDS:
            try:
                value = parse_date_input(value)
            except ValueError as exc:
                raise ValueError(f"{field}: {exc}") from None
        elif field in _DECIMAL_FIELDS:
            value = parse_decimal(value, field)
        elif field in ("type", "frequency", "rollover_policy") and isinstance(value, str):
            value = value.strip().upper()
        terms[field] = value
    return terms


def _write_args(data: dict):
    actor_id = actor_from_request(data)
    if not actor_id:
        return None, None, api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    try:
        expected_version = optional_int(data, "expected_version")
    except ValueError as exc:
        return None, None, api_error(E.VALIDATION_INVALID, str(exc))
    return actor_id, expected_version, None


# ═════════════════════════════════════════════════════════════════════════
# Retainers
# ═════════════════════════════════════════════════════════════════════════


@retainer_bp.route("/retainers", methods=["GET"])
def list_retainers():
    """Query params: tenant_id (required), status?, customer_id?, limit?, offset?"""
    tenant_id, err = tenant_required()
    if err:
        return err
    query = retainers.list_retainers(
        tenant_id,
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
    )
    items, total = paginate_query(query)
    return jsonify({"items": [r.to_dict() for r in items], "total": total}), 200


@retainer_bp.route("/retainers", methods=["POST"])
def create_retainer():
    """Body: {
        tenant_id, customer_id, actor_id, name, type, frequency?, start_date,
        end_date?, allocated_hours?, period_fee, rollover_policy?,
        rollover_cap_hours?, notes?
    }
    Returns: retainer with its first period (201).
    """
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    try:
        customer_id = optional_int(data, "customer_id")
        terms = _parse_terms(data)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    if customer_id is None:
        return api_error(E.VALIDATION_REQUIRED, "customer_id is required")
    if terms.get("start_date") is None:
        return api_error(E.VALIDATION_REQUIRED, "start_date is required")
    actor_id = actor_from_request(data)
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")

    retainer = retainers.create_retainer(tenant_id, customer_id, terms, actor_id)
    body = retainer.to_dict()
    body["periods"] = [p.to_dict() for p in retainer.periods]
    return jsonify(body), 201


@retainer_bp.route("/retainers/<int:retainer_id>", methods=["GET"])
def get_retainer(retainer_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    body = retainers.get_retainer(tenant_id, retainer_id).to_dict()
    body["current_period"] = periods.get_current_period(tenant_id, retainer_id)
    return jsonify(body), 200


@retainer_bp.route("/retainers/<int:retainer_id>", methods=["PATCH"])
def update_retainer(retainer_id):
    """Body: {tenant_id, actor_id, expected_version?, <term fields>}"""
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    actor_id, expected_version, err = _write_args(data)
    if err:
        return err
    unknown = set(data) - set(_TERM_FIELDS) - {"tenant_id", "actor_id", "expected_version"}
    if unknown:
        return api_error(E.VALIDATION_INVALID, f"Unknown fields: {sorted(unknown)}")
    try:
        changes = _parse_terms(data)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    retainer = retainers.update_retainer(
        tenant_id, retainer_id, changes, actor_id, expected_version=expected_version,
    )
    return jsonify(retainer.to_dict()), 200


_STATUS_ACTIONS = {
    "pause": retainers.pause_retainer,
    "resume": retainers.resume_retainer,
    "terminate": retainers.terminate_retainer,
}


@retainer_bp.route("/retainers/<int:retainer_id>/<any(pause, resume, terminate):action>", methods=["POST"])
def change_status(retainer_id, action):
    """Body: {tenant_id, actor_id, expected_version?}"""
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    actor_id, expected_version, err = _write_args(data)
    if err:
        return err
    retainer = _STATUS_ACTIONS[action](tenant_id, retainer_id, actor_id, expected_version=expected_version)
    return jsonify(retainer.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Periods
# ═════════════════════════════════════════════════════════════════════════


@retainer_bp.route("/retainers/<int:retainer_id>/periods", methods=["GET"])
def list_periods(retainer_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    rows = periods.list_periods(tenant_id, retainer_id)
    return jsonify({"items": [p.to_dict() for p in rows], "total": len(rows)}), 200


@retainer_bp.route("/retainers/<int:retainer_id>/periods/current", methods=["GET"])
def current_period(retainer_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    current = periods.get_current_period(tenant_id, retainer_id)
    if current is None:
        return api_error(E.NOT_FOUND, f"Retainer {retainer_id} has no open period")
    return jsonify(current), 200


@retainer_bp.route("/retainers/<int:retainer_id>/periods/<int:period_id>/close", methods=["POST"])
def close_period(retainer_id, period_id):
    """Close a period, draft its invoice and open the next one.

    Body: {tenant_id, actor_id, expected_version?}
    Returns: {closed_period, next_period, invoice_draft_id, retainer_status}
    """
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    actor_id, expected_version, err = _write_args(data)
    if err:
        return err
    result = periods.close_period(
        tenant_id, retainer_id, period_id, actor_id, expected_version=expected_version,
    )
    return jsonify(result.to_dict()), 200


@retainer_bp.route("/retainer-periods/ready-to-close", methods=["GET"])
def ready_to_close():
    tenant_id, err = tenant_required()
    if err:
        return err
    rows = periods.find_periods_ready_to_close(tenant_id)
    return jsonify({"items": rows, "total": len(rows)}), 200


@retainer_bp.route("/invoices/<int:invoice_id>", methods=["GET"])
def get_invoice(invoice_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    return jsonify(invoices.get_invoice(tenant_id, invoice_id).to_dict()), 200
