"""
Prerequisite Gate blueprint.

    GET /api/v1/prerequisites/check?tenant_id=&context=&entity_type=&entity_id=

Read-only. Always 200 when the check ran; ``passed`` says whether the
entity is ready for the context.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

import practicehub.services.prerequisite_service as prerequisites
from practicehub.blueprints import tenant_required
from practicehub.utils.errors import E, api_error, register_error_handlers

prerequisite_bp = Blueprint("prerequisite", __name__, url_prefix="/api/v1")
register_error_handlers(prerequisite_bp)


@prerequisite_bp.route("/prerequisites/check", methods=["GET"])
def check_prerequisites():
    tenant_id, err = tenant_required()
    if err:
        return err
    context = (request.args.get("context") or "").strip().upper()
    if not context:
        return api_error(E.VALIDATION_REQUIRED, "context is required")
    entity_type = (request.args.get("entity_type") or "CUSTOMER").strip().upper()
    entity_id = request.args.get("entity_id", type=int)
    if entity_id is None:
        return api_error(E.VALIDATION_REQUIRED, "entity_id is required and must be an integer")

    result = prerequisites.check(tenant_id, context, entity_type, entity_id)
    return jsonify(result.to_dict()), 200
