"""
PracticeHub Core
Blueprint registry and shared request helpers.

tenant_id is resolved from the query string or the JSON body. Auth is
enforced upstream; blueprints only parse input, call one service
function and serialise the result.
"""

from flask import jsonify, request


def tenant_id_from_request() -> int | None:
    """Extract tenant_id from query string or JSON body."""
    tid = request.args.get("tenant_id", type=int)
    if tid:
        return tid
    data: dict = request.get_json(silent=True) or {}
    try:
        return int(data["tenant_id"]) if data.get("tenant_id") else None
    except (TypeError, ValueError):
        return None


def tenant_required() -> tuple[int | None, tuple | None]:
    tid = tenant_id_from_request()
    if not tid:
        return None, (jsonify({"error": "tenant_id is required", "code": "ERR_VALIDATION_REQUIRED"}), 400)
    return tid, None


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def actor_from_request(data: dict) -> str | None:
    """Acting member id: JSON ``actor_id`` first, then the X-Actor-Id header."""
    actor = data.get("actor_id") or request.headers.get("X-Actor-Id")
    if actor is None:
        return None
    return str(actor).strip() or None


def optional_int(data: dict, key: str) -> int | None:
    """Read an optional integer from a JSON body; raises ValueError if malformed."""
    value = data.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer") from None
