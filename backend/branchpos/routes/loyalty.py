# Overview: Flask API routes for the loyalty ledger; parses input and returns JSON responses.

# backend/branchpos/routes/loyalty.py
"""
Loyalty points routes.

Every movement endpoint returns the appended transaction and the account
after it, so clients never need a second read to show the new balance.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import PosError, ValidationError
from ..services import loyalty_service
from ..services.concurrency import run_with_retry
from ..validation import require_int


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _optional_user(payload: dict) -> int | None:
    value = payload.get("created_by_id")
    if value is None:
        return None
    return require_int("created_by_id", value, minimum=1)


def _movement_response(tx, status: int = 200):
    return jsonify({
        "transaction": tx.to_dict(),
        "account": tx.account.to_dict(),
    }), status


@loyalty_bp.get("/customers/<int:customer_id>")
def get_account_route(customer_id: int):
    try:
        account = loyalty_service.get_account(customer_id)
        if account is None:
            return jsonify({"account": None, "customer_id": customer_id}), 200
        return jsonify({"account": account.to_dict()}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@loyalty_bp.post("/customers/<int:customer_id>")
def initialize_account_route(customer_id: int):
    try:
        account = run_with_retry(lambda: loyalty_service.initialize_account(customer_id))
        return jsonify({"account": account.to_dict()}), 201
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to initialize loyalty account")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/customers/<int:customer_id>/transactions")
def list_transactions_route(customer_id: int):
    try:
        limit = min(require_int("limit", request.args.get("limit", "100"), minimum=1), 500)
        rows = loyalty_service.list_transactions(customer_id, limit=limit)
        return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@loyalty_bp.post("/customers/<int:customer_id>/<action>")
def movement_route(customer_id: int, action: str):
    """
    Point movements.

    action: earn | redeem | adjust | reset | expire
    Request body: {"points": 50, "reason": "...", "created_by_id": 1}
    (adjust takes signed points; reset takes no points)
    """
    try:
        payload = _json_body()
        created_by_id = _optional_user(payload)
        points = payload.get("points")
        reason = payload.get("reason")

        if action == "earn":
            op = lambda: loyalty_service.earn_points(customer_id, points, reason, created_by_id=created_by_id)
        elif action == "redeem":
            op = lambda: loyalty_service.redeem_points(customer_id, points, reason, created_by_id=created_by_id)
        elif action == "adjust":
            op = lambda: loyalty_service.adjust_points(customer_id, points, reason, created_by_id=created_by_id)
        elif action == "reset":
            op = lambda: loyalty_service.reset_account(customer_id, reason, created_by_id=created_by_id)
        elif action == "expire":
            op = lambda: loyalty_service.expire_points(
                customer_id, points, reason or "Points expired", created_by_id=created_by_id,
            )
        else:
            return jsonify({"error": f"Unknown loyalty action: {action}"}), 404

        tx = run_with_retry(op)
        return _movement_response(tx, 201)

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed loyalty %s", action)
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/sales/<int:sale_id>/process")
def process_sale_points_route(sale_id: int):
    """Award points for a sale. Repeat calls report already_processed=true."""
    try:
        payload = _json_body()
        result = run_with_retry(lambda: loyalty_service.process_sale_points(
            sale_id, created_by_id=_optional_user(payload),
        ))
        tx = result["transaction"]
        body = {
            "sale_id": result["sale_id"],
            "customer_id": result["customer_id"],
            "points": result["points"],
            "already_processed": result["already_processed"],
            "transaction": tx.to_dict() if tx is not None else None,
        }
        return jsonify(body), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process sale points")
        return jsonify({"error": "Internal server error"}), 500
