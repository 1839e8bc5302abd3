# Overview: Flask API routes for sale returns; parses input and returns JSON responses.

# backend/branchpos/routes/returns.py
"""
Sale Return API Routes

DESIGN:
- Validate endpoint is a read-only pre-check (same arithmetic as create)
- Create returns against one product of an existing sale; stock comes back
- Approve/reject pending returns; rejecting takes the units back out
- Delete reverses the stock the return still holds
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import PosError, ValidationError
from ..services import return_service
from ..services.concurrency import run_with_retry
from ..validation import require_int


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _optional_user(payload: dict, key: str = "processed_by_id") -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    return require_int(key, value, minimum=1)


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.get("/validate")
def validate_return_route():
    """
    Pre-check a return without writing anything.

    Query params: sale_id, product_id, quantity

    Returns:
        200: {"is_valid", "available_to_return", "already_returned",
              "sold_quantity", "unit_price_cents", "max_refund_cents", ...}
        404: unknown sale or product not on the sale
        409: sale cancelled
    """
    args = request.args
    try:
        eligibility = return_service.validate_return(
            require_int("sale_id", args.get("sale_id"), minimum=1),
            require_int("product_id", args.get("product_id"), minimum=1),
            args.get("quantity"),
        )
        return jsonify(eligibility.to_dict()), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@returns_bp.post("")
def create_return_route():
    """
    Create a return (status pending, or approved when auto-approve is on).

    Request body:
    {
        "sale_id": 12,
        "product_id": 7,
        "quantity": 4,
        "reason": "Damaged",
        "refund_amount_cents": 8000,  (optional, default quantity x unit price)
        "processed_by_id": 1          (optional)
    }

    Returns:
        201: return created
        400: quantity or refund above what the sale allows
        404: unknown sale / product not on sale
        409: sale cancelled
    """
    try:
        payload = _json_body()
        sale_return = run_with_retry(lambda: return_service.create_return(
            sale_id=require_int("sale_id", payload.get("sale_id"), minimum=1),
            product_id=require_int("product_id", payload.get("product_id"), minimum=1),
            quantity=payload.get("quantity"),
            reason=payload.get("reason"),
            refund_amount_cents=payload.get("refund_amount_cents"),
            processed_by_id=_optional_user(payload),
        ))
        return jsonify({"return": sale_return.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        return jsonify({"return": return_service.get_return(return_id).to_dict()}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@returns_bp.get("/sale/<int:sale_id>")
def list_sale_returns_route(sale_id: int):
    returns = return_service.list_sale_returns(sale_id, status=request.args.get("status"))
    return jsonify({"returns": [r.to_dict() for r in returns], "count": len(returns)}), 200


# =============================================================================
# RETURN UPDATES
# =============================================================================

@returns_bp.patch("/<int:return_id>")
def update_return_route(return_id: int):
    """Request body: any of {"quantity", "reason", "refund_amount_cents", "processed_by_id"}"""
    try:
        payload = _json_body()
        sale_return = run_with_retry(lambda: return_service.update_return(
            return_id,
            quantity=payload.get("quantity"),
            reason=payload.get("reason"),
            refund_amount_cents=payload.get("refund_amount_cents"),
            processed_by_id=_optional_user(payload),
        ))
        return jsonify({"return": sale_return.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/status")
def update_return_status_route(return_id: int):
    """Request body: {"status": "approved" | "rejected", "processed_by_id": 1}"""
    try:
        payload = _json_body()
        sale_return = run_with_retry(lambda: return_service.update_return_status(
            return_id,
            payload.get("status"),
            processed_by_id=_optional_user(payload),
        ))
        return jsonify({"return": sale_return.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update return status")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.delete("/<int:return_id>")
def delete_return_route(return_id: int):
    try:
        created_by_id = request.args.get("created_by_id")
        if created_by_id is not None:
            created_by_id = require_int("created_by_id", created_by_id, minimum=1)

        run_with_retry(lambda: return_service.delete_return(return_id, created_by_id=created_by_id))
        return jsonify({"deleted": True, "return_id": return_id}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete return")
        return jsonify({"error": "Internal server error"}), 500
