# Overview: Flask API routes for supplier purchases; parses input and returns JSON responses.

# backend/branchpos/routes/purchases.py
"""
Purchase API Routes

DESIGN:
- Create a purchase with its full set of line items in one call
- Add/remove line items afterwards (totals and stock follow)
- Cancel reverses the stock booked by every line
- Status and payment status updates are informational
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import PosError, ValidationError
from ..models import Purchase
from ..services import purchase_service
from ..services.concurrency import run_with_retry
from ..validation import ModelValidationPolicy, validate_payload, require_int


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")

PURCHASE_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "supplier_id",
        "branch_id",
        "invoice_no",
        "purchase_date",
        "discount_cents",
        "tax_cents",
        "payment_status",
        "payment_method",
        "created_by_id",
    },
    required_on_create={"supplier_id", "branch_id", "invoice_no"},
)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _optional_user(payload: dict, key: str = "created_by_id") -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    return require_int(key, value, minimum=1)


# =============================================================================
# PURCHASE CREATION
# =============================================================================

@purchases_bp.post("")
def create_purchase_route():
    """
    Create a purchase and book its items into stock.

    Request body:
    {
        "supplier_id": 1,
        "branch_id": 1,
        "invoice_no": "PUR-0001",
        "items": [{"product_id": 1, "quantity": 10, "unit_cost_cents": 500}],
        "discount_cents": 0,       (optional)
        "tax_cents": 0,            (optional)
        "purchase_date": "...Z",   (optional, default now)
        "payment_status": "unpaid",(optional)
        "payment_method": "cash",  (optional)
        "created_by_id": 1         (optional)
    }

    Returns:
        201: purchase with items
        400: invalid input
        404: unknown supplier/branch/product
        409: duplicate invoice
    """
    try:
        payload = dict(_json_body())
        items = payload.pop("items", None)
        patch = validate_payload(
            model=Purchase,
            payload=payload,
            policy=PURCHASE_CREATE_POLICY,
            partial=False,
        )

        purchase = run_with_retry(lambda: purchase_service.create_purchase(items=items, **patch))
        return jsonify({"purchase": purchase.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("/<int:purchase_id>")
def get_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.get_purchase(purchase_id)
        return jsonify({"purchase": purchase.to_dict()}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# LINE ITEMS
# =============================================================================

@purchases_bp.post("/<int:purchase_id>/items")
def add_purchase_item_route(purchase_id: int):
    """
    Request body:
    {"product_id": 2, "quantity": 5, "unit_cost_cents": 300, "created_by_id": 1}
    """
    try:
        payload = _json_body()
        purchase = run_with_retry(lambda: purchase_service.add_purchase_item(
            purchase_id,
            product_id=payload.get("product_id"),
            quantity=payload.get("quantity"),
            unit_cost_cents=payload.get("unit_cost_cents"),
            created_by_id=_optional_user(payload),
        ))
        return jsonify({"purchase": purchase.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add purchase item")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.delete("/<int:purchase_id>/items/<int:item_id>")
def remove_purchase_item_route(purchase_id: int, item_id: int):
    try:
        created_by_id = request.args.get("created_by_id")
        if created_by_id is not None:
            created_by_id = require_int("created_by_id", created_by_id, minimum=1)

        purchase = run_with_retry(lambda: purchase_service.remove_purchase_item(
            purchase_id, item_id, created_by_id=created_by_id,
        ))
        return jsonify({"purchase": purchase.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove purchase item")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STATUS
# =============================================================================

@purchases_bp.post("/<int:purchase_id>/cancel")
def cancel_purchase_route(purchase_id: int):
    try:
        payload = _json_body()
        purchase = run_with_retry(lambda: purchase_service.cancel_purchase(
            purchase_id, created_by_id=_optional_user(payload),
        ))
        return jsonify({"purchase": purchase.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.patch("/<int:purchase_id>/status")
def update_purchase_status_route(purchase_id: int):
    """Request body: {"status": "received"}"""
    try:
        payload = _json_body()
        purchase = run_with_retry(lambda: purchase_service.update_purchase_status(
            purchase_id, payload.get("status"),
        ))
        return jsonify({"purchase": purchase.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update purchase status")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.patch("/<int:purchase_id>/payment")
def update_purchase_payment_route(purchase_id: int):
    """Request body: {"payment_status": "paid", "payment_method": "cash"}"""
    try:
        payload = _json_body()
        purchase = run_with_retry(lambda: purchase_service.update_purchase_payment_status(
            purchase_id,
            payload.get("payment_status"),
            payment_method=payload.get("payment_method"),
        ))
        return jsonify({"purchase": purchase.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update purchase payment")
        return jsonify({"error": "Internal server error"}), 500
