# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/branchpos/routes/sales.py
"""
Sales API Routes

- POST /api/sales creates the sale, takes stock and (optionally) awards points
- Payment updates re-derive due amount and status
- Item add/remove and cancellation move stock back and forth
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import PosError, ValidationError
from ..models import Sale
from ..services import sales_service
from ..services.concurrency import run_with_retry
from ..validation import ModelValidationPolicy, validate_payload, require_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SALE_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "branch_id",
        "customer_id",
        "invoice_no",
        "payment_method",
        "discount_cents",
        "tax_cents",
        "paid_amount_cents",
        "created_by_id",
    },
    required_on_create={"branch_id", "invoice_no", "payment_method"},
    # omitted/null paid amount means "paid in full"
    allow_null_fields={"paid_amount_cents"},
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


@sales_bp.post("")
def create_sale_route():
    """
    Create a sale.

    Request body:
    {
        "branch_id": 1,
        "invoice_no": "INV-100",
        "payment_method": "cash",
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 2000}],
        "customer_id": 3,          (optional)
        "discount_cents": 0,       (optional)
        "tax_cents": 0,            (optional)
        "paid_amount_cents": 1000, (optional, default grand total)
        "award_points": true,      (optional, default LOYALTY_AUTO_AWARD)
        "created_by_id": 1         (optional)
    }

    Returns:
        201: sale with items
        400: invalid input / payment
        404: unknown branch/customer/product
        409: duplicate invoice or insufficient stock
    """
    try:
        payload = dict(_json_body())
        items = payload.pop("items", None)
        award_points = payload.pop("award_points", None)
        if award_points is not None and not isinstance(award_points, bool):
            raise ValidationError("award_points must be a boolean")
        patch = validate_payload(
            model=Sale,
            payload=payload,
            policy=SALE_CREATE_POLICY,
            partial=False,
        )

        sale = run_with_retry(lambda: sales_service.create_sale(
            items=items,
            award_points=award_points,
            **patch,
        ))
        return jsonify({"sale": sale.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        data = sale.to_dict()
        data["returns"] = [r.to_dict() for r in sale.returns]
        return jsonify({"sale": data}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.patch("/<int:sale_id>/payment")
def update_sale_payment_route(sale_id: int):
    """Request body: {"paid_amount_cents": 1500, "payment_method": "card"}"""
    try:
        payload = _json_body()
        if "paid_amount_cents" not in payload:
            raise ValidationError("paid_amount_cents is required")

        sale = run_with_retry(lambda: sales_service.update_sale_payment(
            sale_id,
            payload["paid_amount_cents"],
            payment_method=payload.get("payment_method"),
        ))
        return jsonify({"sale": sale.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update sale payment")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/items")
def add_sale_item_route(sale_id: int):
    """Request body: {"product_id": 2, "quantity": 1, "unit_price_cents": 500}"""
    try:
        payload = _json_body()
        sale = run_with_retry(lambda: sales_service.add_sale_item(
            sale_id,
            product_id=payload.get("product_id"),
            quantity=payload.get("quantity"),
            unit_price_cents=payload.get("unit_price_cents"),
            created_by_id=_optional_user(payload),
        ))
        return jsonify({"sale": sale.to_dict()}), 201

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add sale item")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>/items/<int:item_id>")
def remove_sale_item_route(sale_id: int, item_id: int):
    try:
        created_by_id = request.args.get("created_by_id")
        if created_by_id is not None:
            created_by_id = require_int("created_by_id", created_by_id, minimum=1)

        sale = run_with_retry(lambda: sales_service.remove_sale_item(
            sale_id, item_id, created_by_id=created_by_id,
        ))
        return jsonify({"sale": sale.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove sale item")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    """Request body: {"reason": "Customer changed mind", "created_by_id": 1}"""
    try:
        payload = _json_body()
        sale = run_with_retry(lambda: sales_service.cancel_sale(
            sale_id,
            reason=payload.get("reason"),
            created_by_id=_optional_user(payload),
        ))
        return jsonify({"sale": sale.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500
