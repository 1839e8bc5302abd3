# Overview: Flask API routes for the stock ledger and inventory log; parses input and returns JSON responses.

# backend/branchpos/routes/stock.py
"""
Stock ledger routes.

- Reads never write: quantity of a missing (product, branch) pair is 0.
- Adjustments run through the ledger (row lock, non-negative check, log row).
- Low-stock and shrinkage lists are computed in SQL.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import PosError, ValidationError
from ..models import InventoryLogEntry, StockEntry
from ..references import from_columns
from ..validation import ModelValidationPolicy, validate_payload, require_int
from ..services import stock_service, inventory_log_service
from ..services.concurrency import run_with_retry


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")

STOCK_ADJUST_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "branch_id", "quantity_change", "created_by_id", "note"},
    required_on_create={"product_id", "branch_id", "quantity_change"},
)

STOCK_SET_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "branch_id", "quantity"},
    required_on_create={"product_id", "branch_id", "quantity"},
)


@stock_bp.get("/<int:branch_id>/<int:product_id>")
def get_stock_route(branch_id: int, product_id: int):
    """Current quantity for (product, branch)."""
    return jsonify({
        "product_id": product_id,
        "branch_id": branch_id,
        "quantity": stock_service.get_stock_quantity(product_id, branch_id),
    }), 200


@stock_bp.get("/<int:branch_id>")
def list_branch_stock_route(branch_id: int):
    try:
        entries = stock_service.list_branch_stock(branch_id)
        return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@stock_bp.get("/<int:branch_id>/low")
def low_stock_route(branch_id: int):
    try:
        entries = stock_service.find_low_stock(branch_id)
        return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@stock_bp.get("/<int:branch_id>/value")
def stock_value_route(branch_id: int):
    try:
        return jsonify(stock_service.get_branch_stock_value(branch_id)), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code


@stock_bp.post("/adjust")
def adjust_stock_route():
    """
    Apply a signed quantity delta.

    Request body:
    {
        "product_id": 1,
        "branch_id": 1,
        "quantity_change": -3,
        "created_by_id": 1,   (optional)
        "note": "Damaged"     (optional)
    }

    Returns:
        200: updated stock entry
        400: invalid input
        404: unknown product/branch
        409: insufficient stock
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=InventoryLogEntry,
            payload=payload,
            policy=STOCK_ADJUST_POLICY,
            partial=False,
        )

        entry = run_with_retry(lambda: stock_service.adjust_stock(
            product_id=patch["product_id"],
            branch_id=patch["branch_id"],
            delta=patch["quantity_change"],
            created_by_id=patch.get("created_by_id"),
            note=patch.get("note"),
        ))
        return jsonify({"stock": entry.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.put("/set")
def set_stock_route():
    """Administrative correction to an absolute quantity (logged as adjustment)."""
    payload = request.get_json(silent=True) or {}

    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        extras = {k: payload.pop(k) for k in ("created_by_id", "note") if k in payload}
        patch = validate_payload(model=StockEntry, payload=payload, policy=STOCK_SET_POLICY, partial=False)
        created_by_id = extras.get("created_by_id")
        if created_by_id is not None:
            created_by_id = require_int("created_by_id", created_by_id, minimum=1)

        entry = run_with_retry(lambda: stock_service.set_stock_quantity(
            product_id=patch["product_id"],
            branch_id=patch["branch_id"],
            quantity=patch["quantity"],
            created_by_id=created_by_id,
            note=extras.get("note"),
        ))
        return jsonify({"stock": entry.to_dict()}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to set stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/logs")
def list_logs_route():
    """
    Inventory log, newest first.

    Query params: product_id, branch_id, change_type, reference_type,
    reference_id, shrinking=1, limit (default 200, max 1000)
    """
    args = request.args
    try:
        limit = min(require_int("limit", args.get("limit", "200"), minimum=1), 1000)
        branch_id = require_int("branch_id", args["branch_id"]) if "branch_id" in args else None

        if args.get("shrinking") in ("1", "true"):
            rows = inventory_log_service.find_shrinking_movements(branch_id=branch_id, limit=limit)
        else:
            reference = None
            if "reference_type" in args:
                try:
                    reference_id = args.get("reference_id")
                    reference = from_columns(
                        args["reference_type"],
                        require_int("reference_id", reference_id) if reference_id is not None else None,
                    )
                except ValueError as e:
                    raise ValidationError(str(e))
            rows = inventory_log_service.list_inventory_logs(
                product_id=require_int("product_id", args["product_id"]) if "product_id" in args else None,
                branch_id=branch_id,
                change_type=args.get("change_type"),
                reference=reference,
                limit=limit,
            )
        return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)}), 200

    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
