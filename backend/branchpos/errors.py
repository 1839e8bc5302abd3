# Overview: Typed error taxonomy shared by the transactional services and the HTTP layer.

"""
Error taxonomy for the ledger core.

Every service raises one of these; none of them is logged-and-swallowed
inside the services. Routes translate them to JSON using ``status_code``.

- validation errors: bad input, rejected before any mutation
- state-conflict errors: stock, points, return overage, duplicate invoice
- reference errors: unknown branch/supplier/product/customer/sale
- concurrency errors: lock timeout or serialization conflict (retryable)
"""

from __future__ import annotations


class PosError(Exception):
    """Base class for all typed outcomes of the ledger core."""

    status_code = 500
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "type": type(self).__name__}
        if self.details:
            body["details"] = self.details
        return body


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(PosError):
    """400-level input problem."""

    status_code = 400


class InvalidPaymentError(ValidationError):
    """Paid amount negative or above the sale's grand total."""


# =============================================================================
# REFERENCES
# =============================================================================

class ReferenceNotFoundError(PosError):
    """A referenced branch, supplier, product, customer or document does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id, message: str | None = None):
        super().__init__(
            message or f"{entity.capitalize()} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


# =============================================================================
# STATE CONFLICTS
# =============================================================================

class StateConflictError(PosError):
    """Business rule rejected the operation; nothing was written."""

    status_code = 409


class InsufficientStockError(StateConflictError):
    def __init__(
        self,
        *,
        product_id: int,
        branch_id: int,
        available: int,
        requested: int,
        items: list[dict] | None = None,
    ):
        details = {
            "product_id": product_id,
            "branch_id": branch_id,
            "available": available,
            "requested": requested,
        }
        if items:
            details["items"] = items
        super().__init__(
            f"Insufficient stock for product {product_id} in branch {branch_id}. "
            f"Available: {available}, Requested: {requested}",
            details=details,
        )
        self.product_id = product_id
        self.branch_id = branch_id
        self.available = available
        self.requested = requested


class DuplicateInvoiceError(StateConflictError):
    def __init__(self, invoice_no: str, document: str = "sale"):
        super().__init__(
            f"Invoice number {invoice_no!r} already exists",
            details={"invoice_no": invoice_no, "document": document},
        )
        self.invoice_no = invoice_no


class InvalidStateError(StateConflictError):
    """Operation not allowed for the document's current status."""


class ReturnExceedsQuantityError(StateConflictError):
    status_code = 400

    def __init__(self, *, sale_id: int, product_id: int, requested: int, sold: int, already_returned: int):
        super().__init__(
            f"Cannot return {requested} units. Sold: {sold}, already returned: {already_returned}, "
            f"available: {sold - already_returned}",
            details={
                "sale_id": sale_id,
                "product_id": product_id,
                "requested": requested,
                "sold_quantity": sold,
                "already_returned": already_returned,
                "available_to_return": sold - already_returned,
            },
        )


class RefundExceedsValueError(StateConflictError):
    status_code = 400

    def __init__(self, *, refund_amount_cents: int, max_refund_cents: int):
        super().__init__(
            f"Refund amount ({refund_amount_cents}) exceeds maximum allowed ({max_refund_cents})",
            details={"refund_amount_cents": refund_amount_cents, "max_refund_cents": max_refund_cents},
        )


class InsufficientPointsError(StateConflictError):
    status_code = 400

    def __init__(self, *, customer_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient points. Available: {available}, Requested: {requested}",
            details={"customer_id": customer_id, "available": available, "requested": requested},
        )


# =============================================================================
# CONCURRENCY
# =============================================================================

class ConflictError(PosError):
    """Deadlock, serialization failure or stale row; safe to retry."""

    status_code = 409
    retryable = True


class TransactionTimeoutError(PosError):
    """Gave up waiting for a lock."""

    status_code = 503
    retryable = True
