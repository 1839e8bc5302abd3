# Overview: Reference checks against the catalog tables owned by the CRUD layer.

from __future__ import annotations

from ..errors import ReferenceNotFoundError
from ..extensions import db
from ..models import Branch, Customer, Product, Supplier, User


def ensure_branch(branch_id: int) -> Branch:
    branch = db.session.query(Branch).filter_by(id=branch_id).first()
    if branch is None:
        raise ReferenceNotFoundError("branch", branch_id)
    return branch


def ensure_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.query(Supplier).filter_by(id=supplier_id).first()
    if supplier is None:
        raise ReferenceNotFoundError("supplier", supplier_id)
    return supplier


def ensure_product(product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise ReferenceNotFoundError("product", product_id)
    return product


def ensure_products(product_ids) -> dict[int, Product]:
    """Load every product in one query; the first missing id is reported."""
    wanted = set(product_ids)
    found = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(wanted)).all()
    }
    for product_id in product_ids:
        if product_id not in found:
            raise ReferenceNotFoundError("product", product_id)
    return found


def ensure_customer(customer_id: int) -> Customer:
    customer = db.session.query(Customer).filter_by(id=customer_id).first()
    if customer is None:
        raise ReferenceNotFoundError("customer", customer_id)
    return customer


def ensure_user(user_id: int | None) -> User | None:
    """Creator/processor ids are optional; when given they must exist."""
    if user_id is None:
        return None
    user = db.session.query(User).filter_by(id=user_id).first()
    if user is None:
        raise ReferenceNotFoundError("user", user_id)
    return user
