# Overview: Tagged back-references from ledger rows to the document that caused them.

"""
Inventory log entries and loyalty transactions point back at whatever caused
them: a purchase, a sale, a sale return, or a manual action. The database
stores that as a (reference_type, reference_id) pair; in Python it is one of
the frozen dataclasses below so callers can dispatch on the variant.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


REFERENCE_PURCHASE = "purchase"
REFERENCE_SALE = "sale"
REFERENCE_SALE_RETURN = "sale_return"
REFERENCE_MANUAL = "manual"

REFERENCE_TYPES = (REFERENCE_PURCHASE, REFERENCE_SALE, REFERENCE_SALE_RETURN, REFERENCE_MANUAL)


@dataclass(frozen=True)
class PurchaseRef:
    purchase_id: int


@dataclass(frozen=True)
class SaleRef:
    sale_id: int


@dataclass(frozen=True)
class SaleReturnRef:
    return_id: int


@dataclass(frozen=True)
class ManualRef:
    pass


Reference = Union[PurchaseRef, SaleRef, SaleReturnRef, ManualRef]

MANUAL = ManualRef()


def to_columns(ref: Reference) -> tuple[str, int | None]:
    """Flatten a reference into its (reference_type, reference_id) storage pair."""
    if isinstance(ref, PurchaseRef):
        return REFERENCE_PURCHASE, ref.purchase_id
    if isinstance(ref, SaleRef):
        return REFERENCE_SALE, ref.sale_id
    if isinstance(ref, SaleReturnRef):
        return REFERENCE_SALE_RETURN, ref.return_id
    if isinstance(ref, ManualRef):
        return REFERENCE_MANUAL, None
    raise TypeError(f"not a reference: {ref!r}")


def from_columns(reference_type: str, reference_id: int | None) -> Reference:
    if reference_type == REFERENCE_MANUAL:
        return MANUAL
    if reference_id is None:
        raise ValueError(f"{reference_type} reference requires an id")
    if reference_type == REFERENCE_PURCHASE:
        return PurchaseRef(reference_id)
    if reference_type == REFERENCE_SALE:
        return SaleRef(reference_id)
    if reference_type == REFERENCE_SALE_RETURN:
        return SaleReturnRef(reference_id)
    raise ValueError(f"unknown reference_type {reference_type!r}")
