from __future__ import annotations

from sqlalchemy import event

from ..errors import InvalidStateError


def append_only(model):
    """
    Class decorator: refuse ORM-level UPDATE and DELETE on a ledger model.

    Rows are written once inside the transaction that caused them and never
    touched again. Bulk table deletes (test teardown) bypass the mapper and
    are not affected.
    """
    def _reject(mapper, connection, target):
        raise InvalidStateError(
            f"{type(target).__name__} rows are append-only",
            details={"id": getattr(target, "id", None)},
        )

    event.listen(model, "before_update", _reject)
    event.listen(model, "before_delete", _reject)
    return model
