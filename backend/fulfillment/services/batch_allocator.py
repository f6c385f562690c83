# Overview: FEFO batch selection and all-or-nothing multi-line reservation.

from __future__ import annotations

import time
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import AllocationFailed, InsufficientStock
from ..models import AllocationRecord
from . import inventory_ledger
"""
Allocation rules

- FEFO: batches are consumed by ascending exp_date, ties broken by
  ascending batch_number; batches with no shelf stock are skipped.
- A plan is only a draft: nothing is mutated until a ReservationTransaction
  commits it through inventory_ledger.reserve.
- A ReservationTransaction is all-or-nothing. If any reserve fails, every
  reservation already applied is released in reverse order before the
  error propagates; the caller then rolls back its DB transaction too.
- A planned batch that comes up short at commit time was drained after the
  plan read it. That is a stale plan, not a shortage: commit raises
  StaleDataError so run_with_retry re-plans from fresh quantities. Only a
  plan that sees too little stock across all batches is AllocationFailed.
"""


@dataclass(frozen=True)
class AllocationDraft:
    product_id: int
    batch_id: int
    batch_number: str
    quantity: int


@dataclass(frozen=True)
class Reservation:
    product_id: int
    batch_id: int
    quantity: int


def plan_allocation(product_id: int, qty: int, *, warehouse_id: int | None = None) -> list[AllocationDraft]:
    """
    Choose batches for qty units of a product, earliest expiry first.

    Raises InsufficientStock (with the total available) when the product
    cannot cover qty across all of its batches.
    """
    drafts: list[AllocationDraft] = []
    remaining = qty
    for batch in inventory_ledger.available_batches(product_id, warehouse_id=warehouse_id):
        if remaining <= 0:
            break
        take = min(batch.current_quantity, remaining)
        drafts.append(AllocationDraft(
            product_id=product_id,
            batch_id=batch.id,
            batch_number=batch.batch_number,
            quantity=take,
        ))
        remaining -= take

    if remaining > 0:
        available = qty - remaining
        raise InsufficientStock(
            f"Product {product_id}: requested {qty}, only {available} available",
            product_id=product_id,
            requested=qty,
            available=available,
        )
    return drafts


class ReservationTransaction:
    """
    Unit of work over several allocation drafts.

    Usage:
        txn = ReservationTransaction(deadline_seconds=10)
        txn.add(plan_allocation(product_id, qty))
        reservations = txn.commit(package_id=package.id)

    commit() reserves every draft through the ledger and writes one
    AllocationRecord per reservation when a package is given. On failure
    the applied reservations are compensated first. A batch drained since
    planning raises StaleDataError, as do OperationalError and
    StaleDataError from the session, so the caller's run_with_retry reruns
    the whole operation with a fresh plan. An expired deadline or any other
    storage failure raises AllocationFailed.
    """

    def __init__(self, *, deadline_seconds: float | None = None, actor_id: int | None = None):
        self.drafts: list[AllocationDraft] = []
        self.applied: list[Reservation] = []
        self.actor_id = actor_id
        self.deadline = (time.monotonic() + deadline_seconds) if deadline_seconds else None
        self.committed = False

    def add(self, drafts: list[AllocationDraft]) -> None:
        if self.committed:
            raise RuntimeError("ReservationTransaction already committed")
        self.drafts.extend(drafts)

    def _check_deadline(self) -> None:
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise AllocationFailed("Allocation deadline expired before all lines were reserved")

    def commit(self, *, package_id: int | None = None) -> list[Reservation]:
        if self.committed:
            raise RuntimeError("ReservationTransaction already committed")
        try:
            for draft in self.drafts:
                self._check_deadline()
                inventory_ledger.reserve(
                    draft.product_id,
                    draft.batch_id,
                    draft.quantity,
                    package_id=package_id,
                    actor_id=self.actor_id,
                )
                self.applied.append(Reservation(draft.product_id, draft.batch_id, draft.quantity))
                if package_id is not None:
                    db.session.add(AllocationRecord(
                        package_id=package_id,
                        batch_id=draft.batch_id,
                        product_id=draft.product_id,
                        quantity=draft.quantity,
                    ))
            db.session.flush()
        except InsufficientStock as exc:
            self.compensate(package_id=package_id)
            current_app.logger.info("Stale allocation plan: %s", exc.message)
            raise StaleDataError(f"Allocation plan is stale: {exc.message}") from exc
        except AllocationFailed:
            self.compensate(package_id=package_id)
            raise
        except (OperationalError, StaleDataError):
            # Session is unusable; the caller's rollback undoes the reservations
            self.applied.clear()
            raise
        except SQLAlchemyError as exc:
            current_app.logger.exception("Storage failure while reserving batches")
            self.applied.clear()
            raise AllocationFailed("Storage failure while reserving batches") from exc

        self.committed = True
        return list(self.applied)

    def compensate(self, *, package_id: int | None = None) -> None:
        """Release applied reservations in reverse order."""
        if not self.applied:
            return
        current_app.logger.info(
            "Compensating %s reservation(s)%s",
            len(self.applied),
            f" for package {package_id}" if package_id is not None else "",
        )
        for reservation in reversed(self.applied):
            inventory_ledger.release(
                reservation.batch_id,
                reservation.quantity,
                package_id=package_id,
                actor_id=self.actor_id,
                note="compensation",
            )
        self.applied.clear()


def allocate(
    product_id: int,
    qty: int,
    *,
    package_id: int | None = None,
    actor_id: int | None = None,
    deadline_seconds: float | None = None,
) -> list[Reservation]:
    """
    Plan and reserve a single product in the caller's transaction.

    Raises StaleDataError if a planned batch was drained meanwhile; run the
    caller under run_with_retry to re-plan.
    """
    txn = ReservationTransaction(deadline_seconds=deadline_seconds, actor_id=actor_id)
    try:
        txn.add(plan_allocation(product_id, qty))
    except InsufficientStock as exc:
        raise AllocationFailed(str(exc), failures=[exc]) from exc
    return txn.commit(package_id=package_id)
