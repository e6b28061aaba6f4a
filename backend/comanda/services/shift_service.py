# Overview: Service-layer operations for shift; opening float, cash reconciliation at close and shift reports.

"""
Cash Shift Reconciliation Service

WHY: Cashier accountability. Each shift starts with a counted float; every
CASH payment the cashier takes while the shift is open is attributed to
it; at close the drawer is counted and compared with what should be there.

DESIGN PRINCIPLES:
- One open shift per (tenant, user) at a time
- Expected cash = start amount + COMPLETED CASH-group payments linked to
  the shift (linked server-side when the payment was posted)
- Difference = counted - expected, always stored, never zeroed or hidden
- Closed shifts are immutable
- Every count in a shift report is scoped to the shift's tenant
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CashShift, DiningTable, Order, Payment, User
from ..models.orders import ACTIVE_ORDER_STATUSES, TABLE_STATUS_OCCUPIED
from comanda.time_utils import utcnow
from . import audit_service, order_number_service
from .audit_service import AuditContext
from .concurrency import lock_for_update, run_in_transaction
from .tenant_service import get_scoped


class ShiftError(ValidationError):
    """Raised for malformed shift input."""


SHIFT_OPEN = "OPEN"
SHIFT_CLOSED = "CLOSED"


@dataclass
class ShiftCloseResult:
    shift: CashShift
    expected_cash_cents: int
    difference_cents: int
    open_orders: int = 0

    @property
    def has_discrepancy(self) -> bool:
        return self.difference_cents != 0

    def to_dict(self) -> dict:
        return {
            "shift": self.shift.to_dict(),
            "expected_cash_cents": self.expected_cash_cents,
            "counted_cash_cents": self.shift.end_amount_cents,
            "difference_cents": self.difference_cents,
            "has_discrepancy": self.has_discrepancy,
            "open_orders": self.open_orders,
        }


# =============================================================================
# SHIFT MANAGEMENT
# =============================================================================

def open_shift(
    tenant_id: int,
    user_id: int,
    start_amount_cents: int,
    now: datetime | None = None,
    audit_context: AuditContext | None = None,
) -> CashShift:
    """
    Open a cash shift for user.

    Raises:
        ShiftError: start amount is not a non-negative integer
        NotFoundError: user is not in tenant
        ConflictError: user already has an open shift
    """
    if isinstance(start_amount_cents, bool) or not isinstance(start_amount_cents, int) or start_amount_cents < 0:
        raise ShiftError("start_amount_cents must be a non-negative integer")

    business_date = order_number_service.current_business_date(now)

    def _op() -> CashShift:
        # Lock the user row so two terminals cannot open two shifts at once
        user = lock_for_update(
            db.session.query(User).filter(User.id == user_id, User.tenant_id == tenant_id)
        ).first()
        if user is None or not user.is_active:
            raise NotFoundError("User")

        existing = get_open_shift(tenant_id, user_id)
        if existing is not None:
            raise ConflictError(
                "User already has an open shift",
                details={"shift_id": existing.id},
            )

        shift = CashShift(
            tenant_id=tenant_id,
            user_id=user_id,
            business_date=business_date,
            status=SHIFT_OPEN,
            start_amount_cents=start_amount_cents,
            start_time=utcnow(),
        )
        db.session.add(shift)
        db.session.flush()

        audit_service.log(
            tenant_id,
            "SHIFT_OPENED",
            "cash_shift",
            shift.id,
            audit_context or AuditContext(user_id=user_id),
            {"start_amount_cents": start_amount_cents, "business_date": business_date.isoformat()},
        )
        return shift

    shift = run_in_transaction(_op, immediate=True)
    current_app.logger.info("Shift opened tenant_id=%s user_id=%s shift_id=%s", tenant_id, user_id, shift.id)
    return shift


def close_shift(
    shift_id: int,
    counted_cash_cents: int,
    tenant_id: int,
    user_id: int,
    notes: str | None = None,
    manager_override: bool = False,
    audit_context: AuditContext | None = None,
) -> ShiftCloseResult:
    """
    Close a shift and record the cash difference.

    WHY: A non-zero difference is the signal (theft, change errors, an
    unrecorded payout). It is stored as is and flagged in the result.
    Orders the cashier still has open are reported, not blocking.

    IMMUTABLE: Once closed, a shift cannot be reopened or modified.
    """
    if isinstance(counted_cash_cents, bool) or not isinstance(counted_cash_cents, int) or counted_cash_cents < 0:
        raise ShiftError("counted_cash_cents must be a non-negative integer")

    def _op() -> ShiftCloseResult:
        shift = get_scoped(CashShift, shift_id, tenant_id, label="Shift", lock=True)
        if shift.status != SHIFT_OPEN:
            raise ConflictError("Shift already closed")
        if shift.user_id != user_id and not manager_override:
            raise ForbiddenError("Only the shift owner can close this shift without manager approval")

        expected = calculate_expected_cash(shift)
        difference = counted_cash_cents - expected

        shift.status = SHIFT_CLOSED
        shift.end_time = utcnow()
        shift.end_amount_cents = counted_cash_cents
        shift.expected_cash_cents = expected
        shift.difference_cents = difference
        shift.closed_by_user_id = user_id
        shift.notes = notes

        open_orders = _count_open_orders(tenant_id, shift.user_id)

        audit_service.log(
            tenant_id,
            "SHIFT_CLOSED",
            "cash_shift",
            shift.id,
            audit_context or AuditContext(user_id=user_id),
            {
                "expected_cash_cents": expected,
                "counted_cash_cents": counted_cash_cents,
                "difference_cents": difference,
                "manager_override": bool(manager_override and shift.user_id != user_id),
                "open_orders": open_orders,
            },
        )
        return ShiftCloseResult(
            shift=shift,
            expected_cash_cents=expected,
            difference_cents=difference,
            open_orders=open_orders,
        )

    result = run_in_transaction(_op, immediate=True)
    if result.has_discrepancy:
        current_app.logger.warning(
            "Shift %s closed with cash difference %s cents (expected %s)",
            shift_id, result.difference_cents, result.expected_cash_cents,
        )
    else:
        current_app.logger.info("Shift %s closed, cash balanced", shift_id)
    return result


# =============================================================================
# QUERIES
# =============================================================================

def get_open_shift(tenant_id: int, user_id: int) -> CashShift | None:
    """The caller's currently open shift, if any."""
    return db.session.query(CashShift).filter(
        CashShift.tenant_id == tenant_id,
        CashShift.user_id == user_id,
        CashShift.status == SHIFT_OPEN,
    ).order_by(CashShift.id.desc()).first()


def calculate_expected_cash(shift: CashShift) -> int:
    """start amount + sum of COMPLETED cash payments attributed to the shift."""
    from .payment_service import GROUP_CASH, STATUS_COMPLETED

    cash_in = db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0)).filter(
        Payment.tenant_id == shift.tenant_id,
        Payment.shift_id == shift.id,
        Payment.method_group == GROUP_CASH,
        Payment.status == STATUS_COMPLETED,
    ).scalar()
    return shift.start_amount_cents + int(cash_in or 0)


def get_shift_report(shift_id: int, tenant_id: int) -> dict:
    """
    Shift summary: payments by method, orders served, cash position.

    Payments are those posted by the shift's user between start and end
    (or now while open). Table and order counts are tenant-scoped.
    """
    from .payment_service import STATUS_COMPLETED

    shift = get_scoped(CashShift, shift_id, tenant_id, label="Shift")
    window_end = shift.end_time or utcnow()

    payments = db.session.query(Payment).filter(
        Payment.tenant_id == tenant_id,
        Payment.created_by_user_id == shift.user_id,
        Payment.status == STATUS_COMPLETED,
        Payment.created_at >= shift.start_time,
        Payment.created_at <= window_end,
    ).all()

    by_group: dict[str, int] = {}
    by_method: dict[str, int] = {}
    for payment in payments:
        by_group[payment.method_group] = by_group.get(payment.method_group, 0) + payment.amount_cents
        by_method[payment.method] = by_method.get(payment.method, 0) + payment.amount_cents

    expected = shift.expected_cash_cents if shift.status == SHIFT_CLOSED else calculate_expected_cash(shift)

    occupied_tables = db.session.query(func.count(DiningTable.id)).filter(
        DiningTable.tenant_id == tenant_id,
        DiningTable.status == TABLE_STATUS_OCCUPIED,
    ).scalar()

    return {
        "shift": shift.to_dict(),
        "total_orders": len({payment.order_id for payment in payments}),
        "total_sales_cents": sum(payment.amount_cents for payment in payments),
        "by_method_group": by_group,
        "by_method": by_method,
        "expected_cash_cents": expected,
        "counted_cash_cents": shift.end_amount_cents,
        "difference_cents": shift.difference_cents,
        "occupied_tables": int(occupied_tables or 0),
        "open_orders": _count_open_orders(tenant_id, shift.user_id),
    }


def get_shift_history(tenant_id: int, user_id: int | None = None, limit: int = 20) -> list[CashShift]:
    query = db.session.query(CashShift).filter(CashShift.tenant_id == tenant_id)
    if user_id is not None:
        query = query.filter(CashShift.user_id == user_id)
    return query.order_by(CashShift.start_time.desc(), CashShift.id.desc()).limit(limit).all()


def _count_open_orders(tenant_id: int, server_id: int) -> int:
    count = db.session.query(func.count(Order.id)).filter(
        Order.tenant_id == tenant_id,
        Order.server_id == server_id,
        Order.status.in_(ACTIVE_ORDER_STATUSES),
    ).scalar()
    return int(count or 0)
