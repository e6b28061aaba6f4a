# Overview: Service-layer operations for payment; split payments, overpayment guard and cash shift attribution.

"""
Payment Settlement Service

WHY: Tables pay in every imaginable way: half cash, half card, three
friends splitting, a QR wallet for the tip. The order must end up with an
exact record of every tender and must never be silently overcharged.

DESIGN PRINCIPLES:
- Payments are separate rows (many-to-one with orders); a batch of
  payments posts atomically or not at all
- Overpayment guard: existing + new may exceed the total by at most
  OVERPAYMENT_TOLERANCE (tips, rounding), beyond that the batch is rejected
- Method codes are free-form (tenants define their own) and are mapped to
  a canonical group for reporting; unknown codes go to OTHER instead of
  being rejected
- CASH payments are attributed to the cashier's open shift, resolved on
  the server; the client cannot choose the shift
- Payments are never deleted; corrections are voids
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_FLOOR

from flask import current_app

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import Order, Payment
from ..models.orders import ORDER_STATUS_CANCELLED, ORDER_STATUS_CLOSED
from comanda.time_utils import utcnow
from . import audit_service, order_service, shift_service
from .audit_service import AuditContext
from .concurrency import run_in_transaction
from .tenant_service import get_scoped


class PaymentError(ValidationError):
    """Raised for malformed payment input."""


# =============================================================================
# METHOD GROUPS (CONSTANTS)
# =============================================================================

GROUP_CASH = "CASH"
GROUP_CARD = "CARD"
GROUP_TRANSFER = "TRANSFER"
GROUP_QR = "QR"
GROUP_OTHER = "OTHER"

METHOD_GROUPS = (GROUP_CASH, GROUP_CARD, GROUP_TRANSFER, GROUP_QR, GROUP_OTHER)

# Known tender codes sent by terminals (several locales) -> canonical group
METHOD_ALIASES = {
    "CASH": GROUP_CASH,
    "EFECTIVO": GROUP_CASH,
    "CARD": GROUP_CARD,
    "DEBIT": GROUP_CARD,
    "CREDIT": GROUP_CARD,
    "DEBITO": GROUP_CARD,
    "CREDITO": GROUP_CARD,
    "TARJETA": GROUP_CARD,
    "TRANSFER": GROUP_TRANSFER,
    "TRANSFERENCIA": GROUP_TRANSFER,
    "BANCO": GROUP_TRANSFER,
    "QR": GROUP_QR,
    "QR_INTEGRATED": GROUP_QR,
    "MERCADOPAGO": GROUP_QR,
    "MP": GROUP_QR,
    "OTHER": GROUP_OTHER,
}

MAX_METHOD_LENGTH = 32

STATUS_COMPLETED = "COMPLETED"
STATUS_VOIDED = "VOIDED"


@dataclass
class PaymentResult:
    order: Order
    payments_added: list[Payment] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "payments_added": [payment.to_dict() for payment in self.payments_added],
        }


def normalize_method(code: str) -> str:
    """
    Canonical group for a tender code.

    Unknown codes map to OTHER (logged) rather than being rejected, and
    never to CASH, so an unrecognised tender cannot inflate drawer cash.
    """
    key = (code or "").strip().upper()
    group = METHOD_ALIASES.get(key)
    if group is None:
        current_app.logger.warning("Unknown payment method code %r, recording as %s", code, GROUP_OTHER)
        return GROUP_OTHER
    return group


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def add_payments(
    order_id: str,
    payments: list,
    tenant_id: int,
    user_id: int,
    close_order: bool = False,
    audit_context: AuditContext | None = None,
) -> PaymentResult:
    """
    Post a batch of payments against an order.

    Preconditions (checked in this order, each a distinct failure):
    1. Order exists in tenant (NotFoundError, identical for other tenants)
    2. Order not CANCELLED (ConflictError)
    3. Order not CLOSED (ConflictError)
    4. Order not already fully paid (ConflictError)
    5. Batch non-empty and bounded, each amount an integer >= minimum (ValidationError)
    6. Overpayment guard over the whole batch (ValidationError)

    If close_order is set and the batch brings the order to fully paid,
    the order is CLOSED in the same transaction.
    """
    def _op() -> PaymentResult:
        order = get_scoped(Order, order_id, tenant_id, label="Order", lock=True)
        added = _add_payments_locked(
            order,
            payments,
            tenant_id=tenant_id,
            user_id=user_id,
            close_order=close_order,
            audit_context=audit_context,
        )
        return PaymentResult(order=order, payments_added=added)

    return run_in_transaction(_op, immediate=True)


def overpayment_limit_cents(total_cents: int) -> int:
    """Largest sum of payments accepted for an order total."""
    tolerance = Decimal(str(current_app.config.get("OVERPAYMENT_TOLERANCE", 0.10)))
    limit = (Decimal(total_cents) * (Decimal(1) + tolerance)).to_integral_value(rounding=ROUND_FLOOR)
    return int(limit)


def _add_payments_locked(
    order: Order,
    payments,
    *,
    tenant_id: int,
    user_id: int,
    close_order: bool = False,
    audit_context: AuditContext | None = None,
) -> list[Payment]:
    """Post payments against an already locked order inside the current transaction."""
    if order.status == ORDER_STATUS_CANCELLED:
        raise ConflictError("Cannot add payments to a cancelled order")
    if order.status == ORDER_STATUS_CLOSED:
        raise ConflictError("Cannot add payments to a closed order")

    order_service.refresh_payment_status(order)
    if order.is_fully_paid:
        raise ConflictError(
            "Order is already fully paid",
            details={"total_cents": order.total_cents, "paid_cents": order.paid_cents},
        )

    parsed = _validate_batch(payments)
    batch_total = sum(amount for _, amount in parsed)
    limit = overpayment_limit_cents(order.total_cents)
    if order.paid_cents + batch_total > limit:
        raise ValidationError(
            "Payment exceeds the order total beyond the allowed tolerance",
            details={
                "reason": "OVERPAYMENT",
                "total_cents": order.total_cents,
                "paid_cents": order.paid_cents,
                "attempted_cents": batch_total,
                "max_accepted_cents": limit,
            },
        )

    grouped = [(method, normalize_method(method), amount) for method, amount in parsed]

    shift_id = None
    if any(group == GROUP_CASH for _, group, _ in grouped):
        shift = shift_service.get_open_shift(tenant_id, user_id)
        if shift is not None:
            shift_id = shift.id
        elif current_app.config.get("REQUIRE_OPEN_SHIFT_FOR_CASH"):
            raise ConflictError("Open a cash shift before taking cash payments")
        else:
            current_app.logger.warning(
                "Cash payment without an open shift tenant_id=%s user_id=%s order_id=%s",
                tenant_id, user_id, order.id,
            )

    now = utcnow()
    added = []
    for method, group, amount in grouped:
        payment = Payment(
            tenant_id=tenant_id,
            method=method,
            method_group=group,
            amount_cents=amount,
            status=STATUS_COMPLETED,
            shift_id=shift_id if group == GROUP_CASH else None,
            created_by_user_id=user_id,
            created_at=now,
        )
        order.payments.append(payment)
        added.append(payment)

    order_service.refresh_payment_status(order)

    closed = False
    if close_order and order.paid_cents >= order.total_cents:
        order_service.close(order)
        closed = True

    db.session.flush()

    audit_service.log(
        tenant_id,
        "PAYMENTS_ADDED",
        "order",
        order.id,
        audit_context or AuditContext(user_id=user_id),
        {
            "payment_ids": [payment.id for payment in added],
            "amount_cents": batch_total,
            "methods": [method for method, _, _ in grouped],
            "shift_id": shift_id,
            "closed": closed,
        },
    )
    current_app.logger.info(
        "Payments posted order_id=%s count=%s amount_cents=%s status=%s",
        order.id, len(added), batch_total, order.status,
    )
    return added


def _validate_batch(payments) -> list[tuple[str, int]]:
    if not isinstance(payments, list) or not payments:
        raise PaymentError("At least one payment is required")

    max_per_request = current_app.config.get("MAX_PAYMENTS_PER_REQUEST", 10)
    if len(payments) > max_per_request:
        raise PaymentError(f"At most {max_per_request} payments per request")

    minimum = current_app.config.get("MIN_PAYMENT_CENTS", 1)
    parsed = []
    for index, raw in enumerate(payments):
        if not isinstance(raw, dict):
            raise PaymentError(f"payments[{index}] must be an object")

        method = raw.get("method")
        if not isinstance(method, str) or not method.strip():
            raise PaymentError(f"payments[{index}].method is required")
        method = method.strip().upper()
        if len(method) > MAX_METHOD_LENGTH:
            raise PaymentError(f"payments[{index}].method exceeds {MAX_METHOD_LENGTH} characters")

        amount = raw.get("amount_cents")
        # Reject floats, bools, NaN/inf and strings; money is whole cents
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise PaymentError(f"payments[{index}].amount_cents must be an integer number of cents")
        if amount < minimum:
            raise PaymentError(f"payments[{index}].amount_cents must be at least {minimum}")

        parsed.append((method, amount))
    return parsed


# =============================================================================
# PAYMENT VOIDS
# =============================================================================

def void_payment(
    payment_id: int,
    tenant_id: int,
    user_id: int,
    reason: str,
    audit_context: AuditContext | None = None,
) -> Payment:
    """
    Void a payment (refund or keying mistake).

    WHY: Corrections must not delete the audit trail. The row stays with
    status VOIDED and no longer counts towards the order or the shift.
    Closed orders are immutable.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")

    def _op() -> Payment:
        payment = get_scoped(Payment, payment_id, tenant_id, label="Payment", lock=True)
        if payment.status == STATUS_VOIDED:
            raise ConflictError("Payment already voided")

        order = get_scoped(Order, payment.order_id, tenant_id, label="Order", lock=True)
        if order.status == ORDER_STATUS_CLOSED:
            raise ConflictError("Cannot void a payment on a closed order")

        payment.status = STATUS_VOIDED
        payment.voided_by_user_id = user_id
        payment.voided_at = utcnow()
        payment.void_reason = str(reason).strip()[:255]

        order_service.refresh_payment_status(order)

        audit_service.log(
            tenant_id,
            "PAYMENT_VOIDED",
            "payment",
            payment.id,
            audit_context or AuditContext(user_id=user_id),
            {
                "order_id": order.id,
                "amount_cents": payment.amount_cents,
                "method": payment.method,
                "reason": payment.void_reason,
            },
        )
        return payment

    return run_in_transaction(_op, immediate=True)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment_summary(order_id: str, tenant_id: int) -> dict:
    """Totals, balance and completed payments by method group for one order."""
    order = get_scoped(Order, order_id, tenant_id, label="Order")
    completed = [p for p in order.payments if p.status == STATUS_COMPLETED]

    by_group: dict[str, int] = {}
    for payment in completed:
        by_group[payment.method_group] = by_group.get(payment.method_group, 0) + payment.amount_cents

    return {
        "order_id": order.id,
        "status": order.status,
        "total_cents": order.total_cents,
        "paid_cents": order.paid_cents,
        "balance_due_cents": order.balance_due_cents,
        "change_due_cents": max(order.paid_cents - order.total_cents, 0),
        "max_accepted_cents": overpayment_limit_cents(order.total_cents),
        "by_method_group": by_group,
        "payments": [payment.to_dict() for payment in order.payments],
    }
