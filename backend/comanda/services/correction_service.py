# Overview: Service-layer operations for order corrections; item voids with stock reversal and table-to-table transfers.

"""
Order Correction Service

WHY: Orders are never edited in place once sent. A wrong item is voided
(with a reason, by a manager) and its stock comes back; a party that moves
tables takes its items along. Both leave a complete audit trail.

DESIGN PRINCIPLES:
- Void is logical: the item row stays, frozen with status VOID, and stops
  counting towards totals
- Stock reversal restores the consumption recorded at sale time, never the
  current recipe
- Voiding a line on a PAID order is the correction path for paid orders;
  the total drops and the order is left overpaid for the cashier to refund
- Transfers move rows, not copies: items keep their ids and price
  snapshots, and both orders are recomputed
- Items already SERVED, or VOID, stay where they are
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import DiningTable, Order, OrderItem
from ..models.orders import (
    ITEM_STATUS_COOKING,
    ITEM_STATUS_PENDING,
    ITEM_STATUS_READY,
    ITEM_STATUS_VOID,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_OPEN,
    TABLE_STATUS_OCCUPIED,
    TERMINAL_ORDER_STATUSES,
)
from comanda.time_utils import utcnow
from . import audit_service, order_number_service, order_service, stock_service
from .audit_service import AuditContext
from .concurrency import lock_for_update, run_in_transaction
from .tenant_service import get_scoped


# =============================================================================
# VOID REASONS (CONSTANTS)
# =============================================================================

VOID_REASONS = {
    "MISTAKE": "Order entry mistake",
    "CUSTOMER_CHANGED_MIND": "Customer changed their mind",
    "WRONG_ITEM": "Wrong item sent",
    "KITCHEN_ERROR": "Kitchen error",
    "COMPLAINT": "Customer complaint",
    "QUALITY_ISSUE": "Quality issue",
    "OUT_OF_STOCK": "Out of stock",
    "DUPLICATE_ENTRY": "Duplicate entry",
    "OTHER": "Other",
}

TRANSFERABLE_ITEM_STATUSES = (ITEM_STATUS_PENDING, ITEM_STATUS_COOKING, ITEM_STATUS_READY)

MAX_VOID_NOTES_LENGTH = 500


@dataclass
class VoidResult:
    item: OrderItem
    order: Order
    amount_removed_cents: int

    def to_dict(self) -> dict:
        return {
            "item": self.item.to_dict(),
            "order": self.order.to_dict(),
            "amount_removed_cents": self.amount_removed_cents,
        }


@dataclass
class TransferResult:
    source_order: Order
    target_order: Order
    moved_item_ids: list[int] = field(default_factory=list)
    target_created: bool = False

    def to_dict(self) -> dict:
        return {
            "source_order": self.source_order.to_dict(),
            "target_order": self.target_order.to_dict(),
            "moved_item_ids": self.moved_item_ids,
            "target_created": self.target_created,
        }


def list_void_reasons() -> list[dict]:
    return [{"code": code, "label": label} for code, label in VOID_REASONS.items()]


# =============================================================================
# ITEM VOID
# =============================================================================

def void_item(
    item_id: int,
    reason: str,
    notes: str | None,
    tenant_id: int,
    audit_context: AuditContext | None = None,
) -> VoidResult:
    """
    Void one order item.

    Args:
        item_id: Order item to void
        reason: One of VOID_REASONS
        notes: Free text explanation (optional)
        tenant_id: Caller's tenant
        audit_context: Who is voiding, from where

    Raises:
        ValidationError: unknown reason
        NotFoundError: item not in tenant
        ConflictError: item already void, or order CLOSED/CANCELLED
    """
    reason_code = (reason or "").strip().upper()
    if reason_code not in VOID_REASONS:
        raise ValidationError("Invalid void reason", details={"allowed": list(VOID_REASONS)})
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string")

    context = audit_context or AuditContext()

    def _op() -> VoidResult:
        item = get_scoped(OrderItem, item_id, tenant_id, label="Order item", lock=True)
        order = get_scoped(Order, item.order_id, tenant_id, label="Order", lock=True)

        if item.status == ITEM_STATUS_VOID:
            raise ConflictError("Item is already void")
        if order.status in TERMINAL_ORDER_STATUSES:
            raise ConflictError(f"Cannot void items on a {order.status} order")

        previous_status = item.status
        previous_total = order.total_cents
        line_total = item.line_total_cents

        item.status = ITEM_STATUS_VOID
        item.void_reason = reason_code
        item.void_notes = notes.strip()[:MAX_VOID_NOTES_LENGTH] if notes else None
        item.voided_at = utcnow()
        item.voided_by_user_id = context.user_id

        movements = stock_service.reverse_for_void(item, user_id=context.user_id, reason=reason_code)
        order_service.recompute_totals(order)
        amount_removed = previous_total - order.total_cents

        audit_service.log(
            tenant_id,
            "ORDER_ITEM_VOIDED",
            "order_item",
            item.id,
            context,
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "product_id": item.product_id,
                "quantity": item.quantity,
                "line_total_cents": line_total,
                "amount_removed_cents": amount_removed,
                "previous_status": previous_status,
                "reason": reason_code,
                "notes": item.void_notes,
                "stock_movements": len(movements),
                "order_status": order.status,
            },
        )
        return VoidResult(item=item, order=order, amount_removed_cents=amount_removed)

    result = run_in_transaction(_op, immediate=True)
    current_app.logger.info(
        "Order item voided item_id=%s order_id=%s reason=%s amount_removed_cents=%s",
        item_id, result.order.id, reason_code, result.amount_removed_cents,
    )
    if result.order.paid_cents > result.order.total_cents:
        current_app.logger.warning(
            "Order %s overpaid by %s cents after void; refund due",
            result.order.id, result.order.paid_cents - result.order.total_cents,
        )
    return result


# =============================================================================
# TABLE TRANSFER
# =============================================================================

def transfer_items(
    item_ids: list,
    from_table_id: int,
    to_table_id: int,
    tenant_id: int,
    audit_context: AuditContext | None = None,
) -> TransferResult:
    """
    Move items from the open order on one table to the open order on another.

    A target table without an open order gets a fresh order (numbered by the
    allocator in this same transaction). A source order left without live
    items is CANCELLED and its table freed.

    Raises:
        ValidationError: bad id list, same table twice, items not on the source order
        NotFoundError: either table not in tenant
        ConflictError: no open order on source, source has payments,
            items SERVED or VOID
    """
    moved_ids = _validate_item_ids(item_ids)
    _validate_table_id(from_table_id, "from_table_id")
    _validate_table_id(to_table_id, "to_table_id")
    if from_table_id == to_table_id:
        raise ValidationError("Source and target tables must be different")

    context = audit_context or AuditContext()
    business_date = order_number_service.current_business_date()

    def _op() -> TransferResult:
        source_table = get_scoped(DiningTable, from_table_id, tenant_id, label="Table", lock=True)
        target_table = get_scoped(DiningTable, to_table_id, tenant_id, label="Table", lock=True)

        source = order_service.get_open_order_for_table(source_table, tenant_id)
        if source is None:
            raise ConflictError("Source table has no open order", details={"table_id": source_table.id})
        source = lock_for_update(db.session.query(Order).filter(Order.id == source.id)).one()

        if any(payment.status == "COMPLETED" for payment in source.payments):
            raise ConflictError(
                "Cannot transfer items from an order that already has payments",
                details={"order_id": source.id, "paid_cents": source.paid_cents},
            )

        by_id = {item.id: item for item in source.items}
        foreign = [item_id for item_id in moved_ids if item_id not in by_id]
        if foreign:
            raise ValidationError(
                "Items do not belong to the source order",
                details={"item_ids": foreign, "order_id": source.id},
            )
        blocked = [
            {"id": by_id[item_id].id, "status": by_id[item_id].status}
            for item_id in moved_ids
            if by_id[item_id].status not in TRANSFERABLE_ITEM_STATUSES
        ]
        if blocked:
            raise ConflictError("Served or void items cannot be transferred", details={"items": blocked})

        target = order_service.get_open_order_for_table(target_table, tenant_id)
        created = False
        if target is None:
            target = _open_order_for_transfer(source, target_table, business_date)
            created = True
        else:
            target = lock_for_update(db.session.query(Order).filter(Order.id == target.id)).one()
            if target.status in TERMINAL_ORDER_STATUSES:
                raise ConflictError(f"Target order is {target.status}")

        for item_id in moved_ids:
            by_id[item_id].order = target

        order_service.recompute_totals(target)
        order_service.recompute_totals(source)

        target_table.status = TABLE_STATUS_OCCUPIED
        target_table.current_order_id = target.id
        target_table.server_id = target.server_id

        source_emptied = not any(item.status != ITEM_STATUS_VOID for item in source.items)
        if source_emptied:
            source.status = ORDER_STATUS_CANCELLED
            source.cancelled_at = utcnow()
            source.cancelled_by_user_id = context.user_id
            order_service.release_table(source)

        db.session.flush()

        audit_service.log(
            tenant_id,
            "ORDER_ITEMS_TRANSFERRED",
            "order",
            source.id,
            context,
            {
                "item_ids": moved_ids,
                "from_table_id": source_table.id,
                "to_table_id": target_table.id,
                "target_order_id": target.id,
                "target_created": created,
                "source_cancelled": source_emptied,
            },
        )
        return TransferResult(
            source_order=source,
            target_order=target,
            moved_item_ids=moved_ids,
            target_created=created,
        )

    result = run_in_transaction(_op, immediate=True)
    current_app.logger.info(
        "Items transferred count=%s from_table=%s to_table=%s target_order_id=%s",
        len(result.moved_item_ids), from_table_id, to_table_id, result.target_order.id,
    )
    return result


def _open_order_for_transfer(source: Order, table: DiningTable, business_date) -> Order:
    identifier = order_number_service.allocate(source.tenant_id, business_date=business_date)
    order = Order(
        id=identifier.id,
        tenant_id=source.tenant_id,
        order_number=identifier.order_number,
        business_date=identifier.business_date,
        channel="DINE_IN",
        status=ORDER_STATUS_OPEN,
        kitchen_status=ITEM_STATUS_PENDING,
        table_id=table.id,
        client_id=source.client_id,
        server_id=source.server_id,
        created_at=utcnow(),
    )
    db.session.add(order)
    db.session.flush()
    return order


def _validate_table_id(value, field: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer")


def _validate_item_ids(item_ids) -> list[int]:
    if not isinstance(item_ids, list) or not item_ids:
        raise ValidationError("item_ids must be a non-empty list")
    cleaned = []
    for value in item_ids:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError("item_ids must contain positive integers")
        if value not in cleaned:
            cleaned.append(value)
    return cleaned
