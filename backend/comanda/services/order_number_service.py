# Overview: Service-layer operations for order identifiers; business-day rule and per-day sequential numbers.

"""
Order Identifier Allocation

WHY: Every order needs two identities:
- id: opaque UUID, globally unique, safe to expose and to generate anywhere
- order_number: short counter the kitchen and the customer read out loud,
  unique within (tenant, business_date)

The two are independent, so a problem with one never blocks the other.

BUSINESS DAY: Restaurants trade past midnight. Anything before the
cutoff hour (06:00 by default) belongs to the previous business day.

CONCURRENCY:
- The counter is incremented by ONE atomic statement per allocation
  (INSERT ... ON CONFLICT DO UPDATE ... RETURNING). Never read-then-write.
- The counter row is scoped per tenant and per day to keep the hottest
  row in the system as narrow as possible.
- allocate() never commits. It runs inside the caller's transaction so a
  failed order creation gives its number back (gaps are allowed,
  duplicates never are).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderSequence
from comanda.time_utils import business_date_for, local_now, utcnow


@dataclass(frozen=True)
class OrderIdentifier:
    id: str
    order_number: int
    business_date: date

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "business_date": self.business_date.isoformat(),
        }


def current_business_date(now: datetime | None = None) -> date:
    """Business date for now (or the given moment) under the configured cutoff and zone."""
    config = current_app.config
    zone_name = config.get("BUSINESS_TIMEZONE")
    if now is None:
        now = local_now(zone_name)
    return business_date_for(now, config.get("BUSINESS_DAY_CUTOFF_HOUR", 6), zone_name)


def allocate(tenant_id: int, now: datetime | None = None, *, business_date: date | None = None) -> OrderIdentifier:
    """
    Allocate a new order identity inside the current transaction.

    Args:
        tenant_id: Tenant the order belongs to
        now: Moment of creation (defaults to the wall clock); drives the business date
        business_date: Explicit business date (already resolved by the caller)

    Returns:
        OrderIdentifier(id, order_number, business_date)
    """
    if business_date is None:
        business_date = current_business_date(now)

    order_number = _increment(tenant_id, business_date)

    identifier = OrderIdentifier(
        id=str(uuid.uuid4()),
        order_number=order_number,
        business_date=business_date,
    )

    logger = current_app.logger
    if order_number == 1:
        logger.info(
            "ORDER_SEQUENCE_CREATED tenant_id=%s business_date=%s", tenant_id, business_date.isoformat()
        )
    logger.info(
        "ORDER_ID_GENERATED tenant_id=%s order_id=%s order_number=%s business_date=%s",
        tenant_id, identifier.id, order_number, business_date.isoformat(),
    )
    threshold = current_app.config.get("ORDER_NUMBER_WARN_THRESHOLD", 9999)
    if order_number > threshold:
        logger.warning(
            "Unusually high order number tenant_id=%s business_date=%s order_number=%s",
            tenant_id, business_date.isoformat(), order_number,
        )

    return identifier


def peek_current(tenant_id: int, business_date: date) -> int:
    """Last number handed out for (tenant, business_date); 0 when none yet."""
    value = db.session.execute(
        select(OrderSequence.current_value).where(
            OrderSequence.tenant_id == tenant_id,
            OrderSequence.business_date == business_date,
        )
    ).scalar_one_or_none()
    return value or 0


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _increment(tenant_id: int, business_date: date) -> int:
    dialect = db.session.get_bind().dialect.name
    if dialect in ("sqlite", "postgresql"):
        return _upsert_increment(tenant_id, business_date, dialect)
    return _update_then_insert(tenant_id, business_date)


def _upsert_increment(tenant_id: int, business_date: date, dialect: str) -> int:
    insert = sqlite_insert if dialect == "sqlite" else pg_insert
    stmt = insert(OrderSequence).values(
        tenant_id=tenant_id,
        business_date=business_date,
        current_value=1,
        updated_at=utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[OrderSequence.tenant_id, OrderSequence.business_date],
        set_={
            "current_value": OrderSequence.current_value + 1,
            "updated_at": utcnow(),
        },
    ).returning(OrderSequence.current_value)
    return db.session.execute(stmt).scalar_one()


def _update_then_insert(tenant_id: int, business_date: date) -> int:
    """
    Engines without INSERT ... ON CONFLICT: the UPDATE takes the row lock;
    a missing row is inserted under a savepoint so a racing insert only
    loses the savepoint, then the UPDATE is repeated against the winner's row.
    """
    def _bump() -> int | None:
        result = db.session.execute(
            update(OrderSequence)
            .where(
                OrderSequence.tenant_id == tenant_id,
                OrderSequence.business_date == business_date,
            )
            .values(current_value=OrderSequence.current_value + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return None
        return db.session.execute(
            select(OrderSequence.current_value).where(
                OrderSequence.tenant_id == tenant_id,
                OrderSequence.business_date == business_date,
            )
        ).scalar_one()

    value = _bump()
    if value is not None:
        return value

    try:
        with db.session.begin_nested():
            db.session.add(OrderSequence(
                tenant_id=tenant_id,
                business_date=business_date,
                current_value=1,
                updated_at=utcnow(),
            ))
        return 1
    except IntegrityError:
        value = _bump()
        if value is None:
            raise
        return value
