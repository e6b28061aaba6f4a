# Overview: Pytest coverage for cash shift open/close, drawer reconciliation and shift reports.

"""
Cash Shift Tests

Verifies:
- One open shift per user
- expected = start amount + completed CASH payments of the shift
- difference = counted - expected, stored as is (never blocks closing)
- Only the owner closes a shift unless a manager overrides
- Closed shifts are immutable
"""

import pytest

from comanda.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from comanda.models import AuditEvent
from comanda.services import order_service, payment_service, shift_service


def _cash_sale(tenant, cashier, product, amount_cents, quantity=1):
    return order_service.create_order(
        tenant.id,
        cashier.id,
        [{"product_id": product.id, "quantity": quantity}],
        payments=[{"method": "CASH", "amount_cents": amount_cents}],
        close_order=True,
    )


class TestOpenShift:

    def test_open_shift(self, db_session, tenant_a, cashier_a):
        shift = shift_service.open_shift(tenant_a.id, cashier_a.id, 5000)

        assert shift.status == "OPEN"
        assert shift.start_amount_cents == 5000
        assert shift.business_date is not None
        assert shift_service.get_open_shift(tenant_a.id, cashier_a.id).id == shift.id
        assert db_session.query(AuditEvent).filter_by(action="SHIFT_OPENED").count() == 1

    def test_second_open_shift_conflicts(self, db_session, tenant_a, cashier_a, cashier_shift):
        with pytest.raises(ConflictError):
            shift_service.open_shift(tenant_a.id, cashier_a.id, 0)

    @pytest.mark.parametrize("amount", [-1, 10.5, "100", None])
    def test_invalid_start_amount(self, db_session, tenant_a, cashier_a, amount):
        with pytest.raises(ValidationError):
            shift_service.open_shift(tenant_a.id, cashier_a.id, amount)

    def test_user_of_other_tenant_not_found(self, db_session, tenant_a, manager_b):
        with pytest.raises(NotFoundError):
            shift_service.open_shift(tenant_a.id, manager_b.id, 0)


class TestCloseShift:

    def test_balanced_close(self, db_session, tenant_a, cashier_a, cashier_shift, soda):
        _cash_sale(tenant_a, cashier_a, soda, 500)
        _cash_sale(tenant_a, cashier_a, soda, 1000, quantity=2)

        result = shift_service.close_shift(cashier_shift.id, 11500, tenant_a.id, cashier_a.id)

        assert result.expected_cash_cents == 11500
        assert result.difference_cents == 0
        assert result.has_discrepancy is False
        assert result.shift.status == "CLOSED"
        assert result.shift.end_time is not None

    def test_short_drawer_is_recorded_not_blocked(self, db_session, tenant_a, cashier_a, cashier_shift, soda):
        _cash_sale(tenant_a, cashier_a, soda, 500)

        result = shift_service.close_shift(cashier_shift.id, 10300, tenant_a.id, cashier_a.id, notes="Missing coins")

        assert result.difference_cents == -200
        assert result.has_discrepancy is True
        assert result.shift.notes == "Missing coins"
        assert result.to_dict()["difference_cents"] == -200

    def test_non_cash_and_voided_payments_are_excluded(self, db_session, tenant_a, cashier_a, manager_a, cashier_shift, soda):
        order = order_service.create_order(
            tenant_a.id, cashier_a.id, [{"product_id": soda.id, "quantity": 2}],
            payments=[{"method": "CARD", "amount_cents": 500}, {"method": "CASH", "amount_cents": 500}],
        )
        cash_payment = next(p for p in order.payments if p.method_group == "CASH")
        payment_service.void_payment(cash_payment.id, tenant_a.id, manager_a.id, "Wrong tender")

        assert shift_service.calculate_expected_cash(cashier_shift) == 10000

    def test_open_orders_are_reported(self, db_session, tenant_a, cashier_a, cashier_shift, soda):
        order_service.create_order(tenant_a.id, cashier_a.id, [{"product_id": soda.id, "quantity": 1}])

        result = shift_service.close_shift(cashier_shift.id, 10000, tenant_a.id, cashier_a.id)

        assert result.open_orders == 1
        assert result.shift.status == "CLOSED"

    def test_only_owner_closes_without_override(self, db_session, tenant_a, manager_a, cashier_shift):
        with pytest.raises(ForbiddenError):
            shift_service.close_shift(cashier_shift.id, 10000, tenant_a.id, manager_a.id)

        result = shift_service.close_shift(cashier_shift.id, 10000, tenant_a.id, manager_a.id, manager_override=True)
        assert result.shift.closed_by_user_id == manager_a.id

    def test_closed_shift_is_immutable(self, db_session, tenant_a, cashier_a, cashier_shift):
        shift_service.close_shift(cashier_shift.id, 10000, tenant_a.id, cashier_a.id)
        with pytest.raises(ConflictError):
            shift_service.close_shift(cashier_shift.id, 12000, tenant_a.id, cashier_a.id)

    def test_cash_after_close_is_not_attributed(self, db_session, tenant_a, cashier_a, cashier_shift, soda):
        shift_service.close_shift(cashier_shift.id, 10000, tenant_a.id, cashier_a.id)
        order = _cash_sale(tenant_a, cashier_a, soda, 500)
        assert order.payments[0].shift_id is None

    def test_invalid_counted_amount(self, db_session, tenant_a, cashier_a, cashier_shift):
        with pytest.raises(ValidationError):
            shift_service.close_shift(cashier_shift.id, -5, tenant_a.id, cashier_a.id)


class TestShiftReport:

    def test_report_groups_payments(self, db_session, tenant_a, cashier_a, cashier_shift, soda, pizza, table_1):
        _cash_sale(tenant_a, cashier_a, soda, 500)
        order_service.create_order(
            tenant_a.id, cashier_a.id, [{"product_id": pizza.id, "quantity": 1}],
            table_id=table_1.id,
            payments=[{"method": "TARJETA", "amount_cents": 600}],
        )

        report = shift_service.get_shift_report(cashier_shift.id, tenant_a.id)

        assert report["total_orders"] == 2
        assert report["total_sales_cents"] == 1100
        assert report["by_method_group"] == {"CASH": 500, "CARD": 600}
        assert report["by_method"] == {"CASH": 500, "TARJETA": 600}
        assert report["expected_cash_cents"] == 10500
        assert report["occupied_tables"] == 1
        assert report["open_orders"] == 1
        assert report["counted_cash_cents"] is None

    def test_other_tenant_report_not_found(self, db_session, tenant_b, cashier_shift):
        with pytest.raises(NotFoundError):
            shift_service.get_shift_report(cashier_shift.id, tenant_b.id)


class TestShiftRoutes:

    def test_open_current_close(self, client, cashier_headers):
        resp = client.post("/api/shifts/open", json={"start_amount_cents": 2000}, headers=cashier_headers)
        assert resp.status_code == 201
        shift_id = resp.get_json()["shift"]["id"]

        resp = client.get("/api/shifts/current", headers=cashier_headers)
        assert resp.get_json()["expected_cash_cents"] == 2000

        resp = client.post(f"/api/shifts/{shift_id}/close", json={"counted_cash_cents": 2100}, headers=cashier_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["difference_cents"] == 100
        assert body["has_discrepancy"] is True

        resp = client.get("/api/shifts/current", headers=cashier_headers)
        assert resp.get_json()["shift"] is None

    def test_manager_closes_cashier_shift(self, client, manager_headers, cashier_shift):
        resp = client.post(
            f"/api/shifts/{cashier_shift.id}/close", json={"counted_cash_cents": 10000}, headers=manager_headers
        )
        assert resp.status_code == 200

    def test_cashier_cannot_read_reports(self, client, cashier_headers, cashier_shift):
        resp = client.get(f"/api/shifts/{cashier_shift.id}/report", headers=cashier_headers)
        assert resp.status_code == 403

    def test_waiter_cannot_open_shift(self, client, waiter_headers):
        resp = client.post("/api/shifts/open", json={"start_amount_cents": 0}, headers=waiter_headers)
        assert resp.status_code == 403

    def test_history_is_limited_to_own_shifts_for_cashiers(self, client, tenant_a, manager_a, cashier_headers, manager_headers, cashier_shift):
        shift_service.open_shift(tenant_a.id, manager_a.id, 0)

        own = client.get(f"/api/shifts?user_id={manager_a.id}", headers=cashier_headers).get_json()["shifts"]
        assert [shift["id"] for shift in own] == [cashier_shift.id]

        everyone = client.get("/api/shifts", headers=manager_headers).get_json()["shifts"]
        assert len(everyone) == 2
