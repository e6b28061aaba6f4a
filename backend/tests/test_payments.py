# Overview: Pytest coverage for payment settlement; split tenders, overpayment guard and shift attribution.

"""
Payment Settlement Tests

Verifies:
- Status follows money: OPEN -> PARTIALLY_PAID -> PAID, CLOSED only on request
- Overpayment beyond the tolerance rejects the whole batch, no row written
- Preconditions fail in a fixed order with distinct errors
- CASH payments land on the cashier's open shift; other groups never do
- Voided payments stop counting towards the order and the drawer
"""

import pytest

from comanda.errors import ConflictError, ValidationError
from comanda.models import Payment
from comanda.services import order_service, payment_service, shift_service


@pytest.fixture
def order_25(db_session, tenant_a, cashier_a, pizza, soda):
    """$25 order: 2 x $10 pizza + 1 x $5 soda."""
    return order_service.create_order(
        tenant_a.id,
        cashier_a.id,
        [{"product_id": pizza.id, "quantity": 2}, {"product_id": soda.id, "quantity": 1}],
    )


def _pay(order, tenant, user, *tenders, close_order=False):
    payments = [{"method": method, "amount_cents": amount} for method, amount in tenders]
    return payment_service.add_payments(order.id, payments, tenant.id, user.id, close_order=close_order)


# =============================================================================
# SETTLEMENT
# =============================================================================


class TestSettlement:

    def test_cash_payment_with_close(self, db_session, tenant_a, cashier_a, cashier_shift, order_25):
        assert order_25.total_cents == 2500
        before = shift_service.calculate_expected_cash(cashier_shift)

        result = _pay(order_25, tenant_a, cashier_a, ("CASH", 2500), close_order=True)

        assert result.order.status == "CLOSED"
        assert result.order.paid_cents == 2500
        assert result.payments_added[0].shift_id == cashier_shift.id
        assert shift_service.calculate_expected_cash(cashier_shift) == before + 2500

    def test_partial_payments_do_not_auto_close(self, db_session, tenant_a, cashier_a, order_25):
        first = _pay(order_25, tenant_a, cashier_a, ("CARD", 1500))
        assert first.order.status == "PARTIALLY_PAID"
        assert first.order.balance_due_cents == 1000

        second = _pay(order_25, tenant_a, cashier_a, ("CARD", 1000))
        assert second.order.status == "PAID"
        assert second.order.closed_at is None

    def test_split_batch_posts_atomically(self, db_session, tenant_a, cashier_a, order_25):
        result = _pay(order_25, tenant_a, cashier_a, ("CASH", 1000), ("DEBITO", 1000), ("MERCADOPAGO", 500))

        assert [p.method_group for p in result.payments_added] == ["CASH", "CARD", "QR"]
        assert result.order.status == "PAID"

        summary = payment_service.get_payment_summary(order_25.id, tenant_a.id)
        assert summary["by_method_group"] == {"CASH": 1000, "CARD": 1000, "QR": 500}
        assert summary["balance_due_cents"] == 0

    def test_close_requested_on_partial_payment_keeps_order_open(self, db_session, tenant_a, cashier_a, order_25):
        result = _pay(order_25, tenant_a, cashier_a, ("CARD", 1000), close_order=True)
        assert result.order.status == "PARTIALLY_PAID"

    def test_inline_payment_on_creation(self, db_session, tenant_a, cashier_a, cashier_shift, soda):
        order = order_service.create_order(
            tenant_a.id,
            cashier_a.id,
            [{"product_id": soda.id, "quantity": 2}],
            payments=[{"method": "efectivo", "amount_cents": 1000}],
            close_order=True,
        )
        assert order.status == "CLOSED"
        assert order.payments[0].method == "EFECTIVO"
        assert order.payments[0].method_group == "CASH"
        assert order.payments[0].shift_id == cashier_shift.id


# =============================================================================
# OVERPAYMENT GUARD
# =============================================================================


class TestOverpayment:

    def test_tolerance_limit(self, app):
        with app.app_context():
            assert payment_service.overpayment_limit_cents(2500) == 2750
            assert payment_service.overpayment_limit_cents(999) == 1098

    def test_payment_at_limit_is_accepted(self, db_session, tenant_a, cashier_a, order_25):
        result = _pay(order_25, tenant_a, cashier_a, ("CARD", 2750))
        assert result.order.paid_cents == 2750
        assert payment_service.get_payment_summary(order_25.id, tenant_a.id)["change_due_cents"] == 250

    def test_payment_over_limit_is_rejected_and_not_written(self, db_session, tenant_a, cashier_a, order_25):
        with pytest.raises(ValidationError) as excinfo:
            _pay(order_25, tenant_a, cashier_a, ("CARD", 2751))

        assert excinfo.value.details["reason"] == "OVERPAYMENT"
        assert excinfo.value.details["max_accepted_cents"] == 2750
        assert db_session.query(Payment).count() == 0
        assert order_service.get_order(order_25.id, tenant_a.id).status == "OPEN"

    def test_batch_is_checked_as_a_whole(self, db_session, tenant_a, cashier_a, order_25):
        with pytest.raises(ValidationError):
            _pay(order_25, tenant_a, cashier_a, ("CARD", 2000), ("CASH", 1000))
        assert db_session.query(Payment).count() == 0

    def test_existing_payments_count_towards_the_limit(self, db_session, tenant_a, cashier_a, order_25):
        _pay(order_25, tenant_a, cashier_a, ("CARD", 2000))
        with pytest.raises(ValidationError):
            _pay(order_25, tenant_a, cashier_a, ("CARD", 751))
        assert db_session.query(Payment).count() == 1


# =============================================================================
# PRECONDITIONS AND INPUT
# =============================================================================


class TestPreconditions:

    def test_cancelled_order(self, db_session, tenant_a, cashier_a, order_25):
        order_service.update_status(order_25.id, "CANCELLED", tenant_a.id, user_id=cashier_a.id)
        with pytest.raises(ConflictError, match="cancelled"):
            _pay(order_25, tenant_a, cashier_a, ("CARD", 100))

    def test_closed_order(self, db_session, tenant_a, cashier_a, order_25):
        _pay(order_25, tenant_a, cashier_a, ("CARD", 2500), close_order=True)
        with pytest.raises(ConflictError, match="closed"):
            _pay(order_25, tenant_a, cashier_a, ("CARD", 100))

    def test_fully_paid_order(self, db_session, tenant_a, cashier_a, order_25):
        _pay(order_25, tenant_a, cashier_a, ("CARD", 2500))
        with pytest.raises(ConflictError, match="fully paid"):
            _pay(order_25, tenant_a, cashier_a, ("CARD", 100))

    @pytest.mark.parametrize("amount", [0, -100, 10.5, "100", None, True])
    def test_invalid_amounts(self, db_session, tenant_a, cashier_a, order_25, amount):
        with pytest.raises(ValidationError):
            payment_service.add_payments(
                order_25.id, [{"method": "CARD", "amount_cents": amount}], tenant_a.id, cashier_a.id
            )

    def test_empty_batch(self, db_session, tenant_a, cashier_a, order_25):
        with pytest.raises(ValidationError):
            payment_service.add_payments(order_25.id, [], tenant_a.id, cashier_a.id)

    def test_unknown_method_is_recorded_as_other(self, db_session, tenant_a, cashier_a, order_25):
        result = _pay(order_25, tenant_a, cashier_a, ("GIFTCARD", 500))
        assert result.payments_added[0].method == "GIFTCARD"
        assert result.payments_added[0].method_group == "OTHER"
        assert result.payments_added[0].shift_id is None


# =============================================================================
# SHIFT ATTRIBUTION
# =============================================================================


class TestShiftAttribution:

    def test_cash_without_open_shift_is_accepted_unattributed(self, db_session, tenant_a, cashier_a, order_25):
        result = _pay(order_25, tenant_a, cashier_a, ("CASH", 2500))
        assert result.payments_added[0].shift_id is None

    def test_cash_without_open_shift_can_be_required(self, app, monkeypatch, db_session, tenant_a, cashier_a, order_25):
        monkeypatch.setitem(app.config, "REQUIRE_OPEN_SHIFT_FOR_CASH", True)
        with pytest.raises(ConflictError):
            _pay(order_25, tenant_a, cashier_a, ("CASH", 2500))
        # Non-cash tenders are unaffected
        assert _pay(order_25, tenant_a, cashier_a, ("CARD", 2500)).order.status == "PAID"

    def test_card_payment_not_attributed_to_shift(self, db_session, tenant_a, cashier_a, cashier_shift, order_25):
        result = _pay(order_25, tenant_a, cashier_a, ("CARD", 2500))
        assert result.payments_added[0].shift_id is None
        assert shift_service.calculate_expected_cash(cashier_shift) == 10000


# =============================================================================
# VOIDS
# =============================================================================


class TestPaymentVoid:

    def test_void_reopens_balance_and_leaves_drawer(self, db_session, tenant_a, cashier_a, manager_a, cashier_shift, order_25):
        result = _pay(order_25, tenant_a, cashier_a, ("CASH", 2500))
        payment_id = result.payments_added[0].id

        voided = payment_service.void_payment(payment_id, tenant_a.id, manager_a.id, "Charged twice")

        assert voided.status == "VOIDED"
        assert voided.voided_by_user_id == manager_a.id
        order = order_service.get_order(order_25.id, tenant_a.id)
        assert order.paid_cents == 0
        assert order.status == "OPEN"
        assert shift_service.calculate_expected_cash(cashier_shift) == 10000

    def test_void_requires_reason(self, db_session, tenant_a, cashier_a, manager_a, order_25):
        payment_id = _pay(order_25, tenant_a, cashier_a, ("CARD", 500)).payments_added[0].id
        with pytest.raises(ValidationError):
            payment_service.void_payment(payment_id, tenant_a.id, manager_a.id, "  ")

    def test_void_twice_conflicts(self, db_session, tenant_a, cashier_a, manager_a, order_25):
        payment_id = _pay(order_25, tenant_a, cashier_a, ("CARD", 500)).payments_added[0].id
        payment_service.void_payment(payment_id, tenant_a.id, manager_a.id, "Mistake")
        with pytest.raises(ConflictError):
            payment_service.void_payment(payment_id, tenant_a.id, manager_a.id, "Mistake")

    def test_closed_order_payment_cannot_be_voided(self, db_session, tenant_a, cashier_a, manager_a, order_25):
        payment_id = _pay(order_25, tenant_a, cashier_a, ("CARD", 2500), close_order=True).payments_added[0].id
        with pytest.raises(ConflictError):
            payment_service.void_payment(payment_id, tenant_a.id, manager_a.id, "Too late")


# =============================================================================
# HTTP
# =============================================================================


class TestPaymentRoutes:

    def test_single_payment_shorthand(self, client, cashier_headers, order_25):
        resp = client.post(
            f"/api/orders/{order_25.id}/payments",
            json={"method": "CARD", "amount_cents": 2500, "close_order": True},
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["order"]["status"] == "CLOSED"
        assert len(body["payments_added"]) == 1

    def test_overpayment_returns_400(self, client, cashier_headers, order_25):
        resp = client.post(
            f"/api/orders/{order_25.id}/payments",
            json={"payments": [{"method": "CARD", "amount_cents": 5000}]},
            headers=cashier_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["details"]["reason"] == "OVERPAYMENT"

    def test_summary(self, client, cashier_headers, order_25):
        client.post(
            f"/api/orders/{order_25.id}/payments",
            json={"payments": [{"method": "CARD", "amount_cents": 1000}]},
            headers=cashier_headers,
        )
        resp = client.get(f"/api/orders/{order_25.id}/payments", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["balance_due_cents"] == 1500

    def test_cashier_cannot_void_payments(self, client, cashier_headers, tenant_a, cashier_a, order_25):
        payment_id = _pay(order_25, tenant_a, cashier_a, ("CARD", 500)).payments_added[0].id
        resp = client.post(f"/api/orders/payments/{payment_id}/void", json={"reason": "x"}, headers=cashier_headers)
        assert resp.status_code == 403
        assert resp.get_json()["error"]["details"]["required_permission"] == "payments:void"
