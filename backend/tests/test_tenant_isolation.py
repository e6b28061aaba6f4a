# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for core resources.

Two restaurants share one database. These tests verify that:
1. A manager of tenant B cannot read or change tenant A's orders, items,
   shifts or inventory
2. A foreign id gets exactly the same response as an id that does not exist
3. Listings only ever contain the caller's own rows
4. Order numbers are counted per tenant
"""

import uuid

import pytest

from comanda.errors import NotFoundError, ValidationError
from comanda.models import Order
from comanda.services import order_service, payment_service, stock_service
from comanda.services.tenant_service import find_scoped, get_scoped


@pytest.fixture
def order_a(db_session, tenant_a, cashier_a, soda):
    return order_service.create_order(tenant_a.id, cashier_a.id, [{"product_id": soda.id, "quantity": 2}])


class TestTenantServiceHelpers:

    def test_get_scoped_own_tenant(self, db_session, tenant_a, order_a):
        assert get_scoped(Order, order_a.id, tenant_a.id).id == order_a.id

    def test_get_scoped_other_tenant(self, db_session, tenant_b, order_a):
        with pytest.raises(NotFoundError):
            get_scoped(Order, order_a.id, tenant_b.id)

    def test_get_scoped_missing_id(self, db_session, tenant_a):
        with pytest.raises(NotFoundError):
            get_scoped(Order, None, tenant_a.id)

    def test_find_scoped_returns_none(self, db_session, tenant_b, order_a):
        assert find_scoped(Order, order_a.id, tenant_b.id) is None


class TestServiceIsolation:

    def test_foreign_product_cannot_be_ordered(self, db_session, tenant_b, manager_b, soda):
        with pytest.raises(ValidationError):
            order_service.create_order(tenant_b.id, manager_b.id, [{"product_id": soda.id, "quantity": 1}])

    def test_payment_on_foreign_order(self, db_session, tenant_b, manager_b, order_a):
        with pytest.raises(NotFoundError):
            payment_service.add_payments(order_a.id, [{"method": "CASH", "amount_cents": 100}], tenant_b.id, manager_b.id)

    def test_foreign_ingredient_stock(self, db_session, tenant_b, cheese):
        with pytest.raises(NotFoundError):
            stock_service.get_stock(tenant_b.id, cheese.id)
        with pytest.raises(NotFoundError):
            stock_service.adjust_stock(tenant_b.id, cheese.id, "-1.000")

    def test_order_numbers_are_per_tenant(self, db_session, tenant_a, tenant_b, cashier_a, manager_b, soda, product_b):
        order_service.create_order(tenant_a.id, cashier_a.id, [{"product_id": soda.id, "quantity": 1}])
        order_service.create_order(tenant_a.id, cashier_a.id, [{"product_id": soda.id, "quantity": 1}])
        order_b = order_service.create_order(tenant_b.id, manager_b.id, [{"product_id": product_b.id, "quantity": 1}])

        assert order_b.order_number == 1


class TestHttpIsolation:

    def test_foreign_order_looks_missing(self, client, manager_b_headers, order_a):
        foreign = client.get(f"/api/orders/{order_a.id}", headers=manager_b_headers)
        missing = client.get(f"/api/orders/{uuid.uuid4()}", headers=manager_b_headers)

        assert foreign.status_code == missing.status_code == 404
        assert foreign.get_json() == missing.get_json()

    def test_foreign_orders_not_listed(self, client, manager_b_headers, order_a):
        resp = client.get("/api/orders", headers=manager_b_headers)
        assert resp.status_code == 200
        assert resp.get_json()["orders"] == []

    def test_foreign_payment_rejected(self, client, manager_b_headers, order_a):
        resp = client.post(
            f"/api/orders/{order_a.id}/payments",
            json={"method": "CASH", "amount_cents": 100},
            headers=manager_b_headers,
        )
        assert resp.status_code == 404
        assert order_a.paid_cents == 0

    def test_foreign_item_void_rejected(self, client, manager_b_headers, order_a):
        resp = client.post(
            f"/api/orders/items/{order_a.items[0].id}/void",
            json={"reason": "MISTAKE"},
            headers=manager_b_headers,
        )
        assert resp.status_code == 404

    def test_foreign_shift_report(self, client, manager_b_headers, cashier_shift):
        resp = client.get(f"/api/shifts/{cashier_shift.id}/report", headers=manager_b_headers)
        assert resp.status_code == 404

    def test_foreign_shift_close(self, client, manager_b_headers, cashier_shift):
        resp = client.post(
            f"/api/shifts/{cashier_shift.id}/close",
            json={"counted_cash_cents": 0},
            headers=manager_b_headers,
        )
        assert resp.status_code == 404

    def test_foreign_supplier_purchase(self, client, manager_b_headers, supplier_a):
        resp = client.post("/api/inventory/purchase-orders", json={
            "supplier_id": supplier_a.id,
            "lines": [{"ingredient_id": 1, "quantity": "1.000"}],
        }, headers=manager_b_headers)
        assert resp.status_code == 404

    def test_foreign_tables_transfer(self, client, manager_b_headers, table_1, table_2):
        resp = client.post("/api/orders/transfer", json={
            "item_ids": [1],
            "from_table_id": table_1.id,
            "to_table_id": table_2.id,
        }, headers=manager_b_headers)
        assert resp.status_code == 404

    def test_low_stock_only_lists_own_ingredients(self, client, db_session, manager_b_headers, tenant_a, cheese):
        stock_service.adjust_stock(tenant_a.id, cheese.id, "-10.000")
        resp = client.get("/api/inventory/low-stock", headers=manager_b_headers)
        assert resp.get_json()["count"] == 0
