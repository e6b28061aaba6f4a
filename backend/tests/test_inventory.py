# Overview: Pytest coverage for purchases, manual stock movements, low-stock reporting and health.

"""
Inventory Tests

Verifies:
- Receiving a purchase order adds stock once and refreshes ingredient cost
- ADJUSTMENT moves stock either way, WASTE always reduces it
- Every stock change leaves a movement row
- Low stock report ranks critical ingredients first
"""

from decimal import Decimal

import pytest

from comanda.errors import ConflictError, NotFoundError, ValidationError
from comanda.models import AuditEvent, Ingredient, StockMovement
from comanda.services import order_service, purchase_service, stock_service


@pytest.fixture
def cheese_purchase(db_session, tenant_a, manager_a, supplier_a, cheese):
    return purchase_service.create_purchase_order(
        tenant_a.id,
        supplier_a.id,
        [{"ingredient_id": cheese.id, "quantity": "5.000", "unit_cost_cents": 950}],
        user_id=manager_a.id,
    )


class TestPurchaseOrders:

    def test_create_purchase_order(self, db_session, cheese_purchase):
        assert cheese_purchase.status == "PENDING"
        assert cheese_purchase.purchase_number == 1
        assert cheese_purchase.total_cents == 4750
        assert len(cheese_purchase.lines) == 1

    def test_numbers_increase_per_tenant(self, db_session, tenant_a, supplier_a, cheese, cheese_purchase):
        second = purchase_service.create_purchase_order(
            tenant_a.id, supplier_a.id, [{"ingredient_id": cheese.id, "quantity": 1}]
        )
        assert second.purchase_number == 2

    def test_receive_adds_stock_and_updates_cost(self, db_session, tenant_a, manager_a, cheese, cheese_purchase):
        received = purchase_service.receive_purchase_order(cheese_purchase.id, tenant_a.id, user_id=manager_a.id)

        assert received.status == "RECEIVED"
        assert received.received_at is not None
        assert stock_service.get_stock(tenant_a.id, cheese.id) == Decimal("15.000")
        assert db_session.get(Ingredient, cheese.id).cost_cents == 950

        movement = db_session.query(StockMovement).filter_by(purchase_order_id=cheese_purchase.id).one()
        assert movement.type == "PURCHASE"
        assert Decimal(movement.quantity) == Decimal("5.000")
        assert db_session.query(AuditEvent).filter_by(action="PURCHASE_ORDER_RECEIVED").count() == 1

    def test_receive_twice_conflicts(self, db_session, tenant_a, cheese, cheese_purchase):
        purchase_service.receive_purchase_order(cheese_purchase.id, tenant_a.id)
        with pytest.raises(ConflictError):
            purchase_service.receive_purchase_order(cheese_purchase.id, tenant_a.id)
        assert stock_service.get_stock(tenant_a.id, cheese.id) == Decimal("15.000")

    def test_cancelled_order_cannot_be_received(self, db_session, tenant_a, cheese_purchase):
        purchase_service.mark_ordered(cheese_purchase.id, tenant_a.id)
        purchase_service.cancel_purchase_order(cheese_purchase.id, tenant_a.id)
        with pytest.raises(ConflictError):
            purchase_service.receive_purchase_order(cheese_purchase.id, tenant_a.id)

    @pytest.mark.parametrize("lines", [
        [],
        None,
        [{"ingredient_id": 0, "quantity": 1}],
        [{"ingredient_id": 1, "quantity": "0"}],
        [{"ingredient_id": 1, "quantity": "abc"}],
        [{"ingredient_id": 1, "quantity": 1, "unit_cost_cents": -5}],
    ])
    def test_invalid_lines(self, db_session, tenant_a, supplier_a, lines):
        with pytest.raises(ValidationError):
            purchase_service.create_purchase_order(tenant_a.id, supplier_a.id, lines)

    def test_unknown_ingredient(self, db_session, tenant_a, supplier_a):
        with pytest.raises(NotFoundError):
            purchase_service.create_purchase_order(tenant_a.id, supplier_a.id, [{"ingredient_id": 99999, "quantity": 1}])


class TestManualMovements:

    def test_adjustment_either_direction(self, db_session, tenant_a, manager_a, onion):
        stock_service.adjust_stock(tenant_a.id, onion.id, "1.500", reason="Recount", user_id=manager_a.id)
        stock_service.adjust_stock(tenant_a.id, onion.id, "-0.250", reason="Recount", user_id=manager_a.id)

        assert stock_service.get_stock(tenant_a.id, onion.id) == Decimal("6.250")
        assert len(stock_service.get_movements(tenant_a.id, ingredient_id=onion.id)) == 2

    def test_waste_always_reduces(self, db_session, tenant_a, onion):
        movement = stock_service.adjust_stock(tenant_a.id, onion.id, "0.500", movement_type="WASTE")
        assert Decimal(movement.quantity) == Decimal("-0.500")
        assert stock_service.get_stock(tenant_a.id, onion.id) == Decimal("4.500")

    @pytest.mark.parametrize("delta,movement_type", [("0", "ADJUSTMENT"), ("nan", "ADJUSTMENT"), ("1", "SALE"), (None, "WASTE")])
    def test_invalid_manual_movement(self, db_session, tenant_a, onion, delta, movement_type):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(tenant_a.id, onion.id, delta, movement_type=movement_type)

    def test_movements_newest_first(self, db_session, tenant_a, cashier_a, pizza, cheese):
        order_service.create_order(tenant_a.id, cashier_a.id, [{"product_id": pizza.id, "quantity": 1}])
        stock_service.adjust_stock(tenant_a.id, cheese.id, "2")

        movements = stock_service.get_movements(tenant_a.id, ingredient_id=cheese.id)
        assert [m.type for m in movements] == ["ADJUSTMENT", "SALE"]


class TestLowStock:

    def test_critical_before_low(self, db_session, tenant_a, cheese, onion):
        stock_service.adjust_stock(tenant_a.id, cheese.id, "-10.500")
        stock_service.adjust_stock(tenant_a.id, onion.id, "-4.600")

        report = stock_service.low_stock_report(tenant_a.id)

        assert [row["name"] for row in report] == ["Cheese", "Onion"]
        assert report[0]["severity"] == "critical"
        assert report[1]["severity"] == "low"
        assert Decimal(report[1]["shortfall"]) == Decimal("0.100")

    def test_healthy_stock_not_reported(self, db_session, tenant_a, cheese, onion):
        assert stock_service.low_stock_report(tenant_a.id) == []


class TestInventoryRoutes:

    def test_purchase_flow(self, client, manager_headers, supplier_a, cheese):
        resp = client.post("/api/inventory/purchase-orders", json={
            "supplier_id": supplier_a.id,
            "lines": [{"ingredient_id": cheese.id, "quantity": "2.000", "unit_cost_cents": 1000}],
        }, headers=manager_headers)
        assert resp.status_code == 201
        purchase_id = resp.get_json()["purchase_order"]["id"]

        resp = client.post(f"/api/inventory/purchase-orders/{purchase_id}/receive", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.get_json()["purchase_order"]["status"] == "RECEIVED"

        resp = client.post(f"/api/inventory/purchase-orders/{purchase_id}/receive", headers=manager_headers)
        assert resp.status_code == 409

    def test_waste_route(self, client, manager_headers, tenant_a, onion):
        resp = client.post("/api/inventory/adjustments", json={
            "ingredient_id": onion.id, "delta": "1", "type": "waste", "reason": "Spoiled",
        }, headers=manager_headers)
        assert resp.status_code == 201
        assert resp.get_json()["movement"]["quantity"] == "-1.000"

    def test_movements_and_low_stock_routes(self, client, cashier_headers, tenant_a, cheese):
        stock_service.adjust_stock(tenant_a.id, cheese.id, "-9.500")

        resp = client.get(f"/api/inventory/movements?ingredient_id={cheese.id}", headers=cashier_headers)
        assert resp.status_code == 200
        assert len(resp.get_json()["movements"]) == 1

        resp = client.get("/api/inventory/low-stock", headers=cashier_headers)
        assert resp.get_json()["count"] == 1
        assert resp.get_json()["ingredients"][0]["severity"] == "low"

    def test_get_purchase_order(self, client, cashier_headers, manager_b_headers, cheese_purchase):
        resp = client.get(f"/api/inventory/purchase-orders/{cheese_purchase.id}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["purchase_order"]["lines"][0]["quantity"] == "5.000"

        resp = client.get(f"/api/inventory/purchase-orders/{cheese_purchase.id}", headers=manager_b_headers)
        assert resp.status_code == 404


class TestSystem:

    def test_health_reports_dependencies(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["idempotency"]["backend"] == "MemoryIdempotencyCache"

    def test_unknown_route_returns_json_error(self, client, db_session):
        resp = client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "NOT_FOUND"

    def test_cors_only_for_configured_origins(self, client, db_session):
        assert "Access-Control-Allow-Origin" not in client.get("/health", headers={"Origin": "http://evil.test"}).headers
