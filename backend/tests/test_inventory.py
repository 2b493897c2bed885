"""
Tests for the stock ledger, stock status view, low-stock alerts and admin catalog routes.
"""

import pytest

from nursery.extensions import db
from nursery.models import Product, InventoryMovement, NotificationOutbox, ActivityLog
from nursery.services import inventory_service
from nursery.services.inventory_service import InsufficientStockError
from nursery.validation import ValidationError
from conftest import auth_headers, get_auth_token


class TestStockLedger:
    def test_initial_stock_is_recorded_as_movement(self, product):
        movements = db.session.query(InventoryMovement).filter_by(product_id=product.id).all()

        assert len(movements) == 1
        assert movements[0].movement_type == 'increase'
        assert movements[0].reason == 'initial_stock'
        assert movements[0].stock_after == 10

    def test_decrease_beyond_stock_raises_and_records_nothing(self, product):
        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.update_stock(product.id, 11, 'decrease')

        assert exc.value.available == 10
        db.session.expire_all()
        assert db.session.get(Product, product.id).stock_quantity == 10
        assert db.session.query(InventoryMovement).filter_by(product_id=product.id).count() == 1

    def test_decrease_to_zero_is_allowed(self, product):
        movement = inventory_service.update_stock(product.id, 10, 'decrease', reason='damaged')

        assert movement.stock_after == 0
        db.session.expire_all()
        assert db.session.get(Product, product.id).stock_status == 'OUT_OF_STOCK'

    @pytest.mark.parametrize("quantity", [0, -3, 2.5, "4", True])
    def test_quantity_must_be_positive_integer(self, product, quantity):
        with pytest.raises(ValidationError):
            inventory_service.update_stock(product.id, quantity, 'increase')

    def test_unknown_operation_is_rejected(self, product):
        with pytest.raises(ValidationError):
            inventory_service.update_stock(product.id, 1, 'set')

    def test_check_stock_reports_shortfall(self, product):
        assert inventory_service.check_stock(product.id, 10).available is True
        result = inventory_service.check_stock(product.id, 11)
        assert result.available is False
        assert result.current_stock == 10
        assert result.reason == inventory_service.STOCK_INSUFFICIENT

    def test_check_stock_reasons_for_missing_and_inactive(self, make_product):
        hidden = make_product(is_active=False)

        assert inventory_service.check_stock(999, 1).reason == inventory_service.STOCK_PRODUCT_MISSING
        assert inventory_service.check_stock(hidden.id, 1).reason == inventory_service.STOCK_PRODUCT_INACTIVE
        assert inventory_service.check_stock(hidden.id, 1).available is False


class TestStockStatus:
    @pytest.mark.parametrize("stock, expected", [(0, 'OUT_OF_STOCK'), (2, 'LOW'), (3, 'IN_STOCK')])
    def test_classification(self, make_product, stock, expected):
        product = make_product(stock=stock, min_threshold=2)
        assert product.stock_status == expected

    def test_low_stock_alerts_every_active_inventory_admin(self, inventory_admin, product):
        inventory_service.update_stock(product.id, 8, 'decrease')

        alerts = db.session.query(NotificationOutbox).filter_by(kind='stock_alert').all()
        assert [a.recipient for a in alerts] == [inventory_admin.email]

    def test_low_stock_listing(self, make_product):
        low = make_product(stock=1, min_threshold=5)
        make_product(stock=50, min_threshold=5)

        assert [p.id for p in inventory_service.get_low_stock_items()] == [low.id]


class TestInventoryRoutes:
    def test_restock_via_api_logs_activity(self, client, inventory_admin, inventory_headers, product):
        response = client.put(
            f'/api/admin/inventory/products/{product.id}/stock',
            json={'quantity': 5, 'operation': 'increase', 'notes': 'Weekly delivery'},
            headers=inventory_headers,
        )

        assert response.status_code == 200
        assert response.get_json()['data']['stock_after'] == 15
        log = db.session.query(ActivityLog).filter_by(action_type='STOCK_UPDATED').one()
        assert log.user_id == inventory_admin.id

    def test_oversized_decrease_is_400(self, client, inventory_headers, product):
        response = client.put(
            f'/api/admin/inventory/products/{product.id}/stock',
            json={'quantity': 50, 'operation': 'decrease'},
            headers=inventory_headers,
        )

        assert response.status_code == 400
        assert 'quantity' in response.get_json()['errors']

    def test_status_filter(self, client, inventory_headers, make_product):
        make_product(stock=0)
        make_product(stock=40)

        response = client.get('/api/admin/inventory/status?status=OUT_OF_STOCK', headers=inventory_headers)

        assert response.status_code == 200
        products = response.get_json()['data']['products']
        assert len(products) == 1
        assert products[0]['stock_status'] == 'OUT_OF_STOCK'

    def test_movements_listing(self, client, inventory_headers, product):
        inventory_service.update_stock(product.id, 3, 'decrease')

        response = client.get(f'/api/admin/inventory/movements?productId={product.id}', headers=inventory_headers)

        movements = response.get_json()['data']['movements']
        assert len(movements) == 2

    def test_thresholds_update(self, client, inventory_headers, product):
        response = client.put(
            f'/api/admin/inventory/products/{product.id}/thresholds',
            json={'minThreshold': 12, 'maxThreshold': 200, 'reorderQuantity': 30},
            headers=inventory_headers,
        )

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['min_stock_threshold'] == 12
        assert data['stock_status'] == 'LOW'

    def test_order_admin_cannot_change_stock(self, client, order_admin_headers, product):
        response = client.put(
            f'/api/admin/inventory/products/{product.id}/stock',
            json={'quantity': 5, 'operation': 'increase'},
            headers=order_admin_headers,
        )
        assert response.status_code == 403


class TestCatalogAdmin:
    def test_add_product(self, client, inventory_headers, category):
        response = client.post('/api/admin/inventory/addproduct', json={
            'sku': 'FERN-001',
            'name': 'Boston Fern',
            'price_cents': 29900,
            'category_id': category.id,
            'stock_quantity': 25,
            'care_level': 'easy',
        }, headers=inventory_headers)

        assert response.status_code == 201
        data = response.get_json()['data']
        assert data['slug'] == 'boston-fern'
        assert data['stock_quantity'] == 25

    def test_duplicate_sku_is_409(self, client, inventory_headers, product, category):
        response = client.post('/api/admin/inventory/products', json={
            'sku': product.sku, 'name': 'Another', 'price_cents': 100, 'category_id': category.id,
        }, headers=inventory_headers)
        assert response.status_code == 409

    def test_missing_fields_are_reported(self, client, inventory_headers):
        response = client.post('/api/admin/inventory/products', json={'name': 'Nameless'},
                               headers=inventory_headers)

        assert response.status_code == 400
        errors = response.get_json()['errors']
        assert {'sku', 'price_cents', 'category_id'} <= set(errors)

    def test_non_positive_price_is_rejected(self, client, inventory_headers, category):
        response = client.post('/api/admin/inventory/products', json={
            'sku': 'X-1', 'name': 'Free plant', 'price_cents': 0, 'category_id': category.id,
        }, headers=inventory_headers)
        assert response.status_code == 400

    def test_update_ignores_stock_quantity(self, client, inventory_headers, product):
        response = client.patch(f'/api/admin/inventory/products/{product.id}', json={
            'name': 'Monstera Thai Constellation', 'stock_quantity': 999,
        }, headers=inventory_headers)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['stock_quantity'] == 10
        assert data['slug'] == 'monstera-thai-constellation'

    def test_category_with_products_cannot_be_deleted(self, client, inventory_headers, product):
        response = client.delete(f'/api/admin/inventory/categories/{product.category_id}',
                                 headers=inventory_headers)
        assert response.status_code == 409

    def test_category_cycle_is_rejected(self, client, inventory_headers):
        parent = client.post('/api/admin/inventory/categories', json={'name': 'Outdoor'},
                             headers=inventory_headers).get_json()['data']
        child = client.post('/api/admin/inventory/categories', json={'name': 'Shrubs', 'parent_id': parent['id']},
                            headers=inventory_headers).get_json()['data']

        response = client.put(f"/api/admin/inventory/categories/{parent['id']}",
                              json={'parent_id': child['id']}, headers=inventory_headers)
        assert response.status_code == 400
