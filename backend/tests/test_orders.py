"""
Tests for order placement, the status transition table and cancellation.
"""

import pytest

from nursery.extensions import db
from nursery.models import Order, OrderStatusHistory, Product, InventoryMovement, CartItem, ActivityLog
from nursery.services import order_service
from nursery.services.order_service import OrderTransitionError, can_transition, compute_totals


def _stock(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id).stock_quantity


def _place(client, headers, product_id, quantity=1):
    return client.post('/api/orders', json={'productId': product_id, 'quantity': quantity}, headers=headers)


class TestTransitionTable:
    @pytest.mark.parametrize("from_status, to_status", [
        ("pending", "confirmed"),
        ("pending", "payment_failed"),
        ("payment_failed", "confirmed"),
        ("confirmed", "processing"),
        ("processing", "packed"),
        ("packed", "shipped"),
        ("shipped", "out_for_delivery"),
        ("out_for_delivery", "delivered"),
        ("cancelled", "refunded"),
    ])
    def test_allowed(self, from_status, to_status):
        assert can_transition(from_status, to_status)

    @pytest.mark.parametrize("from_status, to_status", [
        ("pending", "shipped"),
        ("confirmed", "delivered"),
        ("packed", "cancelled"),
        ("delivered", "cancelled"),
        ("refunded", "pending"),
        ("shipped", "shipped"),
    ])
    def test_rejected(self, from_status, to_status):
        assert not can_transition(from_status, to_status)


class TestTotals:
    def test_free_shipping_threshold(self, app):
        app.config.update(SHIPPING_FEE_CENTS=5000, FREE_SHIPPING_THRESHOLD_CENTS=100000, TAX_RATE_BPS=0)

        assert compute_totals(40000).total_cents == 45000
        assert compute_totals(100000).shipping_cents == 0

    def test_discount_never_makes_total_negative(self, app):
        app.config.update(SHIPPING_FEE_CENTS=0, TAX_RATE_BPS=0)
        assert compute_totals(1000, discount_cents=5000).total_cents == 0


class TestPlaceOrder:
    def test_buy_now_decrements_stock_and_records_history(self, client, customer_headers, product):
        response = _place(client, customer_headers, product.id, 3)

        assert response.status_code == 201
        order = response.get_json()['data']
        assert order['status'] == 'pending'
        assert order['payment_status'] == 'pending'
        assert order['order_number'].startswith('ORD')
        assert order['items'][0]['price_cents'] == product.price_cents
        assert _stock(product.id) == 7

        history = db.session.query(OrderStatusHistory).filter_by(order_id=order['id']).all()
        assert [(h.from_status, h.status) for h in history] == [(None, 'pending')]
        movement = db.session.query(InventoryMovement).filter_by(order_id=order['id']).one()
        assert movement.movement_type == 'decrease'

    def test_insufficient_stock_changes_nothing(self, client, customer_headers, make_product):
        plenty = make_product(stock=10)
        scarce = make_product(stock=1)

        response = client.post('/api/orders', json={'items': [
            {'productId': plenty.id, 'quantity': 2},
            {'productId': scarce.id, 'quantity': 2},
        ]}, headers=customer_headers)

        assert response.status_code == 400
        assert _stock(plenty.id) == 10
        assert _stock(scarce.id) == 1
        assert db.session.query(Order).count() == 0

    def test_duplicate_lines_are_merged(self, client, customer_headers, product):
        response = client.post('/api/orders', json={'items': [
            {'productId': product.id, 'quantity': 2},
            {'productId': product.id, 'quantity': 1},
        ]}, headers=customer_headers)

        assert response.status_code == 201
        items = response.get_json()['data']['items']
        assert len(items) == 1
        assert items[0]['quantity'] == 3

    def test_cart_checkout_empties_cart(self, client, customer_headers, product):
        client.post('/api/cart/items', json={'productId': product.id, 'quantity': 2}, headers=customer_headers)

        response = client.post('/api/orders/create', json={'type': 'cart'}, headers=customer_headers)

        assert response.status_code == 201
        assert db.session.query(CartItem).count() == 0
        assert _stock(product.id) == 8

    def test_empty_cart_checkout_is_400(self, client, customer_headers):
        response = client.post('/api/orders', json={'type': 'cart'}, headers=customer_headers)
        assert response.status_code == 400

    def test_inactive_product_cannot_be_ordered(self, client, customer_headers, make_product):
        product = make_product(is_active=False)
        assert _place(client, customer_headers, product.id).status_code == 400

    def test_confirmation_email_is_queued(self, client, customer, customer_headers, product):
        from nursery.models import NotificationOutbox

        _place(client, customer_headers, product.id)

        row = db.session.query(NotificationOutbox).filter_by(kind='order_confirmation').one()
        assert row.recipient == customer.email


class TestOrderAccess:
    def test_customer_sees_only_own_orders(self, client, customer_headers, other_customer, product):
        from conftest import auth_headers, get_auth_token

        order_id = _place(client, customer_headers, product.id).get_json()['data']['id']
        other_headers = auth_headers(get_auth_token(other_customer))

        assert client.get(f'/api/orders/{order_id}', headers=customer_headers).status_code == 200
        assert client.get(f'/api/orders/{order_id}', headers=other_headers).status_code == 403
        assert client.get('/api/orders/user', headers=other_headers).get_json()['data']['orders'] == []

    def test_unknown_order_is_404(self, client, customer_headers):
        assert client.get('/api/orders/999', headers=customer_headers).status_code == 404


class TestAdminStatusUpdates:
    def _order(self, client, headers, product):
        return _place(client, headers, product.id, 2).get_json()['data']['id']

    def test_skipping_ahead_is_rejected(self, client, customer_headers, order_admin_headers, product):
        order_id = self._order(client, customer_headers, product)

        response = client.put(f'/api/admin/orders/{order_id}/status', json={'status': 'shipped'},
                              headers=order_admin_headers)

        assert response.status_code == 400
        assert db.session.get(Order, order_id).status == 'pending'

    @pytest.mark.parametrize("status", ['cancelled', 'payment_failed'])
    def test_admin_cannot_leave_forward_chain(self, client, customer_headers, order_admin_headers, product, status):
        order_id = self._order(client, customer_headers, product)

        response = client.patch(f'/api/admin/orders/{order_id}/status', json={'status': status},
                                headers=order_admin_headers)

        assert response.status_code == 400
        assert 'status' in response.get_json()['errors']
        assert _stock(product.id) == 8
        assert db.session.get(Order, order_id).status == 'pending'

    def test_admin_cannot_mark_refunded(self, client, customer_headers, order_admin_headers, product):
        order_id = self._order(client, customer_headers, product)
        client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'changed_mind'}, headers=customer_headers)

        response = client.patch(f'/api/admin/orders/{order_id}/status', json={'status': 'refunded'},
                                headers=order_admin_headers)

        assert response.status_code == 400
        assert _stock(product.id) == 10
        assert db.session.get(Order, order_id).status == 'cancelled'

    def test_forward_path_writes_history_and_activity(self, client, customer_headers, order_admin,
                                                       order_admin_headers, product):
        order_id = self._order(client, customer_headers, product)

        for status in ('confirmed', 'processing', 'packed'):
            response = client.put(f'/api/admin/orders/{order_id}/status', json={'status': status},
                                  headers=order_admin_headers)
            assert response.status_code == 200

        response = client.put(f'/api/admin/orders/{order_id}/status',
                              json={'status': 'shipped', 'shippingPartner': 'BlueDart', 'trackingNumber': 'BD123'},
                              headers=order_admin_headers)
        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['status'] == 'shipped'
        assert data['shipped_at'] is not None
        assert data['next_statuses'] == ['out_for_delivery']

        statuses = [h['status'] for h in data['history']]
        assert statuses == ['pending', 'confirmed', 'processing', 'packed', 'shipped']
        assert db.session.query(ActivityLog).filter_by(
            action_type='ORDER_STATUS_UPDATED', user_id=order_admin.id).count() == 4

    def test_shipping_requires_partner(self, client, customer_headers, order_admin_headers, product):
        order_id = self._order(client, customer_headers, product)
        for status in ('confirmed', 'processing', 'packed'):
            order_service.update_order_status(order_id, status)

        response = client.put(f'/api/admin/orders/{order_id}/status', json={'status': 'shipped'},
                              headers=order_admin_headers)
        assert response.status_code == 400

    def test_customer_cannot_use_admin_route(self, client, customer_headers, product):
        order_id = self._order(client, customer_headers, product)
        response = client.put(f'/api/admin/orders/{order_id}/status', json={'status': 'confirmed'},
                              headers=customer_headers)
        assert response.status_code == 403

    def test_admin_notes_append(self, client, customer_headers, order_admin_headers, product):
        order_id = self._order(client, customer_headers, product)

        client.post(f'/api/admin/orders/{order_id}/notes', json={'note': 'Gift wrap'}, headers=order_admin_headers)
        response = client.post(f'/api/admin/orders/{order_id}/notes', json={'note': 'Call before delivery'},
                               headers=order_admin_headers)

        notes = response.get_json()['data']['admin_notes']
        assert 'Gift wrap' in notes and 'Call before delivery' in notes


class TestCancellation:
    def test_cancel_restores_stock(self, client, customer_headers, product):
        order_id = _place(client, customer_headers, product.id, 4).get_json()['data']['id']
        assert _stock(product.id) == 6

        response = client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'changed_mind'},
                               headers=customer_headers)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['status'] == 'cancelled'
        assert data['cancellation_reason'] == 'changed_mind'
        assert _stock(product.id) == 10
        restock = db.session.query(InventoryMovement).filter_by(order_id=order_id, movement_type='increase').one()
        assert restock.reason == 'order_cancelled'

    def test_other_reason_requires_comments(self, client, customer_headers, product):
        order_id = _place(client, customer_headers, product.id).get_json()['data']['id']

        response = client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'other'}, headers=customer_headers)
        assert response.status_code == 400

    def test_unknown_reason_is_rejected(self, client, customer_headers, product):
        order_id = _place(client, customer_headers, product.id).get_json()['data']['id']

        response = client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'bored'}, headers=customer_headers)
        assert response.status_code == 400

    def test_packed_order_cannot_be_cancelled(self, client, customer_headers, product):
        order_id = _place(client, customer_headers, product.id, 2).get_json()['data']['id']
        for status in ('confirmed', 'processing', 'packed'):
            order_service.update_order_status(order_id, status)

        response = client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'changed_mind'},
                               headers=customer_headers)

        assert response.status_code == 400
        assert _stock(product.id) == 8

    def test_cancel_twice_is_rejected(self, client, customer_headers, product):
        order_id = _place(client, customer_headers, product.id).get_json()['data']['id']
        client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'changed_mind'}, headers=customer_headers)

        response = client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'changed_mind'},
                               headers=customer_headers)

        assert response.status_code == 400
        assert _stock(product.id) == 10

    def test_direct_service_rejects_illegal_edge(self, client, customer_headers, product):
        order_id = _place(client, customer_headers, product.id).get_json()['data']['id']
        with pytest.raises(OrderTransitionError):
            order_service.update_order_status(order_id, 'delivered')
