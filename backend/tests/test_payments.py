"""
Tests for Razorpay checkout verification, webhooks and refunds.

All gateway traffic goes to the FakeGateway from conftest.
"""

import json

import pytest

from nursery.extensions import db
from nursery.models import Order, OrderStatusHistory, PaymentTransaction, Product
from nursery.services.payment_service import compute_signature


KEY_SECRET = 'test-key-secret'
WEBHOOK_SECRET = 'test-webhook-secret'


@pytest.fixture
def order_id(client, customer_headers, product):
    response = client.post('/api/orders', json={'productId': product.id, 'quantity': 2}, headers=customer_headers)
    return response.get_json()['data']['id']


@pytest.fixture
def gateway_order_id(client, customer_headers, order_id):
    response = client.post('/api/payments/initiate', json={'orderId': order_id}, headers=customer_headers)
    return response.get_json()['data']['gatewayOrderId']


def _order(order_id):
    db.session.expire_all()
    return db.session.get(Order, order_id)


def _verify(client, headers, gateway_order_id, payment_id='pay_test_1', signature=None):
    if signature is None:
        signature = compute_signature(f"{gateway_order_id}|{payment_id}", KEY_SECRET)
    return client.post('/api/payments/verify', json={
        'razorpay_order_id': gateway_order_id,
        'razorpay_payment_id': payment_id,
        'razorpay_signature': signature,
    }, headers=headers)


def _webhook(client, event, entity_key, entity, secret=WEBHOOK_SECRET):
    body = json.dumps({'event': event, 'payload': {entity_key: {'entity': entity}}}).encode('utf-8')
    return client.post(
        '/api/webhooks/razorpay',
        data=body,
        content_type='application/json',
        headers={'X-Razorpay-Signature': compute_signature(body, secret)},
    )


def _signed_post(client, body):
    return client.post(
        '/api/webhooks/razorpay',
        data=body,
        content_type='application/json',
        headers={'X-Razorpay-Signature': compute_signature(body, WEBHOOK_SECRET)},
    )


def _order_paid(client, order_id, gateway_order_id, payment=None):
    payload = {'order': {'entity': {'id': gateway_order_id, 'status': 'paid', 'notes': {'orderId': str(order_id)}}}}
    if payment is not None:
        payload['payment'] = {'entity': payment}
    return _signed_post(client, json.dumps({'event': 'order.paid', 'payload': payload}).encode('utf-8'))


def _confirmed_rows(order_id):
    return db.session.query(OrderStatusHistory).filter_by(order_id=order_id, status='confirmed').count()


class TestInitiate:
    def test_creates_gateway_order_and_pending_transaction(self, client, customer_headers, gateway, order_id):
        response = client.post('/api/payments/initiate', json={'orderId': order_id}, headers=customer_headers)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['key'] == 'rzp_test_key'
        assert data['amount'] == _order(order_id).total_cents
        assert gateway.created[0]['notes']['orderId'] == str(order_id)

        txn = db.session.query(PaymentTransaction).filter_by(order_id=order_id).one()
        assert txn.status == 'pending'
        assert txn.transaction_id == data['gatewayOrderId']

    def test_amount_mismatch_is_rejected(self, client, customer_headers, gateway, order_id):
        response = client.post('/api/payments/initiate', json={'orderId': order_id, 'amount': 1},
                               headers=customer_headers)

        assert response.status_code == 400
        assert gateway.created == []

    def test_other_customers_order_is_403(self, client, other_customer, order_id):
        from conftest import auth_headers, get_auth_token

        response = client.post('/api/payments/initiate', json={'orderId': order_id},
                               headers=auth_headers(get_auth_token(other_customer)))
        assert response.status_code == 403

    def test_payment_options_after_initiate(self, client, customer_headers, order_id, gateway_order_id):
        response = client.get(f'/api/orders/{order_id}/payment-options', headers=customer_headers)

        assert response.status_code == 200
        assert response.get_json()['data']['order_id'] == gateway_order_id


class TestVerify:
    def test_valid_signature_confirms_order(self, client, customer_headers, order_id, gateway_order_id):
        response = _verify(client, customer_headers, gateway_order_id)

        assert response.status_code == 200
        assert response.get_json()['data']['status'] == 'completed'
        order = _order(order_id)
        assert order.status == 'confirmed'
        assert order.payment_status == 'completed'
        assert order.gateway_payment_id == 'pay_test_1'

    def test_bad_signature_marks_transaction_failed(self, client, customer_headers, order_id, gateway_order_id):
        response = _verify(client, customer_headers, gateway_order_id, signature='0' * 64)

        assert response.status_code == 400
        assert _order(order_id).status == 'pending'
        txn = db.session.query(PaymentTransaction).filter_by(transaction_id=gateway_order_id).one()
        assert txn.status == 'failed'

    def test_repeat_verification_is_idempotent(self, client, customer_headers, order_id, gateway_order_id):
        _verify(client, customer_headers, gateway_order_id)
        response = _verify(client, customer_headers, gateway_order_id)

        assert response.status_code == 200
        assert _confirmed_rows(order_id) == 1

    def test_confirm_payment_needs_verified_transaction(self, client, customer_headers, order_id, gateway_order_id):
        response = client.post(f'/api/orders/{order_id}/payment', json={'paymentId': 'pay_unknown'},
                               headers=customer_headers)
        assert response.status_code == 400

        _verify(client, customer_headers, gateway_order_id)
        response = client.post(f'/api/orders/{order_id}/payment', json={'paymentId': 'pay_test_1'},
                               headers=customer_headers)
        assert response.status_code == 200
        assert _confirmed_rows(order_id) == 1


class TestWebhooks:
    def test_bad_signature_is_rejected_without_changes(self, client, order_id, gateway_order_id):
        response = _webhook(client, 'payment.captured', 'payment', {
            'id': 'pay_x', 'order_id': gateway_order_id, 'notes': {'orderId': str(order_id)},
        }, secret='wrong-secret')

        assert response.status_code == 400
        order = _order(order_id)
        assert order.status == 'pending'
        assert order.payment_status == 'pending'

    def test_payment_captured_confirms_and_replay_is_noop(self, client, order_id, gateway_order_id):
        entity = {
            'id': 'pay_hook_1',
            'order_id': gateway_order_id,
            'method': 'upi',
            'notes': {'orderId': str(order_id)},
        }

        first = _webhook(client, 'payment.captured', 'payment', entity)
        second = _webhook(client, 'payment.captured', 'payment', entity)

        assert first.status_code == 200 and second.status_code == 200
        order = _order(order_id)
        assert order.status == 'confirmed'
        assert order.payment_method == 'upi'
        assert _confirmed_rows(order_id) == 1
        txn = db.session.query(PaymentTransaction).filter_by(transaction_id=gateway_order_id).one()
        assert txn.status == 'completed'

    def test_verify_then_webhook_confirms_once(self, client, customer_headers, order_id, gateway_order_id):
        _verify(client, customer_headers, gateway_order_id)
        _webhook(client, 'payment.captured', 'payment', {
            'id': 'pay_test_1', 'order_id': gateway_order_id, 'notes': {'orderId': str(order_id)},
        })

        assert _confirmed_rows(order_id) == 1

    def test_failed_then_captured(self, client, order_id, gateway_order_id):
        _webhook(client, 'payment.failed', 'payment', {
            'id': 'pay_fail', 'order_id': gateway_order_id, 'error_description': 'Card declined',
        })
        assert _order(order_id).status == 'payment_failed'

        _webhook(client, 'payment.captured', 'payment', {'id': 'pay_ok', 'order_id': gateway_order_id})
        order = _order(order_id)
        assert order.status == 'confirmed'
        assert order.payment_status == 'completed'

    def test_unknown_order_is_acknowledged(self, client):
        response = _webhook(client, 'payment.captured', 'payment', {'id': 'pay_x', 'order_id': 'order_missing'})

        assert response.status_code == 200
        assert response.get_json()['data']['outcome'] == 'order_not_found'

    def test_unhandled_event_is_ignored(self, client):
        response = _webhook(client, 'subscription.charged', 'subscription', {'id': 'sub_1'})
        assert response.get_json()['data']['outcome'] == 'ignored'

    @pytest.mark.parametrize("body", [b'[1, 2]', b'"payment.captured"', b'{"event": "payment.captured", "payload": []}'])
    def test_signed_non_object_payload_is_400(self, client, body):
        response = _signed_post(client, body)

        assert response.status_code == 400
        assert response.get_json()["success"] is False

    def test_order_paid_records_payment_and_transaction(self, client, order_id, gateway_order_id):
        response = _order_paid(client, order_id, gateway_order_id,
                               payment={'id': 'pay_paid_1', 'order_id': gateway_order_id, 'method': 'card'})

        assert response.status_code == 200
        order = _order(order_id)
        assert order.status == 'confirmed'
        assert order.payment_status == 'completed'
        assert order.gateway_payment_id == 'pay_paid_1'
        assert order.payment_method == 'card'
        txn = db.session.query(PaymentTransaction).filter_by(transaction_id=gateway_order_id).one()
        assert txn.status == 'completed'
        assert txn.gateway_payment_id == 'pay_paid_1'
        assert _confirmed_rows(order_id) == 1


class TestRefunds:
    def _paid_order(self, client, headers, gateway_order_id):
        _verify(client, headers, gateway_order_id)

    def test_cancelling_paid_order_requests_refund(self, client, customer_headers, gateway, product,
                                                   order_id, gateway_order_id):
        self._paid_order(client, customer_headers, gateway_order_id)

        response = client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'changed_mind'},
                               headers=customer_headers)

        assert response.status_code == 200
        assert gateway.refunds[0]['payment_id'] == 'pay_test_1'
        order = _order(order_id)
        assert order.status == 'cancelled'
        assert order.payment_status == 'refund_pending'
        assert db.session.get(Product, product.id).stock_quantity == 10

        _webhook(client, 'refund.processed', 'refund', {'id': 'rfnd_test_1', 'payment_id': 'pay_test_1'})
        order = _order(order_id)
        assert order.status == 'refunded'
        assert order.payment_status == 'refunded'

    def test_gateway_failure_leaves_order_untouched(self, client, customer_headers, gateway, product,
                                                    order_id, gateway_order_id):
        self._paid_order(client, customer_headers, gateway_order_id)
        gateway.fail_refunds = True

        response = client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'changed_mind'},
                               headers=customer_headers)

        assert response.status_code == 502
        assert _order(order_id).status == 'confirmed'
        assert db.session.get(Product, product.id).stock_quantity == 8

    def test_order_paid_then_cancel_refunds_captured_payment(self, client, customer_headers, gateway, product,
                                                             order_id, gateway_order_id):
        _order_paid(client, order_id, gateway_order_id,
                    payment={'id': 'pay_paid_2', 'order_id': gateway_order_id, 'method': 'upi'})

        response = client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'changed_mind'},
                               headers=customer_headers)

        assert response.status_code == 200
        assert [r['payment_id'] for r in gateway.refunds] == ['pay_paid_2']
        order = _order(order_id)
        assert order.status == 'cancelled'
        assert order.payment_status == 'refund_pending'
        assert db.session.get(Product, product.id).stock_quantity == 10

    def test_paid_order_without_payment_id_is_not_cancelled(self, client, customer_headers, gateway, product,
                                                            order_id, gateway_order_id):
        _order_paid(client, order_id, gateway_order_id)

        response = client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'changed_mind'},
                               headers=customer_headers)

        assert response.status_code == 400
        assert gateway.refunds == []
        order = _order(order_id)
        assert order.status == 'confirmed'
        assert order.payment_status == 'completed'
        assert db.session.get(Product, product.id).stock_quantity == 8

    def test_refund_uses_transaction_payment_id(self, client, customer_headers, gateway, order_id, gateway_order_id):
        _verify(client, customer_headers, gateway_order_id, payment_id='pay_txn_1')
        order = _order(order_id)
        order.gateway_payment_id = None
        db.session.commit()

        response = client.post(f'/api/orders/{order_id}/cancel', json={'reason': 'changed_mind'},
                               headers=customer_headers)

        assert response.status_code == 200
        assert gateway.refunds[0]['payment_id'] == 'pay_txn_1'
