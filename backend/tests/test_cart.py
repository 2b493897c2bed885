"""
Tests for the customer cart.
"""

from nursery.extensions import db
from nursery.models import CartItem
from nursery.services import inventory_service


class TestCart:
    def test_adding_same_product_merges_quantities(self, client, customer_headers, product):
        client.post('/api/cart/items', json={'productId': product.id, 'quantity': 2}, headers=customer_headers)
        response = client.post('/api/cart/items', json={'productId': product.id, 'quantity': 3},
                               headers=customer_headers)

        assert response.status_code == 200
        cart = response.get_json()['data']
        assert len(cart['items']) == 1
        assert cart['items'][0]['quantity'] == 5
        assert cart['total_items'] == 5
        assert cart['total_amount_cents'] == 5 * product.price_cents

    def test_merge_beyond_stock_is_rejected(self, client, customer_headers, product):
        client.post('/api/cart/items', json={'productId': product.id, 'quantity': 8}, headers=customer_headers)
        response = client.post('/api/cart/items', json={'productId': product.id, 'quantity': 3},
                               headers=customer_headers)

        assert response.status_code == 400
        assert 'quantity' in response.get_json()['errors']
        assert db.session.query(CartItem).one().quantity == 8

    def test_unknown_product_is_404(self, client, customer_headers):
        response = client.post('/api/cart/items', json={'productId': 999, 'quantity': 1}, headers=customer_headers)
        assert response.status_code == 404

    def test_inactive_product_is_400(self, client, customer_headers, make_product):
        hidden = make_product(is_active=False)

        response = client.post('/api/cart/items', json={'productId': hidden.id, 'quantity': 1},
                               headers=customer_headers)

        assert response.status_code == 400
        assert 'productId' in response.get_json()['errors']

    def test_invalid_quantity_is_400(self, client, customer_headers, product):
        response = client.post('/api/cart/items', json={'productId': product.id, 'quantity': 0},
                               headers=customer_headers)
        assert response.status_code == 400

    def test_update_and_remove_item(self, client, customer_headers, product):
        cart = client.post('/api/cart/items', json={'productId': product.id, 'quantity': 1},
                           headers=customer_headers).get_json()['data']
        item_id = cart['items'][0]['id']

        updated = client.patch(f'/api/cart/items/{item_id}', json={'quantity': 4}, headers=customer_headers)
        assert updated.get_json()['data']['items'][0]['quantity'] == 4

        removed = client.delete(f'/api/cart/items/{item_id}', headers=customer_headers)
        assert removed.status_code == 200
        assert removed.get_json()['data']['items'] == []

    def test_other_users_item_is_not_reachable(self, client, customer_headers, other_customer, product):
        from conftest import auth_headers, get_auth_token

        cart = client.post('/api/cart/items', json={'productId': product.id, 'quantity': 1},
                           headers=customer_headers).get_json()['data']
        item_id = cart['items'][0]['id']
        other_headers = auth_headers(get_auth_token(other_customer))

        response = client.delete(f'/api/cart/items/{item_id}', headers=other_headers)
        assert response.status_code == 404

    def test_validate_flags_lines_over_current_stock(self, client, customer_headers, product):
        client.post('/api/cart/items', json={'productId': product.id, 'quantity': 6}, headers=customer_headers)
        inventory_service.update_stock(product.id, 7, 'decrease')

        response = client.get('/api/cart/validate', headers=customer_headers)

        data = response.get_json()['data']
        assert data['valid'] is False
        assert data['invalidItems'][0]['availableQuantity'] == 3

    def test_clear_cart(self, client, customer_headers, make_product):
        for _ in range(2):
            client.post('/api/cart/items', json={'productId': make_product().id, 'quantity': 1},
                        headers=customer_headers)

        response = client.delete('/api/cart/clear', headers=customer_headers)

        assert response.get_json()['data']['removed'] == 2
        assert db.session.query(CartItem).count() == 0
