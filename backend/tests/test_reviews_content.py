"""
Tests for product reviews, moderation and editorial content.
"""

import pytest

from nursery.extensions import db
from nursery.services import order_service


def _delivered_order(client, headers, product_id):
    order_id = client.post('/api/orders', json={'productId': product_id, 'quantity': 1},
                           headers=headers).get_json()['data']['id']
    for status in ('confirmed', 'processing', 'packed'):
        order_service.update_order_status(order_id, status)
    order_service.update_order_status(order_id, 'shipped', shipping_partner='Delhivery')
    order_service.update_order_status(order_id, 'out_for_delivery')
    order_service.update_order_status(order_id, 'delivered')
    return order_id


def _review(client, headers, product_id, **body):
    return client.post(f'/api/products/{product_id}/reviews', json={'rating': 5, 'title': 'Thriving', **body},
                       headers=headers)


class TestReviews:
    def test_review_requires_delivered_purchase(self, client, customer_headers, product):
        client.post('/api/orders', json={'productId': product.id, 'quantity': 1}, headers=customer_headers)

        response = _review(client, customer_headers, product.id)
        assert response.status_code == 403

    def test_one_review_per_delivered_order(self, client, customer_headers, product):
        order_id = _delivered_order(client, customer_headers, product.id)

        first = _review(client, customer_headers, product.id)
        assert first.status_code == 201
        assert first.get_json()['data']['order_id'] == order_id
        assert first.get_json()['data']['is_approved'] is False

        second = _review(client, customer_headers, product.id)
        assert second.status_code == 400

    def test_second_delivery_allows_second_review(self, client, customer_headers, product):
        first_order = _delivered_order(client, customer_headers, product.id)
        second_order = _delivered_order(client, customer_headers, product.id)

        ids = [_review(client, customer_headers, product.id).get_json()['data']['order_id'] for _ in range(2)]
        assert ids == [first_order, second_order]

    @pytest.mark.parametrize("rating", [0, 6, "5", None])
    def test_rating_must_be_one_to_five(self, client, customer_headers, product, rating):
        _delivered_order(client, customer_headers, product.id)
        assert _review(client, customer_headers, product.id, rating=rating).status_code == 400

    def test_pending_reviews_are_hidden_until_approved(self, client, customer_headers, content_headers, product):
        _delivered_order(client, customer_headers, product.id)
        review_id = _review(client, customer_headers, product.id).get_json()['data']['id']

        public = client.get(f'/api/products/{product.id}/reviews').get_json()['data']['reviews']
        assert public == []
        pending = client.get('/api/admin/content/reviews/pending', headers=content_headers)
        assert [r['id'] for r in pending.get_json()['data']['reviews']] == [review_id]

        response = client.put(f'/api/admin/content/reviews/{review_id}', json={'is_approved': True},
                              headers=content_headers)
        assert response.status_code == 200

        public = client.get(f'/api/products/{product.id}/reviews').get_json()['data']['reviews']
        assert [r['id'] for r in public] == [review_id]
        detail = client.get(f'/api/products/{product.slug}').get_json()['data']
        assert detail['review_count'] == 1
        assert detail['avg_rating'] == 5.0

    def test_my_reviews_include_unapproved(self, client, customer_headers, product):
        _delivered_order(client, customer_headers, product.id)
        _review(client, customer_headers, product.id)

        response = client.get('/api/reviews/mine', headers=customer_headers)
        assert len(response.get_json()['data']) == 1

    def test_moderator_can_delete(self, client, customer_headers, content_headers, product):
        _delivered_order(client, customer_headers, product.id)
        review_id = _review(client, customer_headers, product.id).get_json()['data']['id']

        assert client.delete(f'/api/admin/content/reviews/{review_id}', headers=content_headers).status_code == 200
        assert client.delete(f'/api/admin/content/reviews/{review_id}', headers=content_headers).status_code == 404


class TestCatalogBrowsing:
    def test_listing_filters_and_pagination(self, client, make_product):
        make_product(name='Snake Plant', price_cents=30000, care_level='easy')
        make_product(name='Fiddle Leaf Fig', price_cents=90000, care_level='difficult')
        make_product(name='Pothos', price_cents=15000, care_level='easy')

        response = client.get('/api/products?careLevel=easy&sort=price_low')

        data = response.get_json()
        assert [p['name'] for p in data['data']['products']] == ['Pothos', 'Snake Plant']
        assert data['pagination']['total'] == 2

    def test_price_range_and_search(self, client, make_product):
        make_product(name='Snake Plant', price_cents=30000)
        make_product(name='Snake Fern', price_cents=90000)

        response = client.get('/api/products?search=snake&maxPrice=50000')
        assert [p['name'] for p in response.get_json()['data']['products']] == ['Snake Plant']

    def test_inverted_price_range_is_400(self, client):
        assert client.get('/api/products?minPrice=500&maxPrice=100').status_code == 400

    def test_inactive_products_are_hidden(self, client, make_product):
        hidden = make_product(is_active=False)
        assert client.get('/api/products').get_json()['data']['products'] == []
        assert client.get(f'/api/products/{hidden.slug}').status_code == 404

    def test_categories(self, client, category):
        response = client.get('/api/products/categories')
        assert [c['slug'] for c in response.get_json()['data']] == [category.slug]


class TestContent:
    def test_drafts_are_not_public(self, client, content_headers):
        client.post('/api/admin/content/blog', json={'title': 'Repotting 101', 'content': 'Draft body'},
                    headers=content_headers)

        assert client.get('/api/content/blog').get_json()['data'] == []
        assert client.get('/api/content/blog/repotting-101').status_code == 404

    def test_publishing_stamps_date_and_exposes_post(self, client, content_headers):
        post = client.post('/api/admin/content/blog', json={
            'title': 'Repotting 101', 'content': 'Body', 'tags': ['soil', 'pots'],
        }, headers=content_headers).get_json()['data']
        assert post['published_at'] is None

        response = client.patch(f"/api/admin/content/blog/{post['id']}", json={'is_published': True},
                                headers=content_headers)
        assert response.get_json()['data']['published_at'] is not None

        public = client.get('/api/content/blog/repotting-101')
        assert public.status_code == 200
        assert public.get_json()['data']['tags'] == ['soil', 'pots']

    def test_duplicate_titles_get_unique_slugs(self, client, content_headers):
        slugs = [
            client.post('/api/admin/content/plant-guides', json={'title': 'Fern Care', 'content': 'x'},
                        headers=content_headers).get_json()['data']['slug']
            for _ in range(2)
        ]
        assert slugs[0] == 'fern-care'
        assert slugs[1] != slugs[0]

    def test_guide_difficulty_is_validated(self, client, content_headers):
        response = client.post('/api/admin/content/plant-guides', json={
            'title': 'Orchids', 'content': 'x', 'difficulty_level': 'expert',
        }, headers=content_headers)
        assert response.status_code == 400

    def test_guide_filters(self, client, content_headers):
        for title, level in (('Cacti', 'beginner'), ('Bonsai', 'advanced')):
            client.post('/api/admin/content/plant-guides', json={
                'title': title, 'content': 'x', 'difficulty_level': level, 'is_published': True,
            }, headers=content_headers)

        response = client.get('/api/content/plant-guides?difficulty=advanced')
        assert [g['title'] for g in response.get_json()['data']] == ['Bonsai']

    def test_unknown_segment_is_404(self, client, content_headers):
        assert client.get('/api/admin/content/podcasts', headers=content_headers).status_code == 404

    def test_inventory_admin_cannot_author(self, client, inventory_headers):
        response = client.post('/api/admin/content/blog', json={'title': 'x', 'content': 'y'},
                               headers=inventory_headers)
        assert response.status_code == 403


class TestProfile:
    PROFILE = {
        'first_name': 'Asha',
        'last_name': 'Rao',
        'permanent_address': '12 MG Road, Bengaluru',
        'mobile_number': '+919876543210',
    }

    def test_profile_create_then_update(self, client, customer_headers):
        assert client.get('/api/users/profile', headers=customer_headers).status_code == 404

        created = client.post('/api/users/profile', json=self.PROFILE, headers=customer_headers)
        assert created.status_code == 201

        updated = client.post('/api/users/profile', json={**self.PROFILE, 'first_name': 'Asha M'},
                              headers=customer_headers)
        assert updated.status_code == 200
        assert client.get('/api/users/profile', headers=customer_headers).get_json()['data']['first_name'] == 'Asha M'

    def test_invalid_mobile_is_rejected(self, client, customer_headers):
        response = client.post('/api/users/profile/create', json={**self.PROFILE, 'mobile_number': '12345'},
                               headers=customer_headers)
        assert response.status_code == 400
        assert 'mobile_number' in response.get_json()['errors']

    def test_email_change_with_otp(self, client, customer, customer_headers, monkeypatch):
        from nursery.services import auth_service

        monkeypatch.setattr(auth_service, "generate_otp", lambda: "654321")
        response = client.post('/api/users/request-email-change', json={'newEmail': 'fresh@example.com'},
                               headers=customer_headers)
        assert response.status_code == 200

        assert client.post('/api/users/verify-email-otp', json={'otp': '111111'},
                           headers=customer_headers).status_code == 400
        response = client.post('/api/users/verify-email-otp', json={'otp': '654321'}, headers=customer_headers)

        assert response.status_code == 200
        db.session.expire_all()
        assert customer.email == 'fresh@example.com'

    def test_email_change_to_taken_address_is_409(self, client, customer_headers, other_customer):
        response = client.post('/api/users/request-email-change', json={'newEmail': other_customer.email},
                               headers=customer_headers)
        assert response.status_code == 409
