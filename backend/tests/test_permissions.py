"""
Tests for role/capability authorization and account administration.

Validates:
- Every role holds exactly the capabilities it is granted
- Denied requests are answered 403 and written to the activity log
- super_admin passes every check
- Role and status changes cannot target the caller or grant super_admin
"""

import pytest

from nursery.extensions import db
from nursery.models import ActivityLog, ActiveSession, User
from nursery.permissions import Role, Capability, is_allowed, capabilities_for
from conftest import TEST_PASSWORD, auth_headers, get_auth_token, make_user


class TestCapabilityPolicy:
    def test_customer_has_no_capabilities(self):
        assert capabilities_for(Role.CUSTOMER) == []

    @pytest.mark.parametrize("role, capability", [
        ("inventory_admin", Capability.MANAGE_INVENTORY),
        ("inventory_admin", Capability.MANAGE_CATALOG),
        ("order_admin", Capability.MANAGE_ORDERS),
        ("support_admin", Capability.MANAGE_SUPPORT),
        ("support_admin", Capability.VIEW_ORDERS),
        ("content_admin", Capability.MODERATE_REVIEWS),
    ])
    def test_granted(self, role, capability):
        assert is_allowed(role, capability)

    @pytest.mark.parametrize("role, capability", [
        ("inventory_admin", Capability.MANAGE_ORDERS),
        ("order_admin", Capability.MANAGE_INVENTORY),
        ("support_admin", Capability.MANAGE_ORDERS),
        ("content_admin", Capability.MANAGE_USERS),
        ("customer", Capability.VIEW_ORDERS),
    ])
    def test_denied(self, role, capability):
        assert not is_allowed(role, capability)

    def test_super_admin_has_everything(self):
        assert all(is_allowed("super_admin", c) for c in Capability)

    def test_unknown_role_is_denied(self):
        assert not is_allowed("janitor", Capability.VIEW_ORDERS)


class TestRouteEnforcement:
    def test_admin_route_without_token_is_401(self, client):
        assert client.get('/api/admin/orders').status_code == 401

    def test_customer_denial_is_logged(self, client, customer, customer_headers):
        response = client.get('/api/admin/inventory/status', headers=customer_headers)

        assert response.status_code == 403
        log = db.session.query(ActivityLog).filter_by(action_type='PERMISSION_DENIED').one()
        assert log.user_id == customer.id
        assert log.details['capability'] == 'VIEW_INVENTORY'

    def test_support_admin_can_read_but_not_change_orders(self, client, support_headers):
        assert client.get('/api/admin/orders', headers=support_headers).status_code == 200
        assert client.put('/api/admin/orders/1/status', json={'status': 'confirmed'},
                          headers=support_headers).status_code == 403

    def test_super_admin_reaches_every_area(self, client, super_headers):
        for path in ('/api/admin/inventory/status', '/api/admin/orders', '/api/admin/support',
                     '/api/admin/content/blog', '/api/admin/superadmin/users'):
            assert client.get(path, headers=super_headers).status_code == 200, path


class TestAccountAdministration:
    def test_create_admin(self, client, super_headers):
        response = client.post('/api/admin/create-admin', json={
            'email': 'plants@example.com', 'password': TEST_PASSWORD, 'role': 'content_admin',
        }, headers=super_headers)

        assert response.status_code == 201
        assert db.session.query(User).filter_by(email='plants@example.com').one().role == 'content_admin'

    def test_create_admin_rejects_customer_role(self, client, super_headers):
        response = client.post('/api/admin/create-admin', json={
            'email': 'plants@example.com', 'password': TEST_PASSWORD, 'role': 'customer',
        }, headers=super_headers)

        assert response.status_code == 400
        assert 'role' in response.get_json()['errors']

    def test_create_admin_duplicate_is_409(self, client, super_headers, customer):
        response = client.post('/api/admin/create-admin', json={
            'email': customer.email, 'password': TEST_PASSWORD, 'role': 'order_admin',
        }, headers=super_headers)
        assert response.status_code == 409

    def test_only_super_admin_creates_admins(self, client, order_admin_headers):
        response = client.post('/api/admin/create-admin', json={
            'email': 'plants@example.com', 'password': TEST_PASSWORD, 'role': 'order_admin',
        }, headers=order_admin_headers)
        assert response.status_code == 403

    def test_deactivation_ends_session(self, client, super_headers, customer, customer_headers):
        response = client.put(f'/api/admin/superadmin/users/{customer.id}/status', json={'is_active': False},
                              headers=super_headers)

        assert response.status_code == 200
        assert db.session.query(ActiveSession).filter_by(user_id=customer.id).count() == 0
        assert client.get('/api/cart', headers=customer_headers).status_code == 401

    def test_cannot_deactivate_self(self, client, super_admin, super_headers):
        response = client.put(f'/api/admin/superadmin/users/{super_admin.id}/status', json={'is_active': False},
                              headers=super_headers)
        assert response.status_code == 400

    def test_role_change(self, client, super_headers, customer):
        response = client.put(f'/api/admin/superadmin/users/{customer.id}/role', json={'role': 'support_admin'},
                              headers=super_headers)

        assert response.status_code == 200
        assert response.get_json()['data']['role'] == 'support_admin'
        assert db.session.query(ActivityLog).filter_by(action_type='ROLE_CHANGED').count() == 1

    def test_role_change_never_grants_super_admin(self, client, super_headers, customer):
        response = client.put(f'/api/admin/superadmin/users/{customer.id}/role', json={'role': 'super_admin'},
                              headers=super_headers)
        assert response.status_code == 400

    def test_cannot_change_own_role(self, client, super_admin, super_headers):
        response = client.put(f'/api/admin/superadmin/users/{super_admin.id}/role', json={'role': 'order_admin'},
                              headers=super_headers)
        assert response.status_code == 400

    def test_user_listing_filters(self, client, super_headers, customer, order_admin):
        response = client.get('/api/admin/superadmin/users?role=order_admin', headers=super_headers)

        users = response.get_json()['data']['users']
        assert [u['email'] for u in users] == [order_admin.email]

    def test_user_details_include_session(self, client, super_headers, customer, customer_headers):
        response = client.get(f'/api/admin/superadmin/users/{customer.id}', headers=super_headers)

        data = response.get_json()['data']
        assert data['active_session'] is not None
        assert data['order_count'] == 0


class TestPlatformViews:
    def test_platform_stats(self, client, super_headers, customer, product):
        response = client.get('/api/admin/superadmin/platform/stats', headers=super_headers)

        data = response.get_json()['data']
        assert data['users']['by_role']['customer'] == 1
        assert data['products']['total'] == 1

    def test_invalid_period_is_400(self, client, super_headers):
        response = client.get('/api/admin/superadmin/analytics/sales?period=decade', headers=super_headers)
        assert response.status_code == 400

    def test_activity_log_listing(self, client, super_headers, customer, customer_headers):
        client.get('/api/admin/orders', headers=customer_headers)

        response = client.get('/api/admin/superadmin/activity-logs?actionType=PERMISSION_DENIED',
                              headers=super_headers)

        logs = response.get_json()['data']['logs']
        assert len(logs) == 1
        assert logs[0]['user_id'] == customer.id

    def test_inactive_user_login_blocked_after_deactivation(self, client, super_headers):
        user = make_user('leaving@example.com')
        client.put(f'/api/admin/superadmin/users/{user.id}/status', json={'is_active': False}, headers=super_headers)

        response = client.post('/api/auth/login', json={'email': user.email, 'password': TEST_PASSWORD})
        assert response.status_code == 403
