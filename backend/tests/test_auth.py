"""
Tests for signup OTP, login, single-session enforcement, refresh and password reset.
"""

import re

import pytest

from nursery.extensions import db
from nursery.models import SignupOTP, User, ActiveSession, NotificationOutbox, PasswordResetToken
from nursery.services import auth_service
from conftest import TEST_PASSWORD, make_user, auth_headers


@pytest.fixture
def fixed_otp(monkeypatch):
    monkeypatch.setattr(auth_service, "generate_otp", lambda: "123456")
    return "123456"


def _login(client, email, password=TEST_PASSWORD):
    return client.post('/api/auth/login', json={'email': email, 'password': password})


class TestSignup:
    def test_send_otp_queues_email_and_stores_hash(self, client, fixed_otp):
        response = client.post('/api/auth/signup/send-otp', json={'email': 'New@Example.com'})

        assert response.status_code == 200
        assert response.get_json()['expiresIn'] == 300

        row = db.session.query(SignupOTP).filter_by(email='new@example.com').one()
        assert row.code_hash != fixed_otp
        outbox = db.session.query(NotificationOutbox).filter_by(kind='signup_otp').one()
        assert outbox.recipient == 'new@example.com'
        assert fixed_otp in outbox.body_html

    def test_send_otp_rejects_registered_email(self, client, customer):
        response = client.post('/api/auth/signup/send-otp', json={'email': customer.email})
        assert response.status_code == 400

    def test_verify_creates_verified_customer(self, client, fixed_otp):
        client.post('/api/auth/signup/send-otp', json={'email': 'new@example.com'})

        response = client.post('/api/auth/signup/verify-otp', json={
            'email': 'new@example.com', 'otp': fixed_otp, 'password': TEST_PASSWORD,
        })

        assert response.status_code == 201
        user = db.session.query(User).filter_by(email='new@example.com').one()
        assert user.role == 'customer'
        assert user.is_verified is True
        assert db.session.query(SignupOTP).count() == 0
        assert db.session.query(NotificationOutbox).filter_by(kind='welcome').count() == 1

    def test_weak_password_is_rejected(self, client, fixed_otp):
        client.post('/api/auth/signup/send-otp', json={'email': 'new@example.com'})

        response = client.post('/api/auth/signup/verify', json={
            'email': 'new@example.com', 'otp': fixed_otp, 'password': 'weakpass',
        })

        assert response.status_code == 400
        assert 'password' in response.get_json()['errors']
        assert db.session.query(User).filter_by(email='new@example.com').count() == 0

    def test_fourth_submission_is_rejected_and_deletes_code(self, client, fixed_otp):
        client.post('/api/auth/signup/send-otp', json={'email': 'new@example.com'})
        body = {'email': 'new@example.com', 'password': TEST_PASSWORD}

        for remaining in (2, 1, 0):
            response = client.post('/api/auth/signup/verify', json={**body, 'otp': '000000'})
            assert response.status_code == 400
            assert f"{remaining} attempt" in response.get_json()['message']

        # Even the right code is refused once the attempts are spent
        response = client.post('/api/auth/signup/verify', json={**body, 'otp': fixed_otp})

        assert response.status_code == 400
        assert 'Maximum OTP attempts' in response.get_json()['message']
        assert db.session.query(SignupOTP).count() == 0
        assert db.session.query(User).filter_by(email='new@example.com').count() == 0


class TestLoginSessions:
    def test_login_returns_token_pair(self, client, customer):
        response = _login(client, customer.email)

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['accessToken'] and data['refreshToken']
        assert data['user']['role'] == 'customer'

    def test_wrong_password_is_401(self, client, customer):
        response = _login(client, customer.email, 'Wrong123!pass')
        assert response.status_code == 401

    def test_deactivated_account_is_403(self, client):
        user = make_user('inactive@example.com', is_active=False)
        response = _login(client, user.email)
        assert response.status_code == 403

    def test_second_login_is_refused_until_logout(self, client, customer):
        first = _login(client, customer.email)
        token = first.get_json()['data']['accessToken']

        second = _login(client, customer.email)
        assert second.status_code == 403
        assert 'already logged in' in second.get_json()['message']

        assert client.post('/api/auth/logout', headers=auth_headers(token)).status_code == 200
        assert db.session.query(ActiveSession).filter_by(user_id=customer.id).count() == 0

        third = _login(client, customer.email)
        assert third.status_code == 200

    def test_token_is_rejected_after_logout(self, client, customer):
        token = _login(client, customer.email).get_json()['data']['accessToken']
        client.post('/api/auth/logout', headers=auth_headers(token))

        response = client.get('/api/cart', headers=auth_headers(token))
        assert response.status_code == 401

    def test_missing_and_garbage_tokens_are_401(self, client):
        assert client.get('/api/cart').status_code == 401
        assert client.get('/api/cart', headers=auth_headers('not-a-token')).status_code == 401

    def test_stale_session_is_replaced_on_login(self, app, client, customer):
        _login(client, customer.email)
        app.config['SESSION_INACTIVITY_TIMEOUT_SECONDS'] = 0

        response = _login(client, customer.email)
        assert response.status_code == 200

    def test_refresh_issues_new_pair_for_live_session(self, client, customer):
        tokens = _login(client, customer.email).get_json()['data']

        response = client.post('/api/auth/token/refresh', json={'refreshToken': tokens['refreshToken']})

        assert response.status_code == 200
        new_access = response.get_json()['data']['accessToken']
        assert client.get('/api/cart', headers=auth_headers(new_access)).status_code == 200

    def test_access_token_cannot_be_used_as_refresh_token(self, client, customer):
        tokens = _login(client, customer.email).get_json()['data']

        response = client.post('/api/auth/refresh-token', json={'refreshToken': tokens['accessToken']})
        assert response.status_code == 401

    def test_refresh_after_logout_is_401(self, client, customer):
        tokens = _login(client, customer.email).get_json()['data']
        client.post('/api/auth/logout', headers=auth_headers(tokens['accessToken']))

        response = client.post('/api/auth/token/refresh', json={'refreshToken': tokens['refreshToken']})
        assert response.status_code == 401


class TestPasswordReset:
    def _reset_token(self):
        outbox = db.session.query(NotificationOutbox).filter_by(kind='password_reset').one()
        return re.search(r"token=([0-9a-f]{64})", outbox.body_html).group(1)

    def test_reset_changes_password_and_ends_session(self, client, customer):
        _login(client, customer.email)
        assert client.post('/api/auth/forgot-password', json={'email': customer.email}).status_code == 200
        token = self._reset_token()

        response = client.post('/api/auth/reset-password', json={
            'token': token, 'newPassword': 'NewPassword456!', 'confirmPassword': 'NewPassword456!',
        })

        assert response.status_code == 200
        assert db.session.query(ActiveSession).filter_by(user_id=customer.id).count() == 0
        assert _login(client, customer.email, 'NewPassword456!').status_code == 200

    def test_reset_link_is_single_use(self, client, customer):
        client.post('/api/auth/forgot-password', json={'email': customer.email})
        token = self._reset_token()
        body = {'token': token, 'newPassword': 'NewPassword456!', 'confirmPassword': 'NewPassword456!'}

        assert client.post('/api/auth/reset-password', json=body).status_code == 200
        assert client.post('/api/auth/reset-password', json=body).status_code == 400

    def test_mismatched_confirmation_is_rejected(self, client, customer):
        client.post('/api/auth/forgot-password', json={'email': customer.email})
        token = self._reset_token()

        response = client.post('/api/auth/reset-password', json={
            'token': token, 'newPassword': 'NewPassword456!', 'confirmPassword': 'Different456!',
        })
        assert response.status_code == 400
        assert db.session.query(PasswordResetToken).filter(PasswordResetToken.used_at.is_(None)).count() == 1

    def test_unknown_email_is_404(self, client):
        response = client.post('/api/auth/forgot-password', json={'email': 'ghost@example.com'})
        assert response.status_code == 404


class TestPasswordStrength:
    @pytest.mark.parametrize("password", ["short1!", "nouppercase1!", "NOLOWERCASE1!", "NoDigits!!", "NoSpecial123"])
    def test_weak_passwords_raise(self, password):
        with pytest.raises(auth_service.PasswordValidationError):
            auth_service.validate_password_strength(password)

    def test_strong_password_passes(self):
        auth_service.validate_password_strength(TEST_PASSWORD)
