"""
Tests for the email outbox, the health endpoint and the CLI commands.
"""

from nursery.extensions import db
from nursery.models import NotificationOutbox, User, ActiveSession
from nursery.services import notification_service
from conftest import TEST_PASSWORD


def _queue(n=1):
    for i in range(n):
        notification_service.queue_password_changed(f"user{i}@example.com")
    db.session.commit()


class TestOutbox:
    def test_dispatch_sends_pending_rows(self, app, mailer):
        _queue(2)

        counts = notification_service.dispatch_pending()

        assert counts == {"sent": 2, "retrying": 0, "failed": 0}
        assert [m["recipient"] for m in mailer.sent] == ["user0@example.com", "user1@example.com"]
        assert db.session.query(NotificationOutbox).filter_by(status="sent").count() == 2

    def test_failures_retry_until_max_attempts(self, app, mailer):
        app.config["NOTIFICATION_MAX_ATTEMPTS"] = 2
        mailer.fail = True
        _queue()

        assert notification_service.dispatch_pending()["retrying"] == 1
        assert notification_service.dispatch_pending()["failed"] == 1

        row = db.session.query(NotificationOutbox).one()
        assert row.status == "failed"
        assert row.attempts == 2
        assert "SMTP unavailable" in row.last_error
        assert notification_service.dispatch_pending() == {"sent": 0, "retrying": 0, "failed": 0}

    def test_retry_failed_requeues_with_fresh_budget(self, app, mailer):
        app.config["NOTIFICATION_MAX_ATTEMPTS"] = 1
        mailer.fail = True
        _queue()
        notification_service.dispatch_pending()

        assert notification_service.retry_failed() == 1
        mailer.fail = False
        assert notification_service.dispatch_pending()["sent"] == 1

    def test_rolled_back_business_change_queues_nothing(self, client, customer_headers, make_product):
        scarce = make_product(stock=1)

        client.post('/api/orders', json={'productId': scarce.id, 'quantity': 5}, headers=customer_headers)

        assert db.session.query(NotificationOutbox).filter_by(kind='order_confirmation').count() == 0

    def test_outbox_listing_and_retry_routes(self, client, super_headers, mailer, app):
        app.config["NOTIFICATION_MAX_ATTEMPTS"] = 1
        mailer.fail = True
        _queue()
        notification_service.dispatch_pending()

        listing = client.get('/api/admin/superadmin/notifications?status=failed', headers=super_headers)
        assert len(listing.get_json()['data']['notifications']) == 1

        response = client.post('/api/admin/superadmin/notifications/retry-failed', headers=super_headers)
        assert response.get_json()['data']['requeued'] == 1

    def test_templates_render_store_name(self, app):
        row = notification_service.enqueue("test", "a@example.com", "Subject", "welcome", email="a@example.com")
        assert app.config["STORE_NAME"] in row.body_html


class TestSystem:
    def test_health(self, client, customer):
        response = client.get('/api/health')

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'OK'
        assert data['checks']['database']['details']['users'] == 1
        assert data['checks']['backlog']['details']['pending_notifications'] == 0

    def test_unknown_route_is_json_404(self, client):
        response = client.get('/api/nothing-here')

        assert response.status_code == 404
        assert response.get_json()['success'] is False

    def test_cors_allows_configured_origin(self, client):
        response = client.get('/api/health', headers={'Origin': 'http://localhost:5173'})
        assert response.headers['Access-Control-Allow-Origin'] == 'http://localhost:5173'

        response = client.get('/api/health', headers={'Origin': 'https://evil.example'})
        assert 'Access-Control-Allow-Origin' not in response.headers


class TestCli:
    def test_init_creates_single_super_admin(self, app):
        runner = app.test_cli_runner()

        first = runner.invoke(args=['system', 'init', '--email', 'boss@example.com', '--password', TEST_PASSWORD])
        second = runner.invoke(args=['system', 'init', '--email', 'other@example.com', '--password', TEST_PASSWORD])

        assert first.exit_code == 0, first.output
        assert 'Created super admin' in first.output
        assert 'existing super admin' in second.output
        assert db.session.query(User).filter_by(role='super_admin').count() == 1

    def test_create_admin_command(self, app):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            'users', 'create-admin', '--email', 'stock@example.com', '--password', TEST_PASSWORD,
            '--role', 'inventory_admin',
        ])

        assert result.exit_code == 0, result.output
        listing = runner.invoke(args=['users', 'list', '--role', 'inventory_admin'])
        assert 'stock@example.com' in listing.output

    def test_create_admin_weak_password_fails(self, app):
        result = app.test_cli_runner().invoke(args=[
            'users', 'create-admin', '--email', 'stock@example.com', '--password', 'weak',
            '--role', 'inventory_admin',
        ])
        assert result.exit_code != 0

    def test_sessions_sweep(self, app, customer):
        from conftest import get_auth_token

        get_auth_token(customer)
        app.config['SESSION_INACTIVITY_TIMEOUT_SECONDS'] = 0

        result = app.test_cli_runner().invoke(args=['sessions', 'sweep'])

        assert 'Swept 1' in result.output
        db.session.expire_all()
        assert db.session.query(ActiveSession).count() == 0

    def test_notifications_dispatch(self, app, mailer):
        _queue(3)

        result = app.test_cli_runner().invoke(args=['notifications', 'dispatch', '--limit', '2'])

        assert 'Sent 2' in result.output
        assert len(mailer.sent) == 2

    def test_run_sql(self, app, tmp_path):
        script = tmp_path / "seed.sql"
        script.write_text(
            "-- seed categories\n"
            "INSERT INTO categories (name, slug, display_order, is_active) VALUES ('Herbs', 'herbs', 0, 1);\n"
            "INSERT INTO categories (name, slug, display_order, is_active) VALUES ('Succulents', 'succulents', 1, 1);\n",
            encoding="utf-8",
        )

        result = app.test_cli_runner().invoke(args=['system', 'run-sql', str(script)])

        assert result.exit_code == 0, result.output
        assert 'Executed 2 statement(s)' in result.output

    def test_split_sql_statements_drops_comments(self):
        from nursery.cli import split_sql_statements

        script = "-- header\nSELECT 1;\n\n  -- note\nSELECT 2;\n;"

        assert split_sql_statements(script) == ["SELECT 1", "SELECT 2"]
