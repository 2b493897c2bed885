# Overview: Shared extension instances and the swappable collaborators kept in app.extensions.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def init_extensions(app) -> None:
    """
    Bind db/migrate and register the outbound collaborators.

    Services look these up through current_app.extensions, so tests replace
    them after create_app() without patching imports:
    - payment_gateway: Razorpay REST client
    - mail_sender: SMTP delivery for the email outbox
    - session_store: one-session-per-user map
    """
    db.init_app(app)
    migrate.init_app(app, db)

    from .services.payment_service import RazorpayClient
    from .services.notification_service import SMTPMailSender
    from .services.session_service import DatabaseSessionStore

    app.extensions.setdefault("payment_gateway", RazorpayClient.from_config(app.config))
    app.extensions.setdefault("mail_sender", SMTPMailSender(app.config))
    app.extensions.setdefault("session_store", DatabaseSessionStore())
