# Overview: Razorpay webhook receiver. Unauthenticated; trust comes from the HMAC signature over the raw body.

from flask import Blueprint, request

from ..responses import success, failure, server_error
from ..services import payment_service
from ..services.payment_service import PaymentError, WebhookSignatureError


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/razorpay")
def razorpay_webhook_route():
    """
    Handled events: payment.captured, order.paid, payment.failed,
    refund.processed. Others are acknowledged and ignored.

    SECURITY: the signature is checked against the exact bytes received,
    before the body is parsed.
    """
    raw_body = request.get_data(cache=False)
    signature = request.headers.get("X-Razorpay-Signature")
    try:
        outcome = payment_service.handle_webhook(raw_body, signature)
        return success({"outcome": outcome}, message="Webhook received")
    except WebhookSignatureError as e:
        return failure(str(e), 400)
    except PaymentError as e:
        return failure(str(e), 400)
    except Exception as e:
        return server_error("Error in razorpay_webhook", e)
