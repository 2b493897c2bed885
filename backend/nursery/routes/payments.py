# Overview: Flask API routes for Razorpay checkout; gateway order creation and signature verification.

from flask import Blueprint, request, g

from ..responses import success, failure, validation_failure, server_error
from ..services import payment_service
from ..services.order_service import OrderAccessError
from ..services.payment_service import PaymentError, PaymentGatewayError
from ..validation import ValidationError, NotFoundError
from ..decorators import require_auth


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/initiate")
@require_auth
def initiate_payment_route():
    """
    Create a Razorpay order for one of the caller's orders.

    Request body: {"orderId": 12, "amount": 149900}
    `amount` (cents) is optional; when given it must equal the order total.
    """
    data = request.get_json(silent=True) or {}
    try:
        if data.get("orderId") in (None, ""):
            raise ValidationError("orderId is required", {"orderId": "is required"})
        try:
            order_id = int(data["orderId"])
        except (TypeError, ValueError):
            raise ValidationError("orderId must be an integer", {"orderId": "must be an integer"})
        amount = data.get("amount")
        if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
            raise ValidationError("amount must be an integer number of cents", {"amount": "must be an integer"})

        result = payment_service.initiate_payment(order_id, g.current_user.id, amount)
        return success(result, message="Payment initiated")
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except OrderAccessError as e:
        return failure(str(e), 403)
    except PaymentError as e:
        return failure(str(e), 400)
    except PaymentGatewayError as e:
        return failure(str(e), 502)
    except Exception as e:
        return server_error("Error in initiate_payment", e)


@payments_bp.post("/verify")
@require_auth
def verify_payment_route():
    """
    Verify the checkout callback.

    Request body:
    {
        "razorpay_order_id": "order_...",
        "razorpay_payment_id": "pay_...",
        "razorpay_signature": "<hex hmac>"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        txn = payment_service.verify_payment(
            data.get("razorpay_order_id"),
            data.get("razorpay_payment_id"),
            data.get("razorpay_signature"),
            user_id=g.current_user.id,
        )
        return success(
            {"orderId": txn.order_id, "paymentId": txn.gateway_payment_id, "status": txn.status},
            message="Payment verified successfully",
        )
    except ValidationError as e:
        return validation_failure(e)
    except NotFoundError as e:
        return failure(str(e), 404)
    except OrderAccessError as e:
        return failure(str(e), 403)
    except PaymentError as e:
        return failure(str(e), 400)
    except Exception as e:
        return server_error("Error in verify_payment", e)
