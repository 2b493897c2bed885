# Overview: Service-layer operations for payments; gateway client, signature checks, verification, webhooks and refunds.

"""
Payment Reconciliation (Razorpay)

FLOW:
1. initiate_payment: create a gateway order for the order total, record a
   pending PaymentTransaction keyed by the gateway order id, hand the
   client the public key + gateway order id for the checkout widget.
2. verify_payment: the client posts back (gateway_order_id, payment_id,
   signature). signature = HMAC-SHA256(key_secret, "order_id|payment_id").
3. handle_webhook: the gateway independently posts events signed with
   HMAC-SHA256(webhook_secret, raw_body).

Steps 2 and 3 race to the same state change. Both go through
order_service.transition_order with idempotent=True, under a row lock, so
the second arrival is a no-op.

SECURITY:
- Signatures are compared with hmac.compare_digest.
- The webhook signature is computed over the raw request bytes, never a
  re-serialized JSON object.
- Only the public key id is ever returned to clients.
- The charged amount always comes from the order total; a client-supplied
  amount is only checked against it.
"""

from __future__ import annotations

import hashlib
import hmac
import json

import httpx
from flask import current_app

from ..extensions import db
from ..models import Order, PaymentTransaction
from ..validation import ValidationError, NotFoundError
from .concurrency import lock_one, run_with_retry
from . import order_service
from .order_service import (
    OrderAccessError,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_REFUNDED,
    can_transition,
)
from nursery.time_utils import utcnow


PAYABLE_STATUSES = frozenset({"pending", "payment_failed"})

TXN_PENDING = "pending"
TXN_COMPLETED = "completed"
TXN_FAILED = "failed"
TXN_REFUNDED = "refunded"


class PaymentError(Exception):
    """Raised when payment operations fail validation (400)."""
    pass


class WebhookSignatureError(PaymentError):
    """Webhook body does not match its signature header."""


class PaymentGatewayError(Exception):
    """The gateway could not be reached or rejected the request (502)."""
    pass


# =============================================================================
# GATEWAY CLIENT
# =============================================================================

class RazorpayClient:
    """Minimal Razorpay Orders/Refunds client over httpx (basic auth, bounded timeout)."""

    def __init__(self, key_id: str, key_secret: str, base_url: str, timeout: float = 15):
        self.key_id = key_id
        self._client = httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
        )

    @classmethod
    def from_config(cls, config) -> "RazorpayClient":
        return cls(
            key_id=config["RAZORPAY_KEY_ID"],
            key_secret=config["RAZORPAY_KEY_SECRET"],
            base_url=config["RAZORPAY_BASE_URL"],
            timeout=config.get("PAYMENT_GATEWAY_TIMEOUT_SECONDS", 15),
        )

    def _post(self, path: str, payload: dict) -> dict:
        try:
            response = self._client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PaymentGatewayError(
                f"Gateway rejected {path}: {exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Gateway unreachable for {path}: {exc}") from exc
        return response.json()

    def create_order(self, amount_cents: int, currency: str, receipt: str, notes: dict) -> dict:
        return self._post("/orders", {
            "amount": amount_cents,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        })

    def refund(self, payment_id: str, amount_cents: int | None = None, notes: dict | None = None) -> dict:
        payload: dict = {"notes": notes or {}}
        if amount_cents is not None:
            payload["amount"] = amount_cents
        return self._post(f"/payments/{payment_id}/refund", payload)


def get_gateway():
    return current_app.extensions["payment_gateway"]


# =============================================================================
# SIGNATURES
# =============================================================================

def compute_signature(message, secret: str) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signature_matches(message, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(message, secret), signature)


# =============================================================================
# CLIENT-SIDE FLOW
# =============================================================================

def initiate_payment(order_id: int, user_id: int, amount_cents: int | None = None) -> dict:
    """
    Create a gateway order for `order_id` and a pending PaymentTransaction.

    Returns the parameters the checkout widget needs (public key only).
    """
    order = order_service.get_order_for_user(order_id, user_id)
    if order.status not in PAYABLE_STATUSES:
        raise PaymentError(f"Order cannot be paid in status {order.status}")
    if order.payment_status == PAYMENT_COMPLETED:
        raise PaymentError("Order is already paid")
    if order.total_cents <= 0:
        raise PaymentError("Order total must be greater than zero")
    if amount_cents is not None and amount_cents != order.total_cents:
        raise PaymentError("Amount does not match order total")

    gateway_order = get_gateway().create_order(
        amount_cents=order.total_cents,
        currency=order.currency,
        receipt=str(order.id),
        notes={"orderId": str(order.id), "orderNumber": order.order_number},
    )
    gateway_order_id = gateway_order["id"]

    def _op():
        locked = lock_one(Order, Order.id == order_id)
        locked.gateway_order_id = gateway_order_id
        txn = PaymentTransaction(
            order_id=locked.id,
            transaction_id=gateway_order_id,
            payment_gateway="razorpay",
            amount_cents=locked.total_cents,
            currency=locked.currency,
            status=TXN_PENDING,
            gateway_response=gateway_order,
        )
        db.session.add(txn)
        db.session.commit()
        return locked

    try:
        run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Payment initiated for order %s (gateway order %s)", order.order_number, gateway_order_id)
    return {
        "gatewayOrderId": gateway_order_id,
        "razorpayOrderId": gateway_order_id,
        "amount": gateway_order.get("amount", order.total_cents),
        "currency": gateway_order.get("currency", order.currency),
        "key": current_app.config["RAZORPAY_KEY_ID"],
        "orderNumber": order.order_number,
    }


def payment_options(order_id: int, user_id: int) -> dict:
    """Checkout widget options for an order that already has a gateway order."""
    order = order_service.get_order_for_user(order_id, user_id)
    if order.status not in PAYABLE_STATUSES:
        raise PaymentError(f"Order cannot be paid in status {order.status}")
    if not order.gateway_order_id:
        raise PaymentError("Payment has not been initiated for this order")

    user = order.user
    profile = user.profile if user else None
    return {
        "key": current_app.config["RAZORPAY_KEY_ID"],
        "amount": order.total_cents,
        "currency": order.currency,
        "name": current_app.config.get("STORE_NAME", "Plant Nursery"),
        "description": f"Order #{order.order_number}",
        "order_id": order.gateway_order_id,
        "prefill": {
            "name": profile.full_name if profile else None,
            "email": user.email if user else None,
            "contact": profile.mobile_number if profile else None,
        },
    }


def _find_transaction(gateway_order_id: str) -> PaymentTransaction:
    txn = (
        db.session.query(PaymentTransaction)
        .filter(PaymentTransaction.transaction_id == gateway_order_id)
        .first()
    )
    if txn is None:
        raise NotFoundError("Payment transaction not found")
    return txn


def _mark_order_paid(order: Order, payment_id: str | None, method: str | None, *, source: str, notes: str) -> bool:
    """Record payment on a locked order and confirm it when the table allows. Does NOT commit."""
    order.payment_status = PAYMENT_COMPLETED
    if payment_id:
        order.gateway_payment_id = payment_id
    if method:
        order.payment_method = method

    if order.status == "confirmed" or not can_transition(order.status, "confirmed"):
        if order.status != "confirmed":
            current_app.logger.warning(
                "Payment received for order %s in status %s; status left unchanged",
                order.order_number, order.status,
            )
        return False
    return order_service.transition_order(order, "confirmed", notes=notes, source=source, idempotent=True)


def verify_payment(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    *,
    user_id: int | None = None,
    payment_method: str = "razorpay",
) -> PaymentTransaction:
    """
    Verify the checkout callback signature.

    Mismatch: the transaction is marked failed (committed) and PaymentError
    is raised. Match: transaction completed, order paid and confirmed.
    """
    if not gateway_order_id or not gateway_payment_id or not signature:
        raise ValidationError("Missing payment verification fields", {
            k: "is required"
            for k, v in (
                ("razorpay_order_id", gateway_order_id),
                ("razorpay_payment_id", gateway_payment_id),
                ("razorpay_signature", signature),
            )
            if not v
        })

    txn = _find_transaction(gateway_order_id)
    if user_id is not None and txn.order.user_id != user_id:
        raise OrderAccessError("You do not have access to this payment")

    message = f"{gateway_order_id}|{gateway_payment_id}"
    if not signature_matches(message, signature, current_app.config["RAZORPAY_KEY_SECRET"]):
        if txn.status == TXN_PENDING:
            txn.status = TXN_FAILED
            txn.failure_reason = "Signature verification failed"
            db.session.commit()
        current_app.logger.warning("Payment signature mismatch for gateway order %s", gateway_order_id)
        raise PaymentError("Invalid payment signature")

    def _op():
        order = lock_one(Order, Order.id == txn.order_id)
        locked_txn = _find_transaction(gateway_order_id)
        if locked_txn.status != TXN_COMPLETED:
            locked_txn.status = TXN_COMPLETED
            locked_txn.gateway_payment_id = gateway_payment_id
            locked_txn.payment_method = payment_method
            locked_txn.failure_reason = None
            locked_txn.paid_at = utcnow()
            locked_txn.gateway_response = {
                **(locked_txn.gateway_response or {}),
                "paymentId": gateway_payment_id,
                "signature": signature,
            }
        _mark_order_paid(order, gateway_payment_id, payment_method, source="payment",
                         notes="Payment verified")
        db.session.commit()
        return locked_txn

    try:
        result = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Payment %s verified for gateway order %s", gateway_payment_id, gateway_order_id)
    return result


def confirm_order_payment(order_id: int, user_id: int, payment_id: str) -> Order:
    """
    Customer-side "I have paid" for an order. Only succeeds when a verified
    (completed) transaction with that payment id exists for the order.
    """
    if not payment_id:
        raise ValidationError("paymentId is required", {"paymentId": "is required"})
    order = order_service.get_order_for_user(order_id, user_id)
    txn = (
        db.session.query(PaymentTransaction)
        .filter(
            PaymentTransaction.order_id == order.id,
            PaymentTransaction.gateway_payment_id == payment_id,
            PaymentTransaction.status == TXN_COMPLETED,
        )
        .first()
    )
    if txn is None:
        raise PaymentError("No verified payment found for this order")

    def _op():
        locked = lock_one(Order, Order.id == order_id)
        _mark_order_paid(locked, payment_id, txn.payment_method, source="customer", notes="Payment confirmed")
        db.session.commit()
        return locked

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def captured_payment_id(order: Order) -> str | None:
    """Gateway payment id to refund: the order's own, else its completed transaction's."""
    if order.gateway_payment_id:
        return order.gateway_payment_id
    txn = (
        db.session.query(PaymentTransaction)
        .filter(
            PaymentTransaction.order_id == order.id,
            PaymentTransaction.status == TXN_COMPLETED,
            PaymentTransaction.gateway_payment_id.isnot(None),
        )
        .order_by(PaymentTransaction.paid_at.desc(), PaymentTransaction.id.desc())
        .first()
    )
    return txn.gateway_payment_id if txn is not None else None


def request_refund(order: Order, reason: str | None = None) -> dict:
    """
    Ask the gateway to refund the order's captured payment.

    Raises PaymentError when no captured payment id is known (a paid order
    must never be cancelled without its refund) and PaymentGatewayError when
    the gateway call fails.
    """
    payment_id = captured_payment_id(order)
    if not payment_id:
        raise PaymentError("Order is paid but no captured payment is on record; refund cannot be requested")
    response = get_gateway().refund(
        payment_id,
        amount_cents=order.total_cents,
        notes={"orderId": str(order.id), "reason": reason or ""},
    )
    current_app.logger.info("Refund requested for order %s (payment %s)", order.order_number, payment_id)
    return response


# =============================================================================
# WEBHOOK
# =============================================================================

def _resolve_order(entity: dict) -> Order | None:
    notes = entity.get("notes") or {}
    raw_id = notes.get("orderId") if isinstance(notes, dict) else None
    if raw_id is not None:
        try:
            order = lock_one(Order, Order.id == int(raw_id))
        except (TypeError, ValueError):
            order = None
        if order is not None:
            return order

    gateway_order_id = entity.get("order_id") or (entity.get("id") if str(entity.get("id", "")).startswith("order_") else None)
    if gateway_order_id:
        return lock_one(Order, Order.gateway_order_id == gateway_order_id)
    return None


def _entity(payload: dict, key: str) -> dict | None:
    wrapper = payload.get(key)
    entity = wrapper.get("entity") if isinstance(wrapper, dict) else None
    return entity if isinstance(entity, dict) else None


def _complete_transaction(gateway_order_id: str | None, payment: dict) -> None:
    if not gateway_order_id:
        return
    txn = (
        db.session.query(PaymentTransaction)
        .filter(PaymentTransaction.transaction_id == gateway_order_id)
        .first()
    )
    if txn is not None and txn.status != TXN_COMPLETED:
        txn.status = TXN_COMPLETED
        txn.gateway_payment_id = payment.get("id")
        txn.payment_method = payment.get("method")
        txn.paid_at = utcnow()
        txn.gateway_response = payment


def _on_payment_captured(payment: dict, payload: dict) -> str:
    order = _resolve_order(payment)
    if order is None:
        return "order_not_found"

    _complete_transaction(payment.get("order_id") or order.gateway_order_id, payment)
    _mark_order_paid(order, payment.get("id"), payment.get("method"), source="webhook",
                     notes="Payment successful")
    return "processed"


def _on_order_paid(gateway_order: dict, payload: dict) -> str:
    order = _resolve_order(gateway_order)
    if order is None:
        return "order_not_found"

    # order.paid carries the captured payment alongside the order entity
    payment = _entity(payload, "payment") or {}
    _complete_transaction(gateway_order.get("id") or order.gateway_order_id, payment)
    _mark_order_paid(order, payment.get("id"), payment.get("method"), source="webhook",
                     notes="Order payment confirmed via webhook")
    return "processed"


def _on_payment_failed(payment: dict, payload: dict) -> str:
    order = _resolve_order(payment)
    if order is None:
        return "order_not_found"

    reason = payment.get("error_description") or "Unknown error"
    if payment.get("order_id"):
        txn = (
            db.session.query(PaymentTransaction)
            .filter(PaymentTransaction.transaction_id == payment["order_id"])
            .first()
        )
        if txn is not None and txn.status == TXN_PENDING:
            txn.status = TXN_FAILED
            txn.failure_reason = reason[:255]
            txn.gateway_response = payment

    if order.payment_status == PAYMENT_COMPLETED:
        # A later attempt already succeeded
        return "ignored"
    order.payment_status = PAYMENT_FAILED
    if can_transition(order.status, "payment_failed"):
        order_service.transition_order(order, "payment_failed", notes=f"Payment failed: {reason}",
                                       source="webhook", idempotent=True)
    return "processed"


def _on_refund_processed(refund: dict, payload: dict) -> str:
    order = _resolve_order(refund)
    if order is None and refund.get("payment_id"):
        order = lock_one(Order, Order.gateway_payment_id == refund["payment_id"])
    if order is None:
        return "order_not_found"

    order.payment_status = PAYMENT_REFUNDED
    txn = (
        db.session.query(PaymentTransaction)
        .filter(PaymentTransaction.order_id == order.id, PaymentTransaction.status == TXN_COMPLETED)
        .first()
    )
    if txn is not None:
        txn.status = TXN_REFUNDED
        txn.refunded_at = utcnow()

    if order.status == "refunded":
        return "processed"
    if not can_transition(order.status, "refunded"):
        current_app.logger.warning(
            "Refund processed for order %s in status %s; status left unchanged",
            order.order_number, order.status,
        )
        return "processed"
    order_service.transition_order(order, "refunded", notes="Refund processed successfully",
                                   source="webhook", idempotent=True)
    return "processed"


WEBHOOK_HANDLERS = {
    "payment.captured": ("payment", _on_payment_captured),
    "payment.failed": ("payment", _on_payment_failed),
    "refund.processed": ("refund", _on_refund_processed),
    "order.paid": ("order", _on_order_paid),
}


def handle_webhook(raw_body: bytes, signature: str | None) -> str:
    """
    Verify and apply a gateway webhook.

    Raises WebhookSignatureError (nothing is touched) on a bad signature,
    PaymentError on an unparseable body. Returns "processed", "ignored"
    or "order_not_found"; the latter two are acknowledged so the gateway
    stops redelivering.
    """
    secret = current_app.config["RAZORPAY_WEBHOOK_SECRET"]
    if not signature_matches(raw_body, signature, secret):
        current_app.logger.warning("Rejected webhook with invalid signature")
        raise WebhookSignatureError("Invalid webhook signature")

    try:
        event = json.loads(raw_body)
    except (TypeError, ValueError) as exc:
        raise PaymentError("Invalid webhook payload") from exc
    if not isinstance(event, dict):
        raise PaymentError("Invalid webhook payload")

    name = event.get("event")
    handler_entry = WEBHOOK_HANDLERS.get(name) if isinstance(name, str) else None
    if handler_entry is None:
        current_app.logger.info("Unhandled webhook event: %s", name)
        return "ignored"

    entity_key, handler = handler_entry
    payload = event.get("payload")
    if not isinstance(payload, dict):
        payload = {}
    entity = _entity(payload, entity_key)
    if not isinstance(entity, dict):
        raise PaymentError(f"Webhook {name} has no {entity_key} entity")

    def _op():
        outcome = handler(entity, payload)
        db.session.commit()
        return outcome

    try:
        outcome = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    if outcome == "order_not_found":
        current_app.logger.warning("Webhook %s references an unknown order", name)
    else:
        current_app.logger.info("Webhook %s %s", name, outcome)
    return outcome


def list_transactions(order_id: int) -> list[PaymentTransaction]:
    return (
        db.session.query(PaymentTransaction)
        .filter(PaymentTransaction.order_id == order_id)
        .order_by(PaymentTransaction.created_at.asc(), PaymentTransaction.id.asc())
        .all()
    )
