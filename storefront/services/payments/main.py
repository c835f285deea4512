import json
import logging
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, Header, Request
from pymongo.errors import DuplicateKeyError

from storefront.shared.utils import (
    Clients, get_clients, require_auth, SuccessResponse, ValidationException, GatewayException
)
from storefront.shared.security_config import limiter
from storefront.services.orders.models import PaymentError
from storefront.services.checkout.main import get_orchestrator
from storefront.services.checkout.orchestrator import CheckoutOrchestrator, PaymentConflictError
from storefront.services.payments.gateway import (
    RazorpayClient, GatewayError, InvalidAmountError, get_gateway,
    verify_payment_signature, verify_webhook_signature
)
from storefront.services.payments.models import PaymentEventDB
from storefront.services.payments.schemas import (
    GatewayOrderCreate, GatewayOrderResponse, PaymentVerify, PaymentVerifyResponse,
    PaymentDetails, WebhookAck
)

logger = logging.getLogger("storefront.payments")

router = APIRouter(prefix="/payments", tags=["payments"])

# --- Dependencies ---
def get_payment_events(clients: Clients = Depends(get_clients)):
    return clients.mongodb.payment_events

def webhook_entity(payload: dict, key: str) -> dict:
    """Return ``payload[key].entity``, treating a missing wrapper as empty."""
    wrapper = payload.get(key) or {}
    entity = (wrapper.get("entity") or {}) if isinstance(wrapper, dict) else None
    if not isinstance(entity, dict):
        raise ValidationException("Malformed webhook payload")
    return entity

# --- Endpoints ---
@router.post("/create-order", response_model=SuccessResponse[GatewayOrderResponse])
@limiter.limit("10/minute")
async def create_gateway_order(
    body: GatewayOrderCreate,
    request: Request,
    user: dict = Depends(require_auth),
    gateway: RazorpayClient = Depends(get_gateway)
):
    notes = dict(body.metadata, userId=user["sub"])
    try:
        order = await gateway.create_order(body.amount, body.currency, notes=notes)
    except InvalidAmountError as e:
        raise ValidationException(str(e))
    except GatewayError as e:
        raise GatewayException(str(e))
    return SuccessResponse(data=GatewayOrderResponse(**order))

@router.post("/verify-payment", response_model=SuccessResponse[PaymentVerifyResponse])
@limiter.limit("20/minute")
async def verify_gateway_payment(
    body: PaymentVerify,
    request: Request,
    user: dict = Depends(require_auth),
    gateway: RazorpayClient = Depends(get_gateway)
):
    if not verify_payment_signature(
        body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature, gateway.key_secret
    ):
        logger.warning(f"Payment signature verification failed for {body.razorpay_payment_id}")
        raise ValidationException("Invalid payment signature")

    try:
        payment = await gateway.fetch_payment(body.razorpay_payment_id)
    except GatewayError as e:
        raise GatewayException(str(e))

    details = PaymentDetails(
        id=payment["id"],
        amount=Decimal(payment.get("amount", 0)) / 100,
        status=payment.get("status"),
        method=payment.get("method"),
        email=payment.get("email"),
        contact=payment.get("contact")
    )
    logger.info(f"Payment verified: {details.id} ({details.amount}, {details.status})")
    return SuccessResponse(data=PaymentVerifyResponse(verified=True, payment=details))

@router.post("/webhook", response_model=WebhookAck)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    x_razorpay_event_id: Optional[str] = Header(None),
    events=Depends(get_payment_events),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)
):
    body = await request.body()
    if not x_razorpay_signature:
        raise ValidationException("Missing webhook signature")
    if not verify_webhook_signature(body, x_razorpay_signature):
        raise ValidationException("Invalid webhook signature")

    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationException("Malformed webhook payload")
    if not isinstance(event, dict):
        raise ValidationException("Malformed webhook payload")

    event_type = event.get("event") or ""
    event_id = x_razorpay_event_id or event.get("id")
    if event_id and await events.find_one({"event_id": event_id}):
        return WebhookAck(event=event_type, duplicate=True)

    logger.info(f"Received webhook event: {event_type}")
    payload = event.get("payload") or {}
    if not isinstance(payload, dict):
        raise ValidationException("Malformed webhook payload")
    payment = webhook_entity(payload, "payment")
    order = None

    if event_type in ("payment.authorized", "payment.captured"):
        try:
            order = await orchestrator.finalize_from_webhook(payment.get("order_id"), payment.get("id"))
        except PaymentConflictError as e:
            # A second payment against a paid order needs a manual refund
            logger.error(f"Webhook payment conflict: {e}")
    elif event_type == "payment.failed":
        error = PaymentError(
            code=payment.get("error_code"),
            description=payment.get("error_description"),
            source=payment.get("error_source"),
            step=payment.get("error_step"),
            reason=payment.get("error_reason"),
        )
        order = await orchestrator.record_failure_from_webhook(payment.get("order_id"), error)
    elif event_type == "refund.created":
        refund = webhook_entity(payload, "refund")
        order = await orchestrator.record_refund(refund.get("payment_id"))
    else:
        logger.info(f"Unhandled webhook event: {event_type}")

    if event_id:
        record = PaymentEventDB(
            event_id=event_id,
            event=event_type,
            razorpay_order_id=payment.get("order_id"),
            razorpay_payment_id=payment.get("id"),
            order_id=order.id if order else None
        )
        try:
            await events.insert_one(record.dict(by_alias=True, exclude={"id"}))
        except DuplicateKeyError:
            # A concurrent redelivery recorded the event first
            logger.info(f"Webhook event {event_id} already recorded")
            return WebhookAck(event=event_type, order_id=order.id if order else None, duplicate=True)

    return WebhookAck(event=event_type, order_id=order.id if order else None)
