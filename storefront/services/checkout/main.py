from fastapi import APIRouter, Depends, Request

from storefront.shared.utils import (
    require_auth, SuccessResponse, ValidationException, NotFoundException,
    ConflictException, GatewayException
)
from storefront.shared.security_config import limiter
from storefront.services.cart.store import CartStore
from storefront.services.cart.main import get_cart_store
from storefront.services.orders.main import get_order_repository, load_owned_order
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.schemas import OrderResponse
from storefront.services.payments.gateway import RazorpayClient, InvalidAmountError, get_gateway
from storefront.services.checkout.orchestrator import (
    CheckoutOrchestrator, CheckoutSession, CONFIRMATION_PATH,
    EmptyCartError, ShippingValidationError, OrderNotFoundError, OrderNotPayableError,
    SignatureMismatchError, PaymentConflictError, RetryExhaustedError, SessionCreationError
)
from storefront.services.checkout.schemas import (
    CheckoutRequest, PaymentSuccess, PaymentFailure,
    CheckoutSessionResponse, ConfirmationResponse, DismissResponse
)

router = APIRouter(prefix="/checkout", tags=["checkout"])

# --- Dependencies ---
def get_orchestrator(
    orders: OrderRepository = Depends(get_order_repository),
    gateway: RazorpayClient = Depends(get_gateway)
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(orders, gateway)

def session_response(session: CheckoutSession) -> CheckoutSessionResponse:
    return CheckoutSessionResponse(
        order=OrderResponse.from_order(session.order),
        checkout_options=session.options,
        reused_session=session.reused_session
    )

def session_failed(e: SessionCreationError) -> GatewayException:
    # The pending order is kept; the client retries against its id
    return GatewayException({"message": str(e), "orderId": e.order.id})

# --- Endpoints ---
@router.post("", response_model=SuccessResponse[CheckoutSessionResponse])
@limiter.limit("10/minute")
async def start_checkout(
    checkout: CheckoutRequest,
    request: Request,
    user: dict = Depends(require_auth),
    cart: CartStore = Depends(get_cart_store),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)
):
    try:
        session = await orchestrator.start_checkout(user["sub"], checkout.shipping_details.to_details(), cart)
    except ShippingValidationError as e:
        raise ValidationException({"message": str(e), "errors": e.errors})
    except (EmptyCartError, InvalidAmountError) as e:
        raise ValidationException(str(e))
    except SessionCreationError as e:
        raise session_failed(e)
    return SuccessResponse(data=session_response(session), message="Order created")

@router.post("/{order_id}/verify", response_model=SuccessResponse[ConfirmationResponse])
@limiter.limit("20/minute")
async def verify_payment(
    order_id: str,
    payment: PaymentSuccess,
    request: Request,
    user: dict = Depends(require_auth),
    cart: CartStore = Depends(get_cart_store),
    orders: OrderRepository = Depends(get_order_repository),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)
):
    owned = await load_owned_order(order_id, user, orders)
    try:
        order, replayed = await orchestrator.confirm_payment(
            order_id,
            payment.razorpay_payment_id,
            payment.razorpay_order_id,
            payment.razorpay_signature,
            cart=cart if owned.user_id == user["sub"] else None
        )
    except SignatureMismatchError as e:
        raise ValidationException(str(e))
    except PaymentConflictError as e:
        raise ConflictException(str(e))
    except OrderNotFoundError as e:
        raise NotFoundException(str(e))

    return SuccessResponse(
        data=ConfirmationResponse(
            order=OrderResponse.from_order(order),
            confirmation_path=CONFIRMATION_PATH.format(order_id=order.id),
            replayed=replayed
        ),
        message="Payment already recorded" if replayed else "Payment successful"
    )

@router.post("/{order_id}/failure", response_model=SuccessResponse[OrderResponse])
async def payment_failed(
    order_id: str,
    failure: PaymentFailure,
    user: dict = Depends(require_auth),
    orders: OrderRepository = Depends(get_order_repository),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)
):
    await load_owned_order(order_id, user, orders)
    order = await orchestrator.record_failure(order_id, failure.to_error(), updated_by=user["sub"])
    message = failure.description or "Payment failed. Please try again."
    return SuccessResponse(data=OrderResponse.from_order(order), message=message)

@router.post("/{order_id}/dismiss", response_model=SuccessResponse[DismissResponse])
async def payment_dismissed(
    order_id: str,
    user: dict = Depends(require_auth),
    orders: OrderRepository = Depends(get_order_repository),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)
):
    await load_owned_order(order_id, user, orders)
    order, can_retry, delay = await orchestrator.record_dismissal(order_id)
    return SuccessResponse(data=DismissResponse(
        order=OrderResponse.from_order(order),
        can_retry=can_retry,
        attempts_remaining=orchestrator.retry_policy.remaining(order.checkout_attempts),
        retry_after_seconds=delay
    ))

@router.post("/{order_id}/retry", response_model=SuccessResponse[CheckoutSessionResponse])
@limiter.limit("10/minute")
async def retry_payment(
    order_id: str,
    request: Request,
    user: dict = Depends(require_auth),
    orders: OrderRepository = Depends(get_order_repository),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)
):
    await load_owned_order(order_id, user, orders)
    try:
        session = await orchestrator.retry(order_id)
    except (OrderNotPayableError, RetryExhaustedError) as e:
        raise ConflictException(str(e))
    except InvalidAmountError as e:
        raise ValidationException(str(e))
    except SessionCreationError as e:
        raise session_failed(e)
    return SuccessResponse(data=session_response(session))
