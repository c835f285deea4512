"""
Checkout orchestration.

    draft -> order_created -> gateway_opened
          -> payment_success | payment_failed | payment_cancelled
          -> finalized | retry -> gateway_opened

An order is persisted as pending before the gateway is contacted, so a
failure while creating the gateway session leaves a pending order without a
gateway id. Admins can still find and cancel it.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from pydantic import BaseModel

from storefront.shared.security_config import is_valid_email, is_valid_phone
from storefront.shared.utils import settings
from storefront.services.cart.store import CartStore
from storefront.services.checkout.retry import RetryPolicy
from storefront.services.orders.models import (
    OrderDB, OrderStatus, PaymentStatus, CheckoutState,
    ShippingDetails, StatusHistoryEntry, PaymentError
)
from storefront.services.payments.gateway import (
    RazorpayClient, GatewayError, to_minor_units, verify_payment_signature
)

logger = logging.getLogger("storefront.checkout")

ORDER_SOURCE = "TAP_STORYBOOK_PURCHASE"
CONFIRMATION_PATH = "/order-confirmation/{order_id}"
UNPAYABLE_STATUSES = {OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value}


class CheckoutError(Exception):
    pass

class EmptyCartError(CheckoutError):
    pass

class ShippingValidationError(CheckoutError):
    def __init__(self, errors: Dict[str, str]):
        super().__init__("Invalid shipping details")
        self.errors = errors

class OrderNotFoundError(CheckoutError):
    pass

class OrderNotPayableError(CheckoutError):
    pass

class SignatureMismatchError(CheckoutError):
    pass

class PaymentConflictError(CheckoutError):
    pass

class RetryExhaustedError(CheckoutError):
    pass

class SessionCreationError(CheckoutError):
    """The gateway session could not be created; the order stays pending."""

    def __init__(self, message: str, order: OrderDB):
        super().__init__(message)
        self.order = order


class CheckoutSession(BaseModel):
    order: OrderDB
    options: dict
    reused_session: bool = False


def validate_shipping_details(details: ShippingDetails) -> Dict[str, str]:
    errors = {}
    if not details.full_name.strip():
        errors["fullName"] = "Full name is required"
    if not details.email.strip():
        errors["email"] = "Email is required"
    elif not is_valid_email(details.email):
        errors["email"] = "Email is invalid"
    if not details.phone.strip():
        errors["phone"] = "Phone number is required"
    elif not is_valid_phone(details.phone):
        errors["phone"] = "Phone number must be 10 digits"
    if not details.address.strip():
        errors["address"] = "Address is required"
    if not details.city.strip():
        errors["city"] = "City is required"
    if not details.state.strip():
        errors["state"] = "State is required"
    if not details.postal_code.strip():
        errors["postalCode"] = "Postal code is required"
    return errors


class CheckoutOrchestrator:
    def __init__(
        self,
        orders,
        gateway: RazorpayClient,
        retry_policy: Optional[RetryPolicy] = None,
        session_timeout: int = settings.GATEWAY_SESSION_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.orders = orders
        self.gateway = gateway
        self.retry_policy = retry_policy or RetryPolicy()
        self.session_timeout = timedelta(seconds=session_timeout)
        self.clock = clock

    # --- Order creation ---

    async def create_order(self, user_id: str, shipping: ShippingDetails, cart: CartStore) -> OrderDB:
        errors = validate_shipping_details(shipping)
        if errors:
            raise ShippingValidationError(errors)
        if cart.is_empty():
            raise EmptyCartError("Cart is empty")

        now = self.clock()
        order = OrderDB(
            user_id=user_id,
            shipping_details=shipping,
            items=[item.copy(deep=True) for item in cart.items],
            amount=cart.get_total(),
            currency=settings.CURRENCY,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            status_history=[StatusHistoryEntry(status=OrderStatus.PENDING.value, timestamp=now, updated_by=user_id)],
            checkout_state=CheckoutState.ORDER_CREATED.value,
            created_at=now,
            updated_at=now,
        )
        created = await self.orders.insert(order)
        logger.info("Order created", extra={"order_id": created.id, "user_id": user_id})
        return created

    async def create_gateway_session(self, order: OrderDB) -> OrderDB:
        # Raises InvalidAmountError before anything leaves the process
        to_minor_units(order.amount)

        notes = {
            "source": ORDER_SOURCE,
            "orderId": order.id,
            "customerName": order.shipping_details.full_name,
            "customerEmail": order.shipping_details.email,
            "customerPhone": order.shipping_details.phone,
            "orderItems": len(order.items),
        }
        gateway_order = await self.gateway.create_order(order.amount, order.currency, notes=notes)

        now = self.clock()
        updated = await self.orders.update(order.id, {
            "razorpayOrderId": gateway_order["id"],
            "gatewaySessionCreatedAt": now,
            "gatewaySessionExpiresAt": now + self.session_timeout,
        })
        if updated is None:
            raise OrderNotFoundError(f"Order {order.id} not found")
        return updated

    async def start_checkout(self, user_id: str, shipping: ShippingDetails, cart: CartStore) -> CheckoutSession:
        order = await self.create_order(user_id, shipping, cart)
        try:
            order = await self.create_gateway_session(order)
        except GatewayError as e:
            logger.error(f"Gateway session failed: {e}", extra={"order_id": order.id})
            raise SessionCreationError(str(e), order)
        order = await self._open_gateway(order)
        return CheckoutSession(order=order, options=self.checkout_options(order))

    async def _open_gateway(self, order: OrderDB) -> OrderDB:
        updated = await self.orders.update(order.id, {
            "checkoutState": CheckoutState.GATEWAY_OPENED.value,
            "checkoutAttempts": order.checkout_attempts + 1,
        })
        return updated or order

    def session_expired(self, order: OrderDB) -> bool:
        if not order.razorpay_order_id or order.gateway_session_expires_at is None:
            return True
        return self.clock() >= order.gateway_session_expires_at

    def checkout_options(self, order: OrderDB) -> dict:
        """Options for the hosted checkout widget; only the public key id is exposed."""
        remaining = 0
        if order.gateway_session_expires_at is not None:
            remaining = max(0, int((order.gateway_session_expires_at - self.clock()).total_seconds()))
        return {
            "key": self.gateway.key_id,
            "amount": to_minor_units(order.amount),
            "currency": order.currency,
            "name": settings.STORE_NAME,
            "description": settings.STORE_DESCRIPTION,
            "order_id": order.razorpay_order_id,
            "prefill": {
                "name": order.shipping_details.full_name,
                "email": order.shipping_details.email,
                "contact": order.shipping_details.phone,
            },
            "notes": {"orderId": order.id, "orderItems": len(order.items)},
            "theme": {"color": settings.THEME_COLOR},
            "timeout": remaining,
            "modal": {"escape": False, "backdropclose": False},
        }

    # --- Gateway callbacks ---

    async def _get(self, order_id: str) -> OrderDB:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    async def confirm_payment(
        self,
        order_id: str,
        razorpay_payment_id: str,
        razorpay_order_id: str,
        razorpay_signature: str,
        cart: Optional[CartStore] = None
    ) -> Tuple[OrderDB, bool]:
        """
        Verify and finalize a successful payment. Returns the order and whether
        this call was a replay of an already recorded payment.
        """
        order = await self._get(order_id)

        if order.payment_status == PaymentStatus.SUCCESSFUL.value:
            return self._replay_or_conflict(order, razorpay_payment_id), True

        if order.razorpay_order_id != razorpay_order_id or not verify_payment_signature(
            razorpay_order_id, razorpay_payment_id, razorpay_signature, self.gateway.key_secret
        ):
            logger.warning("Payment signature verification failed", extra={"order_id": order_id})
            await self.record_failure(order_id, PaymentError(description="Invalid payment signature"))
            raise SignatureMismatchError("Invalid payment signature")

        order, replayed = await self._finalize(order, razorpay_payment_id, razorpay_signature, "system")
        if cart is not None and not replayed:
            await cart.clear_cart()
        return order, replayed

    async def finalize_from_webhook(self, razorpay_order_id: str, razorpay_payment_id: str) -> Optional[OrderDB]:
        if not razorpay_order_id or not razorpay_payment_id:
            logger.error("Webhook payment event without order or payment id")
            return None
        order = await self.orders.find_by_gateway_order_id(razorpay_order_id)
        if order is None:
            logger.error(f"No matching order found for Razorpay order {razorpay_order_id}")
            return None
        if order.payment_status == PaymentStatus.SUCCESSFUL.value:
            return self._replay_or_conflict(order, razorpay_payment_id)
        order, _ = await self._finalize(order, razorpay_payment_id, None, "webhook")
        return order

    async def _finalize(self, order: OrderDB, payment_id: str, signature: Optional[str],
                        updated_by: str) -> Tuple[OrderDB, bool]:
        now = self.clock()
        fields = {
            "paymentStatus": PaymentStatus.SUCCESSFUL.value,
            "status": OrderStatus.PROCESSING.value,
            "checkoutState": CheckoutState.FINALIZED.value,
            "razorpayPaymentId": payment_id,
            "paidAt": now,
            "paymentError": None,
        }
        if signature:
            fields["razorpaySignature"] = signature
        history = StatusHistoryEntry(status=OrderStatus.PROCESSING.value, timestamp=now, updated_by=updated_by)

        finalized = await self.orders.finalize_payment(order.id, fields, history)
        if finalized is None:
            # Lost a race against another finalization of the same order
            current = await self._get(order.id)
            return self._replay_or_conflict(current, payment_id), True

        logger.info("Payment finalized", extra={"order_id": order.id})
        return finalized, False

    def _replay_or_conflict(self, order: OrderDB, payment_id: str) -> OrderDB:
        if order.razorpay_payment_id == payment_id:
            return order
        raise PaymentConflictError(f"Order {order.id} is already paid")

    async def record_failure(self, order_id: str, error: PaymentError, updated_by: str = "system") -> OrderDB:
        now = self.clock()
        updated = await self.orders.update(
            order_id,
            {
                "status": OrderStatus.PAYMENT_FAILED.value,
                "paymentStatus": PaymentStatus.FAILED.value,
                "checkoutState": CheckoutState.PAYMENT_FAILED.value,
                "paymentError": error.dict(),
            },
            StatusHistoryEntry(status=OrderStatus.PAYMENT_FAILED.value, timestamp=now, updated_by=updated_by),
            guard={"paymentStatus": {"$ne": PaymentStatus.SUCCESSFUL.value}}
        )
        if updated is None:
            # Already paid (or gone); a late failure event must not undo it
            return await self._get(order_id)
        logger.warning(f"Payment failed: {error.description}", extra={"order_id": order_id})
        return updated

    async def record_failure_from_webhook(self, razorpay_order_id: str, error: PaymentError) -> Optional[OrderDB]:
        if not razorpay_order_id:
            logger.error("Webhook failure event without order id")
            return None
        order = await self.orders.find_by_gateway_order_id(razorpay_order_id)
        if order is None:
            logger.error(f"No matching order found for Razorpay order {razorpay_order_id}")
            return None
        return await self.record_failure(order.id, error, updated_by="webhook")

    async def record_refund(self, razorpay_payment_id: str) -> Optional[OrderDB]:
        if not razorpay_payment_id:
            logger.error("Refund event without payment id")
            return None
        found = await self.orders.list({"razorpayPaymentId": razorpay_payment_id})
        if not found:
            logger.error(f"No matching order found for Razorpay payment {razorpay_payment_id}")
            return None
        order = found[0]
        return await self.orders.update(
            order.id,
            {"status": OrderStatus.REFUNDED.value},
            StatusHistoryEntry(status=OrderStatus.REFUNDED.value, timestamp=self.clock(), updated_by="webhook")
        )

    async def record_dismissal(self, order_id: str) -> Tuple[OrderDB, bool, float]:
        order = await self._get(order_id)
        if order.payment_status == PaymentStatus.SUCCESSFUL.value:
            return order, False, 0.0
        updated = await self.orders.update(order_id, {"checkoutState": CheckoutState.PAYMENT_CANCELLED.value})
        order = updated or order
        logger.info("Payment dismissed by user", extra={"order_id": order_id})
        can_retry = self._payable(order) and self.retry_policy.can_retry(order.checkout_attempts)
        return order, can_retry, self.retry_policy.delay_for(order.checkout_attempts)

    # --- Retry ---

    def _payable(self, order: OrderDB) -> bool:
        return (order.payment_status != PaymentStatus.SUCCESSFUL.value
                and order.status not in UNPAYABLE_STATUSES)

    async def retry(self, order_id: str) -> CheckoutSession:
        order = await self._get(order_id)
        if not self._payable(order):
            raise OrderNotPayableError(f"Order {order_id} cannot be paid (status {order.status})")
        if not self.retry_policy.can_retry(order.checkout_attempts):
            raise RetryExhaustedError(
                f"Payment attempts exhausted ({order.checkout_attempts}/{self.retry_policy.max_attempts})"
            )

        reused = not self.session_expired(order)
        if not reused:
            logger.info("Gateway session expired, creating a new one", extra={"order_id": order_id})
            try:
                order = await self.create_gateway_session(order)
            except GatewayError as e:
                raise SessionCreationError(str(e), order)

        if order.status == OrderStatus.PAYMENT_FAILED.value:
            order = await self.orders.update(
                order.id,
                {"status": OrderStatus.PENDING.value, "paymentStatus": PaymentStatus.PENDING.value},
                StatusHistoryEntry(status=OrderStatus.PENDING.value, timestamp=self.clock(), updated_by=order.user_id)
            ) or order

        await self.orders.update(order.id, {"checkoutState": CheckoutState.RETRY.value})
        order = await self._open_gateway(order)
        return CheckoutSession(order=order, options=self.checkout_options(order), reused_session=reused)
