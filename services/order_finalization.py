"""
Order finalization: turn a Paystack-verified payment into a paid order.

The saga runs its steps in a fixed order and commits each write on its own.
Once the gateway has confirmed the payment nothing is rolled back: secondary
writes (discount usage, transaction log, cart clearing) degrade softly and
leave a reconciliation record, while the order and its items are the only
hard failures.

A reference is not deduplicated by default: submitting it twice yields two
paid orders. Only the first gets a payment_transactions row, because that
table's reference is unique; the second order is left with a null
transaction link and a transaction_not_logged record. Set
IDEMPOTENT_REFERENCES to return the existing order instead.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from core.config import settings
from models.cart_item import CartItem
from models.order import Order
from models.order_item import OrderItem
from models.payment import PaymentTransaction
from models.shipping_address import ShippingAddress
from models.reconciliation import TRANSACTION_NOT_LOGGED, ORDER_WITHOUT_ITEMS, CART_NOT_CLEARED
from models.user import User
from schemas.payment import PaymentVerificationRequest
from services import paystack
from services.checkout_errors import InvalidRequest, OrderCreationFailed
from services.checkout_lock import checkout_lock
from services.delivery import delivery_price
from services.discounts import redeem_discount
from services.reconciliation import record_degradation

logger = logging.getLogger(__name__)

ADDRESS_NOT_FOUND = "Address not found"
PAYMENT_METHOD = "Paystack"


class StepState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    SKIPPED_DEGRADED = "skipped_degraded"


SAGA_STEPS = (
    "verify_payment",
    "apply_discount",
    "log_transaction",
    "load_cart",
    "resolve_address",
    "create_order",
    "create_items",
    "clear_cart",
)


@dataclass
class FinalizationResult:
    order_id: str
    order_number: str
    steps: Dict[str, StepState] = field(default_factory=dict)
    duplicate: bool = False


def _to_decimal(value: float | int | Decimal | None) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def generate_order_number() -> str:
    # Millisecond timestamp keeps numbers sortable, the suffix keeps them unique
    return f"ORD-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6].upper()}"


def validate_request(request: PaymentVerificationRequest) -> None:
    if not request.reference or not request.delivery_method_id or not request.address_id:
        raise InvalidRequest("Missing required fields: reference, deliveryMethodId, or addressId")


def find_existing_order(db: Session, user_id: str, reference: str) -> Optional[Order]:
    return (
        db.query(Order)
        .join(PaymentTransaction, Order.payment_transaction_id == PaymentTransaction.id)
        .filter(PaymentTransaction.reference == reference, Order.user_id == user_id)
        .order_by(Order.created_at)
        .first()
    )


def finalize_order(db: Session, user: User, request: PaymentVerificationRequest) -> FinalizationResult:
    """Verify ``request.reference`` with Paystack and create the paid order for ``user``."""
    validate_request(request)
    with checkout_lock(user.id, request.reference):
        if settings.IDEMPOTENT_REFERENCES:
            existing = find_existing_order(db, user.id, request.reference)
            if existing is not None:
                logger.info("Reference %s already produced order %s", request.reference, existing.id)
                return FinalizationResult(existing.id, existing.order_number, duplicate=True)
        return _run_saga(db, user, request)


def _run_saga(db: Session, user: User, request: PaymentVerificationRequest) -> FinalizationResult:
    steps = {name: StepState.PENDING for name in SAGA_STEPS}

    payment = paystack.verify_payment(request.reference)
    steps["verify_payment"] = StepState.COMMITTED

    if request.discount_code:
        steps["apply_discount"] = _apply_discount(db, request.discount_code)
    else:
        steps["apply_discount"] = StepState.COMMITTED

    transaction = _log_transaction(db, user, payment)
    steps["log_transaction"] = StepState.COMMITTED if transaction else StepState.SKIPPED_DEGRADED

    cart_items = _load_cart(db, user)
    steps["load_cart"] = StepState.COMMITTED if cart_items else StepState.SKIPPED_DEGRADED

    address_string = _resolve_address(db, user, request.address_id)
    steps["resolve_address"] = StepState.COMMITTED if address_string else StepState.SKIPPED_DEGRADED

    if delivery_price(request.delivery_method_id) is None:
        logger.warning("Unknown delivery method %s for reference %s", request.delivery_method_id, payment.reference)

    order = _create_order(db, user, request, payment, transaction, cart_items, address_string or ADDRESS_NOT_FOUND)
    steps["create_order"] = StepState.COMMITTED
    logger.info("Order %s (%s) created for user %s", order.id, order.order_number, user.id)

    if transaction is None:
        record_degradation(
            db, user_id=user.id, reference=payment.reference, kind=TRANSACTION_NOT_LOGGED, order_id=order.id
        )

    if cart_items:
        _create_items(db, user, payment.reference, order, cart_items)
        steps["create_items"] = StepState.COMMITTED
        steps["clear_cart"] = _clear_cart(db, user, payment.reference, order)
    else:
        record_degradation(
            db,
            user_id=user.id,
            reference=payment.reference,
            kind=ORDER_WITHOUT_ITEMS,
            order_id=order.id,
            detail="Cart was empty or unreadable at checkout",
        )
        steps["create_items"] = StepState.SKIPPED_DEGRADED
        steps["clear_cart"] = StepState.SKIPPED_DEGRADED

    logger.info("Checkout %s finished: %s", payment.reference, {k: v.value for k, v in steps.items()})
    return FinalizationResult(order.id, order.order_number, steps)


def _apply_discount(db: Session, code: str) -> StepState:
    try:
        applied = redeem_discount(db, code)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error applying discount %s: %s", code, exc)
        applied = False
    return StepState.COMMITTED if applied else StepState.SKIPPED_DEGRADED


def _log_transaction(db: Session, user: User, payment: paystack.VerifiedPayment) -> Optional[PaymentTransaction]:
    transaction = PaymentTransaction(
        user_id=user.id,
        amount=payment.amount,
        reference=payment.reference,
        status="success",
        provider="paystack",
        provider_response=payment.payload,
    )
    try:
        db.add(transaction)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        # The order is still created, just without a transaction link
        logger.error("Error logging transaction %s: %s", payment.reference, exc)
        return None
    return transaction


def _load_cart(db: Session, user: User) -> List[CartItem]:
    try:
        items = (
            db.query(CartItem)
            .options(joinedload(CartItem.product), joinedload(CartItem.variant))
            .filter(CartItem.user_id == user.id)
            .order_by(CartItem.created_at)
            .all()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error loading cart for user %s: %s", user.id, exc)
        return []
    if not items:
        logger.warning("Cart empty for user: %s", user.id)
    return items


def _resolve_address(db: Session, user: User, address_id: str) -> Optional[str]:
    """Display string of the caller's address, or None when it cannot be read."""
    try:
        address = (
            db.query(ShippingAddress)
            .filter(ShippingAddress.id == address_id, ShippingAddress.user_id == user.id)
            .one_or_none()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error loading address %s: %s", address_id, exc)
        address = None
    if address is None:
        logger.warning("Address %s not found for user %s", address_id, user.id)
        return None
    return address.display()


def _create_order(
    db: Session,
    user: User,
    request: PaymentVerificationRequest,
    payment: paystack.VerifiedPayment,
    transaction: Optional[PaymentTransaction],
    cart_items: List[CartItem],
    address_string: str,
) -> Order:
    order = Order(
        user_id=user.id,
        order_number=generate_order_number(),
        status="paid",
        # The gateway amount is authoritative, never the recomputed cart total
        total_amount=payment.amount,
        # Submitted id is kept even when it did not resolve to one of the caller's addresses
        shipping_address_id=request.address_id,
        shipping_address=address_string,
        payment_method=PAYMENT_METHOD,
        delivery_method=request.delivery_method_id,
        items_count=sum(item.quantity for item in cart_items),
        payment_transaction_id=transaction.id if transaction else None,
        discount_code=request.discount_code,
    )
    try:
        db.add(order)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error creating order for reference %s: %s", payment.reference, exc)
        raise OrderCreationFailed(f"Order creation failed: {exc}") from exc
    return order


def build_order_items(order: Order, cart_items: List[CartItem]) -> List[OrderItem]:
    items: List[OrderItem] = []
    for cart_item in cart_items:
        unit_price = _to_decimal(cart_item.product.price)
        variant = cart_item.variant
        if variant is not None:
            unit_price += _to_decimal(variant.price_impact)
        items.append(
            OrderItem(
                order_id=order.id,
                product_id=cart_item.product_id,
                variant_id=cart_item.variant_id,
                variant_name=variant.label if variant is not None else None,
                product_name=cart_item.product.name,
                quantity=cart_item.quantity,
                price=unit_price,
            )
        )
    return items


def _create_items(db: Session, user: User, reference: str, order: Order, cart_items: List[CartItem]) -> None:
    try:
        db.add_all(build_order_items(order, cart_items))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error creating items for order %s: %s", order.id, exc)
        # No compensating delete: the paid order stays and is flagged for review
        record_degradation(
            db, user_id=user.id, reference=reference, kind=ORDER_WITHOUT_ITEMS, order_id=order.id, detail=str(exc)
        )
        raise OrderCreationFailed(f"Order item creation failed: {exc}") from exc


def delete_cart_rows(db: Session, user_id: str) -> int:
    deleted = db.query(CartItem).filter(CartItem.user_id == user_id).delete(synchronize_session=False)
    db.commit()
    return deleted


def _clear_cart(db: Session, user: User, reference: str, order: Order) -> StepState:
    try:
        delete_cart_rows(db, user.id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Error clearing cart for user %s: %s", user.id, exc)
        record_degradation(
            db, user_id=user.id, reference=reference, kind=CART_NOT_CLEARED, order_id=order.id, detail=str(exc)
        )
        return StepState.SKIPPED_DEGRADED
    return StepState.COMMITTED
