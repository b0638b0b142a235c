"""
Reconciliation of checkouts that degraded after payment was captured.

The verify-payment saga never rolls back once Paystack has confirmed a
payment. Steps that fail softly leave a ``ReconciliationRecord`` behind and
``repair_open_records`` (run by the Celery beat task) tries to fix them.
"""
import logging
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.db import utcnow
from models.cart_item import CartItem
from models.order import Order
from models.payment import PaymentTransaction
from models.reconciliation import (
    ReconciliationRecord,
    TRANSACTION_NOT_LOGGED,
    CART_NOT_CLEARED,
)
from services import paystack
from services.checkout_errors import CheckoutError

logger = logging.getLogger(__name__)


def record_degradation(
    db: Session,
    *,
    user_id: str,
    reference: str,
    kind: str,
    order_id: Optional[str] = None,
    detail: Optional[str] = None,
) -> Optional[ReconciliationRecord]:
    record = ReconciliationRecord(
        user_id=user_id,
        reference=reference,
        order_id=order_id,
        kind=kind,
        detail=detail,
    )
    try:
        db.add(record)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to persist reconciliation record %s for %s: %s", kind, reference, exc)
        return None
    logger.warning("Checkout %s degraded: %s (order %s)", reference, kind, order_id)
    return record


def _resolve(record: ReconciliationRecord) -> None:
    record.status = "resolved"
    record.resolved_at = utcnow()


def _repair_missing_transaction(db: Session, record: ReconciliationRecord) -> bool:
    order = db.get(Order, record.order_id) if record.order_id else None
    if order is None:
        return False
    if order.payment_transaction_id:
        _resolve(record)
        db.commit()
        return True

    transaction = (
        db.query(PaymentTransaction).filter(PaymentTransaction.reference == record.reference).one_or_none()
    )
    if transaction is None:
        payment = paystack.verify_payment(record.reference)
        transaction = PaymentTransaction(
            user_id=record.user_id,
            amount=payment.amount,
            reference=payment.reference,
            status="success",
            provider="paystack",
            provider_response=payment.payload,
        )
        db.add(transaction)
        db.flush()
    else:
        other = (
            db.query(Order)
            .filter(Order.payment_transaction_id == transaction.id, Order.id != order.id)
            .first()
        )
        if other is not None:
            # One payment, two orders: needs a human to refund or cancel
            record.detail = f"Reference already linked to order {other.id}; duplicate order {order.id}"
            db.commit()
            return False

    order.payment_transaction_id = transaction.id
    _resolve(record)
    db.commit()
    return True


def _repair_cart(db: Session, record: ReconciliationRecord) -> bool:
    order = db.get(Order, record.order_id) if record.order_id else None
    if order is None:
        return False
    # Items added after the order belong to the next checkout
    (
        db.query(CartItem)
        .filter(CartItem.user_id == record.user_id, CartItem.created_at <= order.created_at)
        .delete(synchronize_session=False)
    )
    _resolve(record)
    db.commit()
    return True


_REPAIRS: Dict[str, Callable[[Session, ReconciliationRecord], bool]] = {
    TRANSACTION_NOT_LOGGED: _repair_missing_transaction,
    CART_NOT_CLEARED: _repair_cart,
}


def repair_open_records(db: Session) -> Dict[str, int]:
    """Attempt every open record once. Orders without items are left for manual review."""
    resolved = 0
    still_open = 0
    records = (
        db.query(ReconciliationRecord)
        .filter(ReconciliationRecord.status == "open")
        .order_by(ReconciliationRecord.created_at)
        .all()
    )
    for record in records:
        repair = _REPAIRS.get(record.kind)
        if repair is None:
            still_open += 1
            continue
        try:
            repaired = repair(db, record)
        except (SQLAlchemyError, CheckoutError) as exc:
            db.rollback()
            logger.error("Reconciliation of %s (%s) failed: %s", record.id, record.kind, exc)
            repaired = False
        if repaired:
            resolved += 1
        else:
            still_open += 1
    logger.info("Reconciliation pass: %s resolved, %s still open", resolved, still_open)
    return {"resolved": resolved, "open": still_open}
