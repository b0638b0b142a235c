from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
import redis
import requests
from sqlalchemy import update

from core import config as core_config
from models.cart_item import CartItem
from models.discount import Discount
from models.order import Order
from models.payment import PaymentTransaction
from models.reconciliation import (
    ReconciliationRecord,
    TRANSACTION_NOT_LOGGED,
    ORDER_WITHOUT_ITEMS,
    CART_NOT_CLEARED,
)
from services import paystack
from services.checkout_errors import CheckoutInProgress, ConfigurationError, PaymentVerificationFailed
from services.checkout_lock import checkout_lock, lock_key, redis_client
from services.delivery import DELIVERY_METHODS, delivery_price, list_delivery_methods
from services.discounts import find_active_discount, normalize_code, redeem_discount
from services.reconciliation import record_degradation, repair_open_records


class TestPaystackService:
    """Test cases for the Paystack client"""

    @pytest.mark.parametrize("minor,major", [(24900, "249.00"), (1, "0.01"), (0, "0.00"), ("150050", "1500.50")])
    def test_to_major_units(self, minor, major):
        assert paystack.to_major_units(minor) == Decimal(major)

    def test_verify_payment_success(self, mock_paystack):
        payment = paystack.verify_payment("ref_123")

        assert payment.reference == "ref_123"
        assert payment.amount == Decimal("249.00")
        assert payment.payload["status"] == "success"

    def test_verify_payment_uses_canonical_reference(self, mock_paystack, paystack_payload):
        mock_paystack.return_value.json.return_value = paystack_payload(reference="T123456789")

        payment = paystack.verify_payment("client-ref")

        assert payment.reference == "T123456789"

    def test_verify_payment_declined(self, mock_paystack, paystack_payload):
        mock_paystack.return_value.json.return_value = paystack_payload(status="failed")

        with pytest.raises(PaymentVerificationFailed, match="Transaction not successful"):
            paystack.verify_payment("ref_123")

    def test_verify_payment_unknown_reference(self, mock_paystack):
        mock_paystack.return_value.json.return_value = {"status": False, "message": "Transaction reference not found"}

        with pytest.raises(PaymentVerificationFailed):
            paystack.verify_payment("missing")

    def test_verify_payment_network_error(self, mock_paystack):
        mock_paystack.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(PaymentVerificationFailed, match="connection refused"):
            paystack.verify_payment("ref_123")

    def test_verify_payment_non_json_body(self, mock_paystack):
        mock_paystack.return_value.json.side_effect = ValueError("Expecting value")

        with pytest.raises(PaymentVerificationFailed):
            paystack.verify_payment("ref_123")

    def test_verify_requires_secret(self, mock_paystack, monkeypatch):
        monkeypatch.setattr(core_config.settings, "PAYSTACK_SECRET_KEY", "")

        with pytest.raises(ConfigurationError):
            paystack.verify_transaction("ref_123")
        mock_paystack.assert_not_called()

    def test_verify_transaction_request(self, mock_paystack):
        paystack.verify_transaction("ref_123")

        mock_paystack.assert_called_once_with(
            "https://api.paystack.co/transaction/verify/ref_123",
            headers={"Authorization": "Bearer sk_test_123", "Content-Type": "application/json"},
            timeout=core_config.settings.PAYSTACK_TIMEOUT_SECONDS,
        )


class TestDiscountService:
    """Test cases for discount redemption"""

    def test_normalize_code(self):
        assert normalize_code("  save10 ") == "SAVE10"

    def test_find_active_discount_is_case_insensitive(self, db, discount):
        assert find_active_discount(db, "Save10").id == discount.id

    def test_find_skips_inactive(self, db, discount):
        discount.is_active = False
        db.commit()

        assert find_active_discount(db, "SAVE10") is None

    def test_redeem_increments_once(self, db, discount):
        assert redeem_discount(db, "save10") is True

        db.refresh(discount)
        assert discount.used_count == 4

    def test_redeem_uncapped(self, db):
        code = Discount(code="FREESHIP", type="fixed", value=Decimal("15"), max_uses=None, used_count=500)
        db.add(code)
        db.commit()

        assert redeem_discount(db, "freeship") is True
        db.refresh(code)
        assert code.used_count == 501

    def test_zero_cap_is_a_real_cap(self, db):
        code = Discount(code="NOPE", type="fixed", value=Decimal("5"), max_uses=0)
        db.add(code)
        db.commit()

        assert redeem_discount(db, "NOPE") is False

    def test_redeem_expired(self, db, discount):
        discount.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.commit()

        assert redeem_discount(db, "SAVE10") is False
        db.refresh(discount)
        assert discount.used_count == 3

    def test_redeem_future_expiry(self, db, discount):
        discount.expires_at = datetime.utcnow() + timedelta(days=3)
        db.commit()

        assert redeem_discount(db, "SAVE10") is True

    def test_redeem_unknown_code(self, db):
        assert redeem_discount(db, "WHAT") is False

    def test_redeem_loses_race_for_last_use(self, db, discount):
        discount.used_count = 9
        db.commit()
        # Load the row now so the in-session copy still reads 9
        find_active_discount(db, "SAVE10")
        # A concurrent checkout takes the last use behind this session's back
        db.execute(
            update(Discount)
            .where(Discount.id == discount.id)
            .values(used_count=10)
            .execution_options(synchronize_session=False)
        )
        db.commit()

        assert redeem_discount(db, "SAVE10") is False
        db.refresh(discount)
        assert discount.used_count == 10


class TestCheckoutLock:
    def test_lock_held_for_duration(self):
        key = lock_key("user-1", "ref_1")
        with checkout_lock("user-1", "ref_1"):
            assert redis_client.get(key) is not None
        assert redis_client.get(key) is None

    def test_second_holder_rejected(self):
        with checkout_lock("user-1", "ref_1"):
            with pytest.raises(CheckoutInProgress):
                with checkout_lock("user-1", "ref_1"):
                    pass

    def test_different_references_do_not_conflict(self):
        with checkout_lock("user-1", "ref_1"):
            with checkout_lock("user-1", "ref_2"):
                pass

    def test_released_on_error(self):
        with pytest.raises(RuntimeError):
            with checkout_lock("user-1", "ref_1"):
                raise RuntimeError("boom")
        assert redis_client.get(lock_key("user-1", "ref_1")) is None

    def test_disabled_lock_is_noop(self, monkeypatch):
        monkeypatch.setattr(core_config.settings, "CHECKOUT_LOCK_ENABLED", False)
        with checkout_lock("user-1", "ref_1"):
            assert redis_client.get(lock_key("user-1", "ref_1")) is None

    def test_redis_outage_does_not_block_checkout(self):
        broken = Mock()
        broken.set.side_effect = redis.ConnectionError("down")
        with patch("services.checkout_lock.redis_client", broken):
            with checkout_lock("user-1", "ref_1"):
                pass
        broken.delete.assert_not_called()

    def test_does_not_release_someone_elses_lock(self):
        key = lock_key("user-1", "ref_1")
        with checkout_lock("user-1", "ref_1"):
            # Lock expired and was taken over by another worker
            redis_client.delete(key)
            redis_client.set(key, "other-token", nx=True, ex=60)
        assert redis_client.get(key) == "other-token"


class TestDelivery:
    def test_price_table(self):
        assert delivery_price("same-day") == Decimal("50")
        assert delivery_price("express") == Decimal("30")
        assert delivery_price("normal") == Decimal("15")
        assert delivery_price("teleport") is None

    def test_list_delivery_methods(self):
        methods = list_delivery_methods()
        assert [m["id"] for m in methods] == list(DELIVERY_METHODS)


class TestReconciliation:
    """Test cases for the repair pass over degraded checkouts"""

    @pytest.fixture
    def paid_order(self, db, test_user):
        order = Order(
            user_id=test_user.id,
            order_number="ORD-1700000000000-ABC123",
            status="paid",
            total_amount=Decimal("249.00"),
            shipping_address="12 Oxford Street, Accra",
            created_at=datetime.utcnow() - timedelta(minutes=1),
        )
        db.add(order)
        db.commit()
        return order

    def test_record_degradation(self, db, test_user, paid_order):
        record = record_degradation(
            db, user_id=test_user.id, reference="ref_123", kind=CART_NOT_CLEARED, order_id=paid_order.id
        )

        assert record.status == "open"
        assert db.query(ReconciliationRecord).count() == 1

    def test_missing_transaction_is_relogged(self, db, test_user, paid_order, mock_paystack):
        record_degradation(
            db, user_id=test_user.id, reference="ref_123", kind=TRANSACTION_NOT_LOGGED, order_id=paid_order.id
        )

        assert repair_open_records(db) == {"resolved": 1, "open": 0}

        transaction = db.query(PaymentTransaction).one()
        assert transaction.amount == Decimal("249.00")
        db.refresh(paid_order)
        assert paid_order.payment_transaction_id == transaction.id
        record = db.query(ReconciliationRecord).one()
        assert record.status == "resolved"
        assert record.resolved_at is not None

    def test_existing_transaction_is_linked_without_gateway_call(self, db, test_user, paid_order, mock_paystack):
        transaction = PaymentTransaction(user_id=test_user.id, amount=Decimal("249.00"), reference="ref_123")
        db.add(transaction)
        db.commit()
        record_degradation(
            db, user_id=test_user.id, reference="ref_123", kind=TRANSACTION_NOT_LOGGED, order_id=paid_order.id
        )

        assert repair_open_records(db)["resolved"] == 1
        mock_paystack.assert_not_called()
        db.refresh(paid_order)
        assert paid_order.payment_transaction_id == transaction.id

    def test_duplicate_order_stays_open(self, db, test_user, paid_order, mock_paystack):
        transaction = PaymentTransaction(user_id=test_user.id, amount=Decimal("249.00"), reference="ref_123")
        db.add(transaction)
        db.flush()
        first = Order(
            user_id=test_user.id,
            order_number="ORD-FIRST",
            status="paid",
            shipping_address="x",
            payment_transaction_id=transaction.id,
        )
        db.add(first)
        db.commit()
        record_degradation(
            db, user_id=test_user.id, reference="ref_123", kind=TRANSACTION_NOT_LOGGED, order_id=paid_order.id
        )

        assert repair_open_records(db) == {"resolved": 0, "open": 1}
        record = db.query(ReconciliationRecord).one()
        assert record.status == "open"
        assert first.id in record.detail

    def test_failed_reverification_stays_open(self, db, test_user, paid_order, mock_paystack, paystack_payload):
        mock_paystack.return_value.json.return_value = paystack_payload(status="failed")
        record_degradation(
            db, user_id=test_user.id, reference="ref_123", kind=TRANSACTION_NOT_LOGGED, order_id=paid_order.id
        )

        assert repair_open_records(db) == {"resolved": 0, "open": 1}
        assert db.query(PaymentTransaction).count() == 0

    def test_stale_cart_rows_cleared(self, db, test_user, paid_order, cart, catalog):
        newer = CartItem(
            user_id=test_user.id,
            product_id=catalog["tote"].id,
            quantity=1,
            created_at=datetime.utcnow(),
        )
        db.add(newer)
        db.commit()
        record_degradation(
            db, user_id=test_user.id, reference="ref_123", kind=CART_NOT_CLEARED, order_id=paid_order.id
        )

        assert repair_open_records(db)["resolved"] == 1
        remaining = db.query(CartItem).filter(CartItem.user_id == test_user.id).all()
        assert [item.id for item in remaining] == [newer.id]

    def test_order_without_items_left_for_review(self, db, test_user, paid_order):
        record_degradation(
            db, user_id=test_user.id, reference="ref_123", kind=ORDER_WITHOUT_ITEMS, order_id=paid_order.id
        )

        assert repair_open_records(db) == {"resolved": 0, "open": 1}

    def test_resolved_records_are_skipped(self, db, test_user, paid_order, mock_paystack):
        record = record_degradation(
            db, user_id=test_user.id, reference="ref_123", kind=TRANSACTION_NOT_LOGGED, order_id=paid_order.id
        )
        record.status = "resolved"
        db.commit()

        assert repair_open_records(db) == {"resolved": 0, "open": 0}
        mock_paystack.assert_not_called()

    def test_celery_task_runs_repair_pass(self):
        from tasks.reconciliation_tasks import reconcile_checkouts_task

        session = Mock()
        with patch("tasks.reconciliation_tasks.db_session") as mock_session, \
                patch("tasks.reconciliation_tasks.repair_open_records", return_value={"resolved": 2, "open": 1}) as mock_repair:
            mock_session.return_value.__enter__.return_value = session
            result = reconcile_checkouts_task.run()

        mock_repair.assert_called_once_with(session)
        assert result == {"resolved": 2, "open": 1}
