"""
Discount code redemption.

The usage counter is shared between concurrent checkouts, so the increment is a
single conditional UPDATE that re-checks activity, expiry and the use cap in
its WHERE clause. Two checkouts racing for the last use cannot both win.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from core.db import utcnow
from models.discount import Discount

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def find_active_discount(db: Session, code: str) -> Optional[Discount]:
    return (
        db.query(Discount)
        .filter(Discount.code == normalize_code(code), Discount.is_active.is_(True))
        .one_or_none()
    )


def _increment_if_usable(db: Session, discount_id: str, now: datetime) -> bool:
    stmt = (
        update(Discount)
        .where(
            Discount.id == discount_id,
            Discount.is_active.is_(True),
            or_(Discount.expires_at.is_(None), Discount.expires_at > now),
            or_(Discount.max_uses.is_(None), Discount.used_count < Discount.max_uses),
        )
        .values(used_count=Discount.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def redeem_discount(db: Session, code: str) -> bool:
    """Count one use of ``code``. Returns False when the code cannot be applied."""
    logger.info("Processing discount code: %s", code)
    discount = find_active_discount(db, code)
    if not discount:
        logger.warning("Discount %s not found or inactive", code)
        return False

    now = utcnow()
    expired = discount.is_expired(now)
    limit_reached = discount.is_exhausted()
    if expired or limit_reached:
        logger.warning(
            "Discount %s found but invalid: Expired=%s, LimitReached=%s", code, expired, limit_reached
        )
        return False

    if not _increment_if_usable(db, discount.id, now):
        # Another checkout took the last use between the read and the update
        logger.warning("Discount %s could not be redeemed: use cap reached concurrently", code)
        return False

    logger.info("Discount %s usage incremented", code)
    return True
