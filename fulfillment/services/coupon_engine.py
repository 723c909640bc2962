# fulfillment/services/coupon_engine.py
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.orm import Session

from fulfillment.data.models.coupon import CouponModel
from fulfillment.domain.errors import (
    CouponExhausted,
    CouponExpired,
    CouponInactive,
    CouponNotYetValid,
    OrderBelowMinimum,
    UserCouponLimitReached,
)
from fulfillment.domain.status import DiscountType
from fulfillment.repos.coupon_repo import CouponRepo
from fulfillment.utils.clock import as_utc
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Rounds to the currency minor unit, half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class CouponEngine:
    """
    Walidacja kuponu wzgledem zamowienia i wyliczenie rabatu.
    validate/compute_discount sa czyste; apply_and_commit zapisuje uzycie.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = CouponRepo(db)

    @staticmethod
    def validate(
        coupon: CouponModel,
        order_subtotal,
        now: datetime,
        user_id: str | None = None,
        user_prior_usage_count: int = 0,
    ) -> CouponModel:
        # order matters: first failing check wins
        if not coupon.is_active:
            raise CouponInactive(f"coupon {coupon.code} is not active")

        now = as_utc(now)
        if now < as_utc(coupon.valid_from):
            raise CouponNotYetValid(f"coupon {coupon.code} is valid from {as_utc(coupon.valid_from).isoformat()}")
        if now > as_utc(coupon.valid_until):
            raise CouponExpired(f"coupon {coupon.code} expired at {as_utc(coupon.valid_until).isoformat()}")

        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise CouponExhausted(f"coupon {coupon.code} reached its usage limit ({coupon.usage_limit})")

        if coupon.user_usage_limit is not None and user_prior_usage_count >= coupon.user_usage_limit:
            raise UserCouponLimitReached(
                f"user {user_id} already used coupon {coupon.code} {user_prior_usage_count} time(s)"
            )

        if coupon.min_order_amount is not None and Decimal(str(order_subtotal)) < Decimal(str(coupon.min_order_amount)):
            raise OrderBelowMinimum(f"coupon {coupon.code} requires a subtotal of at least {coupon.min_order_amount}")

        return coupon

    @staticmethod
    def compute_discount(coupon: CouponModel, order_subtotal) -> Decimal:
        subtotal = Decimal(str(order_subtotal))
        value = Decimal(str(coupon.value))

        if DiscountType(coupon.discount_type) is DiscountType.PERCENTAGE:
            raw = subtotal * (value / Decimal(100))
            if coupon.max_discount_amount is not None:
                raw = min(raw, Decimal(str(coupon.max_discount_amount)))
            # value > 100 without a cap
            raw = min(raw, subtotal)
        else:
            # fixed discount never exceeds the subtotal
            raw = min(value, subtotal)

        return to_money(raw)

    def prior_usage_count(self, coupon: CouponModel, user_id: str) -> int:
        return self.repo.count_user_usages(coupon.id, user_id)

    def apply_and_commit(self, coupon: CouponModel, order_id: str, user_id: str, commit: bool = True) -> bool:
        """
        Counts one use of the coupon for `order_id`.

        Idempotent per order: a second call for the same order is a no-op and
        returns False. With commit=False the caller owns the transaction (order
        creation uses this to insert the order and the usage together).
        """
        if self.repo.has_usage_for_order(coupon.id, order_id):
            logger.info(f"Coupon {coupon.code} already counted for order {order_id}")
            return False

        if self.repo.increment_used_count(coupon.id) == 0:
            raise CouponExhausted(f"coupon {coupon.code} reached its usage limit ({coupon.usage_limit})")

        self.repo.add_usage(coupon.id, order_id, user_id)

        if commit:
            self.db.commit()

        logger.info(f"Coupon {coupon.code} applied to order {order_id}")
        return True
