# fulfillment/repos/coupon_repo.py
from sqlalchemy import select, update, func, or_
from sqlalchemy.orm import Session

from fulfillment.data.models.coupon import CouponModel
from fulfillment.data.models.coupon_usage import CouponUsageModel
from fulfillment.utils.clock import utcnow


class CouponRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, coupon_id: int) -> CouponModel | None:
        return self.db.get(CouponModel, coupon_id)

    def get_by_code(self, code: str) -> CouponModel | None:
        # codes are case-insensitive, stored upper-case
        return self.db.execute(
            select(CouponModel)
            .where(CouponModel.code == code.strip().upper())
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def create_coupon(self, coupon: CouponModel) -> CouponModel:
        coupon.code = coupon.code.strip().upper()
        self.db.add(coupon)
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def count_user_usages(self, coupon_id: int, user_id: str) -> int:
        return self.db.execute(
            select(func.count())
            .select_from(CouponUsageModel)
            .where(CouponUsageModel.coupon_id == coupon_id, CouponUsageModel.user_id == user_id)
        ).scalar_one()

    def has_usage_for_order(self, coupon_id: int, order_id: str) -> bool:
        return self.db.execute(
            select(CouponUsageModel.id).where(
                CouponUsageModel.coupon_id == coupon_id,
                CouponUsageModel.order_id == order_id,
            )
        ).first() is not None

    def add_usage(self, coupon_id: int, order_id: str, user_id: str) -> CouponUsageModel:
        usage = CouponUsageModel(coupon_id=coupon_id, order_id=order_id, user_id=user_id)
        self.db.add(usage)
        return usage

    def increment_used_count(self, coupon_id: int) -> int:
        """Atomic `used_count + 1`, refused once the usage limit is reached."""
        result = self.db.execute(
            update(CouponModel)
            .where(
                CouponModel.id == coupon_id,
                or_(CouponModel.usage_limit.is_(None), CouponModel.used_count < CouponModel.usage_limit),
            )
            .values(used_count=CouponModel.used_count + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
