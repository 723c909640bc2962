# import wszystkich modeli zeby SQLAlchemy je zarejestrowal w Base.metadata

from fulfillment.data.models.order import OrderModel
from fulfillment.data.models.order_history import OrderHistoryModel
from fulfillment.data.models.order_event import OrderEventModel
from fulfillment.data.models.coupon import CouponModel
from fulfillment.data.models.coupon_usage import CouponUsageModel

__all__ = ["OrderModel", "OrderHistoryModel", "OrderEventModel", "CouponModel", "CouponUsageModel"]
