# fulfillment/domain/errors.py


class FulfillmentError(Exception):
    """Base for every business and store error raised by the fulfillment core."""

    code = "fulfillment_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFound(FulfillmentError):
    code = "not_found"

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} {key} not found")
        self.kind = kind
        self.key = key


class IllegalTransition(FulfillmentError):
    code = "illegal_transition"

    def __init__(self, current: str, target: str, allowed=()):
        allowed_txt = ", ".join(sorted(allowed)) or "none"
        super().__init__(
            f"cannot move order from '{current}' to '{target}' (allowed: {allowed_txt})"
        )
        self.current = current
        self.target = target
        self.allowed = frozenset(allowed)


class ConcurrentModification(FulfillmentError):
    code = "concurrent_modification"


# coupons


class CouponError(FulfillmentError):
    code = "coupon_error"


class CouponInactive(CouponError):
    code = "coupon_inactive"


class CouponExpired(CouponError):
    code = "coupon_expired"


class CouponNotYetValid(CouponError):
    code = "coupon_not_yet_valid"


class CouponExhausted(CouponError):
    code = "coupon_exhausted"


class UserCouponLimitReached(CouponError):
    code = "user_coupon_limit_reached"


class OrderBelowMinimum(CouponError):
    code = "order_below_minimum"


# store / batches


class StoreUnavailable(FulfillmentError):
    code = "store_unavailable"


class PartialBatchFailure(FulfillmentError):
    """Some ids of a bulk operation failed; ``result`` holds the per-id breakdown."""

    code = "partial_batch_failure"

    def __init__(self, result, failed_count: int):
        super().__init__(f"{failed_count} item(s) of the batch failed")
        self.result = result
        self.failed_count = failed_count
