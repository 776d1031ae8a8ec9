"""
Storefront errors

Business failures raised by the catalog, cart, coupon and order modules.
Each one knows the HTTP status it maps to; main.py renders them with a
single exception handler so route handlers never build error responses.
"""
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class NotFoundError(StorefrontError):
    """Entity absent or owned by someone else. Both cases look the same."""

    status_code = 404
    code = "not_found"

    def __init__(self, entity: str = "Resource"):
        self.entity = entity
        super().__init__(f"{entity} not found")


class InvalidInputError(StorefrontError):
    code = "validation_error"


class BusinessRuleViolation(StorefrontError):
    code = "business_rule_violation"


class EmptyCartError(BusinessRuleViolation):
    code = "empty_cart"

    def __init__(self):
        super().__init__("Cart is empty")


class ProductUnavailableError(BusinessRuleViolation):
    code = "product_unavailable"

    def __init__(self, product_name: str, product_id: Optional[str] = None):
        self.product_name = product_name
        super().__init__(f"Insufficient stock for {product_name}", product_id=product_id)


class InvalidTransitionError(BusinessRuleViolation):
    code = "invalid_transition"

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(
            message or f"Order cannot move from {current} to {target}",
            current_status=current,
        )


class AlreadyInWishlistError(BusinessRuleViolation):
    code = "already_in_wishlist"

    def __init__(self, product_id: str):
        super().__init__("Already in wishlist", product_id=product_id)


class CouponError(BusinessRuleViolation):
    pass


class InvalidCouponError(CouponError):
    code = "invalid_or_expired_coupon"

    def __init__(self, code: str):
        self.coupon_code = code
        super().__init__("Invalid or expired coupon")


class MinPurchaseNotMetError(CouponError):
    code = "min_purchase_not_met"

    def __init__(self, min_purchase: float):
        self.min_purchase = min_purchase
        super().__init__(
            f"Minimum purchase of ₹{min_purchase:g} required", min_purchase=min_purchase
        )


class ConflictError(StorefrontError):
    """Another request won the race for a shared counter."""

    status_code = 409
    code = "conflict"
