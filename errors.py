"""
Error taxonomy

Services raise these; the API layer maps them to HTTP responses.
"""
from typing import Any, Dict, Optional


class StoreError(Exception):
    status_code = 500
    kind = "internal_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "kind": self.kind, **self.details}


class ValidationError(StoreError):
    """Caller input is malformed (missing id, non-positive quantity...)."""

    status_code = 400
    kind = "validation_error"


class NotFoundError(StoreError):
    status_code = 404
    kind = "not_found"


class ConflictError(StoreError):
    """The request is well-formed but the current state forbids it."""

    status_code = 409
    kind = "conflict"


class InternalError(StoreError):
    status_code = 500
    kind = "internal_error"


# ----- Promotion rejections -----

class PromotionRejected(ConflictError):
    kind = "promotion_rejected"

    def __init__(self, message: str, code: Optional[str] = None, **details: Any):
        super().__init__(message, promotion_code=code, **details)


class NotYetActiveError(PromotionRejected):
    status_code = 400
    kind = "promotion_not_yet_active"


class ExpiredError(PromotionRejected):
    status_code = 400
    kind = "promotion_expired"


class QuotaExhaustedError(PromotionRejected):
    status_code = 409
    kind = "promotion_quota_exhausted"


class BelowMinimumError(PromotionRejected):
    status_code = 400
    kind = "promotion_below_minimum"
