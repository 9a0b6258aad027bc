class BillingError(Exception):
    code = "BILLING_ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        if code:
            self.code = code

    def audit_message(self) -> str:
        return f"{self.code}: {self}"[:1000]


class DecodeError(BillingError):
    code = "INVALID_PAYLOAD"


class BusinessRejection(BillingError):
    """Valid envelope the state machine refuses to apply (unknown product, missing subscription)."""

    code = "BUSINESS_REJECTION"


class ConcurrentUpdateError(BillingError):
    code = "CONCURRENT_UPDATE"
