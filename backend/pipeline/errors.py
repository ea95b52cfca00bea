"""
Pipeline error taxonomy.

Checkout and query paths surface these to the HTTP caller; the confirmation
path only ever reports a generic failure status to the payment processor.
"""

from typing import Optional


class FulfillmentError(Exception):
    """Base class for every error raised by the checkout/fulfillment pipeline."""


class ConfigurationError(FulfillmentError):
    """A required setting or credential is missing. Startup-time only."""


class PaymentSessionError(FulfillmentError):
    """The processor rejected, timed out or garbled a checkout session request."""

    retryable = True


class PaymentStatusError(FulfillmentError):
    """Fetching a payment's status failed while handling a confirmation."""


class InvalidNotification(FulfillmentError):
    """An inbound processor notification failed signature or body checks."""


class UnresolvedConfirmation(FulfillmentError):
    """A confirmation's correlation id matches no pending order."""

    def __init__(self, correlation_id: str, reason: str = "not_found"):
        self.correlation_id = correlation_id
        self.reason = reason
        super().__init__(f"Unresolved confirmation for {correlation_id}: {reason}")


class FulfillmentStepFailure(FulfillmentError):
    """A blocking fulfillment step (render or persist) failed."""

    def __init__(self, step: str, cause: Optional[BaseException] = None):
        self.step = step
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause else "unknown error"
        super().__init__(f"Fulfillment step '{step}' failed ({detail})")


class NotFoundError(FulfillmentError):
    """Status or download requested for an unknown session id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Unknown session: {session_id}")
