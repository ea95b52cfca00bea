# schemas/__init__.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — SCHEMAS
# ============================================================================

from schemas.order_definitions import (
    ArtifactStatus,
    ArtifactStatusResponse,
    CalculationInput,
    CheckoutResult,
    CheckoutSession,
    CheckoutSessionRequest,
    ConfirmationEvent,
    ConfirmationOutcome,
    Lead,
    OrderInput,
    OrderState,
    PaymentDetails,
    PaymentStatus,
    PendingOrder,
)

__all__ = [
    "ArtifactStatus",
    "ArtifactStatusResponse",
    "CalculationInput",
    "CheckoutResult",
    "CheckoutSession",
    "CheckoutSessionRequest",
    "ConfirmationEvent",
    "ConfirmationOutcome",
    "Lead",
    "OrderInput",
    "OrderState",
    "PaymentDetails",
    "PaymentStatus",
    "PendingOrder",
]
