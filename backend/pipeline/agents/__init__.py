# Pipeline Agents
# ===============
# Checkout, fulfillment and delivery for the paid calculation

from .checkout_agent import CheckoutInitiator
from .delivery_agent import (
    INotifier,
    LogOnlyNotifier,
    SendGridNotifier,
    build_notifier,
)
from .fulfillment_agent import FulfillmentOrchestrator

__all__ = [
    # Checkout
    "CheckoutInitiator",
    # Fulfillment
    "FulfillmentOrchestrator",
    # Delivery
    "INotifier",
    "LogOnlyNotifier",
    "SendGridNotifier",
    "build_notifier",
]
