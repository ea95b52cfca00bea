"""
Checkout Agent
==============
Opens a payment session for a calculation request.

Flow:
1. Mint a correlation id (uuid4)
2. Ask the processor for a checkout session, echoing the id as external reference
3. Store the pending order BEFORE answering the caller

If step 3 fails the whole checkout fails; the processor session is left
behind and any confirmation for it resolves to nothing.

pip install pydantic structlog
"""

import uuid
from decimal import Decimal

import structlog

from pipeline.errors import PaymentSessionError
from pipeline.processors import PaymentProcessor
from schemas.order_definitions import CheckoutResult, CheckoutSessionRequest, OrderInput
from storage.repositories import IPendingOrderStore

logger = structlog.get_logger(component="checkout_agent")


class CheckoutInitiator:
    """
    Example:
        initiator = CheckoutInitiator(processor, pending_orders, site_url=..., webhook_url=...)
        result = await initiator.start_checkout(order_input)
        # browser goes to result.redirect_url, then polls /status/{result.session_id}
    """

    def __init__(
        self,
        processor: PaymentProcessor,
        pending_orders: IPendingOrderStore,
        site_url: str,
        webhook_url: str,
        product_title: str = "Cálculo de Rescisão Trabalhista Detalhado",
        product_price: Decimal = Decimal("29.90"),
        product_currency: str = "BRL",
    ):
        self.processor = processor
        self.pending_orders = pending_orders
        self.site_url = site_url.rstrip("/")
        self.webhook_url = webhook_url
        self.product_title = product_title
        self.product_price = product_price
        self.product_currency = product_currency

    def _session_request(self, correlation_id: str, order: OrderInput) -> CheckoutSessionRequest:
        return CheckoutSessionRequest(
            correlation_id=correlation_id,
            title=self.product_title,
            unit_price=self.product_price,
            currency=self.product_currency,
            payer_email=order.email,
            payer_name=order.display_name,
            success_url=f"{self.site_url}?status=approved",
            failure_url=f"{self.site_url}?status=failure",
            pending_url=f"{self.site_url}?status=pending",
            notification_url=self.webhook_url,
        )

    async def start_checkout(self, order: OrderInput) -> CheckoutResult:
        correlation_id = str(uuid.uuid4())
        log = logger.bind(correlation_id=correlation_id, processor=self.processor.name)
        log.info("checkout_initiated")

        try:
            session = await self.processor.create_session(
                self._session_request(correlation_id, order)
            )
        except PaymentSessionError as e:
            log.error("checkout_session_failed", error=str(e))
            raise
        except Exception as e:
            log.error("checkout_session_failed", error=str(e), error_type=type(e).__name__)
            raise PaymentSessionError(f"Unexpected processor failure: {type(e).__name__}") from e

        try:
            await self.pending_orders.put(correlation_id, session.session_id, order)
        except Exception as e:
            log.error("pending_order_write_failed", session_id=session.session_id, error=str(e))
            raise

        log.info("checkout_created", session_id=session.session_id)
        return CheckoutResult(
            redirect_url=session.redirect_url,
            sandbox_redirect_url=session.sandbox_redirect_url,
            session_id=session.session_id,
            correlation_id=correlation_id,
        )
