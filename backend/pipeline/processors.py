"""
Payment processor adapters.

One small contract (open a checkout session, look up a payment, parse an
inbound notification) with two implementations:

- MercadoPagoProcessor: Checkout Pro preferences over the REST API (httpx)
- StripeProcessor: Checkout Sessions through the stripe SDK

Every remote failure is re-raised as PaymentSessionError (session creation)
or PaymentStatusError (payment lookup) so callers never see transport types.

pip install httpx stripe structlog
"""

import asyncio
import json
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

import httpx
import stripe
import structlog

from pipeline.errors import (
    ConfigurationError,
    InvalidNotification,
    PaymentSessionError,
    PaymentStatusError,
)
from schemas.order_definitions import (
    CheckoutSession,
    CheckoutSessionRequest,
    ConfirmationEvent,
    PaymentDetails,
    PaymentStatus,
)

logger = structlog.get_logger(component="processor")


class PaymentProcessor(ABC):
    """External payment processor, seen only through this contract."""

    name: str = "abstract"

    @abstractmethod
    async def create_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        pass

    @abstractmethod
    async def get_payment(self, payment_id: str) -> PaymentDetails:
        pass

    @abstractmethod
    def parse_notification(
        self,
        body: bytes,
        query: Mapping[str, str],
        headers: Mapping[str, str],
    ) -> ConfirmationEvent:
        """Normalize an inbound webhook. Raises InvalidNotification."""
        pass

    async def close(self) -> None:
        pass


# =============================================================================
# MERCADO PAGO
# =============================================================================

MP_STATUS_MAP = {
    "approved": PaymentStatus.APPROVED,
    "pending": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PENDING,
    "authorized": PaymentStatus.PENDING,
    "in_mediation": PaymentStatus.PENDING,
    "rejected": PaymentStatus.REJECTED,
    "cancelled": PaymentStatus.REJECTED,
}


def _json_body(body: bytes) -> Optional[dict]:
    if not body or not body.strip():
        return None
    try:
        parsed = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidNotification(f"Notification body is not JSON: {e}")
    if not isinstance(parsed, dict):
        raise InvalidNotification("Notification body must be a JSON object")
    return parsed


class MercadoPagoProcessor(PaymentProcessor):
    """
    Checkout Pro over the public REST API.

    Example:
        processor = MercadoPagoProcessor(access_token="APP_USR-...")
        session = await processor.create_session(request)
        # redirect the buyer to session.redirect_url
    """

    name = "mercadopago"

    def __init__(
        self,
        access_token: str,
        api_url: str = "https://api.mercadopago.com",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not access_token:
            raise ConfigurationError("MERCADOPAGO_ACCESS_TOKEN is not configured")
        self._client = httpx.AsyncClient(
            base_url=api_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def create_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        payload = {
            "items": [{
                "title": request.title,
                "quantity": 1,
                "currency_id": request.currency,
                "unit_price": float(request.unit_price),
            }],
            "payer": {
                "email": request.payer_email,
                "name": request.payer_name,
            },
            "back_urls": {
                "success": request.success_url,
                "failure": request.failure_url,
                "pending": request.pending_url,
            },
            "auto_return": "approved",
            "notification_url": request.notification_url,
            "external_reference": request.correlation_id,
        }
        try:
            response = await self._client.post(
                "/checkout/preferences",
                json=payload,
                headers={"X-Idempotency-Key": request.correlation_id},
            )
            response.raise_for_status()
            data = response.json()
            return CheckoutSession(
                session_id=str(data["id"]),
                redirect_url=data["init_point"],
                sandbox_redirect_url=data.get("sandbox_init_point") or data["init_point"],
            )
        except httpx.TimeoutException as e:
            raise PaymentSessionError("Timed out creating MercadoPago preference") from e
        except httpx.HTTPStatusError as e:
            raise PaymentSessionError(
                f"MercadoPago rejected preference (HTTP {e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            raise PaymentSessionError(f"MercadoPago unreachable: {type(e).__name__}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise PaymentSessionError("Malformed MercadoPago preference response") from e

    async def get_payment(self, payment_id: str) -> PaymentDetails:
        try:
            response = await self._client.get(f"/v1/payments/{payment_id}")
            response.raise_for_status()
            data = response.json()
            raw_status = data.get("status")
        except httpx.HTTPStatusError as e:
            raise PaymentStatusError(
                f"MercadoPago payment lookup failed (HTTP {e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            raise PaymentStatusError(f"MercadoPago unreachable: {type(e).__name__}") from e
        except (AttributeError, ValueError) as e:
            raise PaymentStatusError("Malformed MercadoPago payment response") from e

        return PaymentDetails(
            payment_id=str(data.get("id", payment_id)),
            status=MP_STATUS_MAP.get(raw_status, PaymentStatus.OTHER),
            raw_status=raw_status,
            external_reference=data.get("external_reference") or None,
        )

    def parse_notification(
        self,
        body: bytes,
        query: Mapping[str, str],
        headers: Mapping[str, str],
    ) -> ConfirmationEvent:
        data = _json_body(body) or {}

        # Webhooks: {"type": "payment", "data": {"id": "123"}}
        if "type" in data or "data" in data:
            inner = data.get("data") if isinstance(data.get("data"), dict) else {}
            return ConfirmationEvent(kind=data.get("type"), payment_id=_as_id(inner.get("id")))

        # Plain form: {"kind": "payment", "paymentId": "123"}
        if "kind" in data:
            return ConfirmationEvent(
                kind=data.get("kind"),
                payment_id=_as_id(data.get("paymentId") or data.get("payment_id")),
            )

        # IPN body: {"topic": "payment", "resource": "123"}
        if "topic" in data:
            return ConfirmationEvent(kind=data.get("topic"), payment_id=_as_id(data.get("resource")))

        # Legacy query string: ?topic=payment&id=123 or ?type=payment&data.id=123
        kind = query.get("type") or query.get("topic")
        payment_id = query.get("data.id") or query.get("id")
        return ConfirmationEvent(kind=kind, payment_id=_as_id(payment_id))


def _as_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    value = str(value)
    # IPN resources are sometimes full URLs ending in the id
    return value.rstrip("/").rsplit("/", 1)[-1]


# =============================================================================
# STRIPE
# =============================================================================

STRIPE_STATUS_MAP = {
    "succeeded": PaymentStatus.APPROVED,
    "processing": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_capture": PaymentStatus.PENDING,
    "canceled": PaymentStatus.REJECTED,
    "requires_payment_method": PaymentStatus.REJECTED,
}


def _to_dict(obj: Any) -> dict:
    # StripeObject is not a dict subclass in current SDK releases
    return obj.to_dict()


class StripeProcessor(PaymentProcessor):
    """Stripe Checkout in payment mode with inline price data."""

    name = "stripe"

    def __init__(
        self,
        secret_key: str,
        webhook_secret: Optional[str] = None,
        timeout: float = 15.0,
    ):
        if not secret_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    async def _call(self, fn, *args, **kwargs):
        return await asyncio.wait_for(
            asyncio.to_thread(fn, *args, api_key=self.secret_key, **kwargs),
            timeout=self.timeout,
        )

    async def create_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        log = logger.bind(correlation_id=request.correlation_id)
        # Stripe redirects only on success or cancel; pending payments land on success
        log.info("stripe_pending_url_unused", pending_url=request.pending_url)

        unit_amount = int(
            (request.unit_price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
        separator = "&" if "?" in request.success_url else "?"
        metadata = {"correlation_id": request.correlation_id}
        try:
            session = await self._call(
                stripe.checkout.Session.create,
                mode="payment",
                line_items=[{
                    "quantity": 1,
                    "price_data": {
                        "currency": request.currency.lower(),
                        "unit_amount": unit_amount,
                        "product_data": {"name": request.title},
                    },
                }],
                customer_email=request.payer_email,
                success_url=f"{request.success_url}{separator}preference_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=request.failure_url,
                client_reference_id=request.correlation_id,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                idempotency_key=f"checkout_{request.correlation_id}",
            )
        except asyncio.TimeoutError as e:
            raise PaymentSessionError("Timed out creating Stripe checkout session") from e
        except stripe.StripeError as e:
            raise PaymentSessionError(f"Stripe rejected checkout session: {type(e).__name__}") from e

        if not getattr(session, "id", None) or not getattr(session, "url", None):
            raise PaymentSessionError("Malformed Stripe checkout session response")
        return CheckoutSession(session_id=session.id, redirect_url=session.url)

    async def get_payment(self, payment_id: str) -> PaymentDetails:
        try:
            intent = _to_dict(await self._call(stripe.PaymentIntent.retrieve, payment_id))
        except asyncio.TimeoutError as e:
            raise PaymentStatusError("Timed out retrieving Stripe payment") from e
        except stripe.StripeError as e:
            raise PaymentStatusError(f"Stripe payment lookup failed: {type(e).__name__}") from e

        metadata = intent.get("metadata") or {}
        raw_status = intent.get("status")
        return PaymentDetails(
            payment_id=intent.get("id") or payment_id,
            status=STRIPE_STATUS_MAP.get(raw_status, PaymentStatus.OTHER),
            raw_status=raw_status,
            external_reference=metadata.get("correlation_id") or None,
        )

    def parse_notification(
        self,
        body: bytes,
        query: Mapping[str, str],
        headers: Mapping[str, str],
    ) -> ConfirmationEvent:
        if self.webhook_secret:
            signature = headers.get("stripe-signature", "")
            try:
                event = _to_dict(stripe.Webhook.construct_event(body, signature, self.webhook_secret))
            except stripe.SignatureVerificationError as e:
                raise InvalidNotification("Invalid webhook signature") from e
            except ValueError as e:
                raise InvalidNotification(f"Invalid webhook payload: {e}") from e
        else:
            event = _json_body(body) or {}

        event_type = event.get("type") or ""
        obj = (event.get("data") or {}).get("object") or {}

        if event_type.startswith("payment_intent."):
            return ConfirmationEvent(kind="payment", payment_id=obj.get("id"))
        if event_type.startswith("checkout.session."):
            # Unpaid sessions carry no intent; nothing to look up yet
            return ConfirmationEvent(
                kind="payment" if obj.get("payment_intent") else event_type,
                payment_id=obj.get("payment_intent"),
            )
        return ConfirmationEvent(kind=event_type or None)


# =============================================================================
# FACTORY
# =============================================================================

def build_processor(config) -> PaymentProcessor:
    """Processor selected by PAYMENT_PROCESSOR."""
    if config.payment_processor == "mercadopago":
        return MercadoPagoProcessor(
            access_token=config.mercadopago_access_token,
            api_url=config.mercadopago_api_url,
            timeout=config.processor_timeout_seconds,
        )
    if config.payment_processor == "stripe":
        return StripeProcessor(
            secret_key=config.stripe_secret_key,
            webhook_secret=config.stripe_webhook_secret,
            timeout=config.processor_timeout_seconds,
        )
    raise ConfigurationError(f"Unknown PAYMENT_PROCESSOR '{config.payment_processor}'")
