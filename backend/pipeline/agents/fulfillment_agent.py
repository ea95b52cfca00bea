"""
Fulfillment Agent
=================
Turns an approved payment confirmation into a delivered PDF.

Per correlation id the order moves PENDING -> FULFILLED exactly once in
effect. Confirmations are at-least-once and may be duplicated or reordered,
so the sequence below is safe to re-run from the top:

    a. append lead            (best effort, keyed by correlation id)
    b. render artifact        (blocking step)
    c. persist artifact       (blocking step, overwrite by session id)
    d. email the customer     (best effort)
    e. mark order fulfilled   (last; a redelivery after this is unresolved)

The whole sequence runs under a per-correlation-id lock so two concurrent
deliveries of the same event cannot interleave.

pip install structlog
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

import structlog

from pipeline.agents.delivery_agent import INotifier
from pipeline.errors import (
    FulfillmentStepFailure,
    PaymentStatusError,
    UnresolvedConfirmation,
)
from pipeline.locks import KeyedLocks
from pipeline.processors import PaymentProcessor
from schemas.order_definitions import (
    ConfirmationEvent,
    ConfirmationOutcome,
    Lead,
    PaymentDetails,
    PaymentStatus,
    PendingOrder,
)
from services.renderer import PdfRenderer
from storage.artifact_store import IArtifactStore
from storage.repositories import ILeadLedger, IPendingOrderStore

logger = structlog.get_logger(component="fulfillment_agent")

T = TypeVar("T")


class FulfillmentOrchestrator:
    """
    Example:
        orchestrator = FulfillmentOrchestrator(processor, pending, leads, artifacts, renderer, notifier)
        outcome = await orchestrator.handle_confirmation(
            ConfirmationEvent(kind="payment", payment_id="123")
        )
    """

    def __init__(
        self,
        processor: PaymentProcessor,
        pending_orders: IPendingOrderStore,
        leads: ILeadLedger,
        artifacts: IArtifactStore,
        renderer: PdfRenderer,
        notifier: INotifier,
        lock_timeout: float = 30.0,
    ):
        self.processor = processor
        self.pending_orders = pending_orders
        self.leads = leads
        self.artifacts = artifacts
        self.renderer = renderer
        self.notifier = notifier
        self.lock_timeout = lock_timeout
        self._locks = KeyedLocks()

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def handle_confirmation(self, event: ConfirmationEvent) -> ConfirmationOutcome:
        """
        Raises PaymentStatusError or FulfillmentStepFailure when the
        processor should redeliver; every other outcome is an acknowledgement.
        """
        if not event.is_payment:
            logger.info("confirmation_ignored", kind=event.kind)
            return ConfirmationOutcome.IGNORED

        details = await self._fetch_payment(event.payment_id)
        log = logger.bind(
            payment_id=details.payment_id,
            correlation_id=details.external_reference,
        )
        log.info("payment_status_fetched", status=details.status.value, raw_status=details.raw_status)

        if details.status != PaymentStatus.APPROVED or not details.external_reference:
            log.info("confirmation_not_approved", status=details.status.value)
            return ConfirmationOutcome.NOT_APPROVED

        correlation_id = details.external_reference
        try:
            async with self._locks.hold(correlation_id, timeout=self.lock_timeout):
                await self._fulfill_locked(correlation_id, log)
        except UnresolvedConfirmation as e:
            log.warning("confirmation_unresolved", reason=e.reason)
            return ConfirmationOutcome.UNRESOLVED
        except asyncio.TimeoutError as e:
            log.error("fulfillment_lock_timeout")
            raise FulfillmentStepFailure("lock", e) from e

        return ConfirmationOutcome.FULFILLED

    async def _fetch_payment(self, payment_id: str) -> PaymentDetails:
        try:
            return await self.processor.get_payment(payment_id)
        except PaymentStatusError as e:
            logger.error("payment_status_failed", payment_id=payment_id, error=str(e))
            raise
        except Exception as e:
            logger.error("payment_status_failed", payment_id=payment_id, error=str(e))
            raise PaymentStatusError(f"Payment lookup failed: {type(e).__name__}") from e

    # =========================================================================
    # FULFILLMENT SEQUENCE (lock held)
    # =========================================================================

    async def _fulfill_locked(self, correlation_id: str, log) -> None:
        order = await self._step("lookup", self.pending_orders.get(correlation_id), log)
        if order is None:
            raise UnresolvedConfirmation(correlation_id, reason="not_found")
        if not order.is_pending:
            raise UnresolvedConfirmation(correlation_id, reason="already_fulfilled")

        log = log.bind(session_id=order.session_id)
        log.info("fulfillment_started")

        # a. lead
        appended = await self._best_effort(
            "lead_append",
            self._append_lead(correlation_id, order),
            log,
        )
        if appended is False:
            log.info("lead_already_recorded")

        # b. render, c. persist
        artifact = await self._step("render", self.renderer.render(order.order_input), log)
        await self._step("persist", self.artifacts.write(order.session_id, artifact), log)
        log.info("artifact_persisted", size=len(artifact))

        # d. notify
        await self._best_effort(
            "email_send",
            self.notifier.send_artifact(order, order.session_id, artifact),
            log,
        )

        # e. release
        released = await self._step("release", self.pending_orders.mark_fulfilled(correlation_id), log)
        log.info("fulfillment_completed", released=released)

    async def _append_lead(self, correlation_id: str, order: PendingOrder) -> bool:
        return await self.leads.append(Lead.from_order(correlation_id, order.order_input))

    async def _step(self, step: str, awaitable: Awaitable[T], log) -> T:
        """A step whose failure aborts the sequence and asks for redelivery."""
        try:
            return await awaitable
        except Exception as e:
            log.error("fulfillment_step_failed", step=step, error=str(e), error_type=type(e).__name__)
            raise FulfillmentStepFailure(step, e) from e

    async def _best_effort(self, step: str, awaitable: Awaitable[T], log) -> Optional[T]:
        """A step whose failure is logged and does not affect the others."""
        try:
            return await awaitable
        except Exception as e:
            log.warning(f"{step}_failed", error=str(e), error_type=type(e).__name__)
            return None

