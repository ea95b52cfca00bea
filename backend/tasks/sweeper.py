"""
Maintenance Sweep
=================
Background task over pending orders that never reached FULFILLED.

- reconcile_fulfilled: the artifact was persisted but the process died
  before the order was released; mark it fulfilled and, when a notifier is
  given, send the delivery email (best effort, the customer may already
  have it if the crash came after the send)
- report_stale: orders older than PENDING_ORDER_STALE_HOURS with no
  confirmation; logged only, nothing is deleted

Disabled unless SWEEPER_ENABLED=true. The admin dashboard calls
run_sweep_once directly.
"""

import asyncio
from datetime import timedelta
from typing import Dict, List, Optional

import structlog

from pipeline.agents.delivery_agent import INotifier
from schemas.order_definitions import OrderState, PendingOrder, utcnow
from storage.artifact_store import IArtifactStore
from storage.repositories import IPendingOrderStore

logger = structlog.get_logger(component="sweeper")

MAX_ORDERS_PER_CYCLE = 100


async def reconcile_fulfilled(
    pending_orders: IPendingOrderStore,
    artifacts: IArtifactStore,
    notifier: Optional[INotifier] = None,
    limit: int = MAX_ORDERS_PER_CYCLE,
) -> List[str]:
    """Release pending orders whose artifact already exists. Returns their correlation ids."""
    reconciled = []
    for order in await pending_orders.list_orders(state=OrderState.PENDING, limit=limit):
        if not await artifacts.exists(order.session_id):
            continue
        if await pending_orders.mark_fulfilled(order.correlation_id):
            reconciled.append(order.correlation_id)
            logger.warning(
                "pending_order_reconciled",
                correlation_id=order.correlation_id,
                session_id=order.session_id,
            )
            if notifier is not None:
                await _send_reconciled(order, artifacts, notifier)
    return reconciled


async def _send_reconciled(order: PendingOrder, artifacts: IArtifactStore, notifier: INotifier) -> None:
    try:
        artifact = await artifacts.read(order.session_id)
        await notifier.send_artifact(order, order.session_id, artifact)
    except Exception as e:
        logger.warning(
            "reconcile_email_failed",
            correlation_id=order.correlation_id,
            error=str(e),
            error_type=type(e).__name__,
        )


async def report_stale(
    pending_orders: IPendingOrderStore,
    stale_hours: int,
    limit: int = MAX_ORDERS_PER_CYCLE,
) -> List[PendingOrder]:
    cutoff = utcnow() - timedelta(hours=stale_hours)
    stale = await pending_orders.list_stale(cutoff, limit=limit)
    for order in stale:
        age_hours = (utcnow() - order.created_at).total_seconds() / 3600
        logger.info(
            "pending_order_stale",
            correlation_id=order.correlation_id,
            session_id=order.session_id,
            age_hours=round(age_hours, 1),
        )
    return stale


async def run_sweep_once(
    pending_orders: IPendingOrderStore,
    artifacts: IArtifactStore,
    stale_hours: int,
    notifier: Optional[INotifier] = None,
) -> Dict[str, int]:
    reconciled = await reconcile_fulfilled(pending_orders, artifacts, notifier)
    stale = await report_stale(pending_orders, stale_hours)
    result = {"reconciled": len(reconciled), "stale": len(stale)}
    logger.info("sweep_complete", **result)
    return result


async def sweeper_loop(
    pending_orders: IPendingOrderStore,
    artifacts: IArtifactStore,
    interval_seconds: int,
    stale_hours: int,
    notifier: Optional[INotifier] = None,
) -> None:
    """Runs until cancelled. Errors in one cycle never stop the loop."""
    logger.info("sweeper_started", interval=interval_seconds, stale_hours=stale_hours)

    while True:
        try:
            await run_sweep_once(pending_orders, artifacts, stale_hours, notifier)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("sweep_failed", error=str(e), error_type=type(e).__name__)

        await asyncio.sleep(interval_seconds)


async def order_summary(pending_orders: IPendingOrderStore, stale_hours: int) -> Dict[str, int]:
    """Counts for monitoring: orders by state plus stale pending orders."""
    counts = await pending_orders.count_by_state()
    cutoff = utcnow() - timedelta(hours=stale_hours)
    stale = await pending_orders.list_stale(cutoff, limit=10_000)
    return {
        OrderState.PENDING.value: counts.get(OrderState.PENDING.value, 0),
        OrderState.FULFILLED.value: counts.get(OrderState.FULFILLED.value, 0),
        "stale": len(stale),
    }
