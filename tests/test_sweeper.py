import asyncio

import pytest

from schemas.order_definitions import OrderState
from tasks.sweeper import (
    order_summary,
    reconcile_fulfilled,
    report_stale,
    run_sweep_once,
    sweeper_loop,
)


@pytest.fixture
async def orders(pending_orders, ana):
    await pending_orders.put("corr-1", "pref-1", ana)
    await pending_orders.put("corr-2", "pref-2", ana)
    await pending_orders.put("corr-3", "pref-3", ana)
    await pending_orders.mark_fulfilled("corr-3")
    return pending_orders


async def test_reconcile_releases_orders_with_artifact(orders, artifacts):
    await artifacts.write("pref-1", b"%PDF")

    assert await reconcile_fulfilled(orders, artifacts) == ["corr-1"]
    assert await orders.state_of("corr-1") == OrderState.FULFILLED
    assert await orders.state_of("corr-2") == OrderState.PENDING
    assert await reconcile_fulfilled(orders, artifacts) == []


async def test_reconcile_emails_the_artifact(orders, artifacts, notifier):
    await artifacts.write("pref-1", b"%PDF-reconciled")

    assert await reconcile_fulfilled(orders, artifacts, notifier) == ["corr-1"]
    assert notifier.sent == [("corr-1", "pref-1", len(b"%PDF-reconciled"))]

    # already released, so a second cycle sends nothing
    assert await reconcile_fulfilled(orders, artifacts, notifier) == []
    assert len(notifier.sent) == 1


async def test_reconcile_email_failure_still_releases(orders, artifacts, notifier):
    notifier.fail = True
    await artifacts.write("pref-1", b"%PDF")
    await artifacts.write("pref-2", b"%PDF")

    assert sorted(await reconcile_fulfilled(orders, artifacts, notifier)) == ["corr-1", "corr-2"]
    assert await orders.state_of("corr-1") == OrderState.FULFILLED
    assert await orders.state_of("corr-2") == OrderState.FULFILLED
    assert notifier.sent == []


async def test_report_stale_does_not_delete(orders):
    # negative window puts the cutoff in the future
    stale = await report_stale(orders, stale_hours=-1)

    assert sorted(o.correlation_id for o in stale) == ["corr-1", "corr-2"]
    assert await orders.count_by_state() == {"pending": 2, "fulfilled": 1}
    assert await report_stale(orders, stale_hours=72) == []


async def test_run_sweep_once(orders, artifacts):
    await artifacts.write("pref-2", b"%PDF")
    assert await run_sweep_once(orders, artifacts, stale_hours=-1) == {"reconciled": 1, "stale": 1}


async def test_order_summary(orders):
    assert await order_summary(orders, stale_hours=72) == {"pending": 2, "fulfilled": 1, "stale": 0}
    assert await order_summary(orders, stale_hours=-1) == {"pending": 2, "fulfilled": 1, "stale": 2}


async def test_loop_survives_errors_and_stops_on_cancel(orders, artifacts, monkeypatch):
    calls = []

    async def flaky_sweep(pending_orders, artifact_store, stale_hours, notifier=None):
        calls.append(stale_hours)
        if len(calls) == 1:
            raise ConnectionError("db blip")
        return {"reconciled": 0, "stale": 0}

    monkeypatch.setattr("tasks.sweeper.run_sweep_once", flaky_sweep)

    task = asyncio.create_task(sweeper_loop(orders, artifacts, interval_seconds=0, stale_hours=72))
    while len(calls) < 3:
        await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert calls[:3] == [72, 72, 72]
