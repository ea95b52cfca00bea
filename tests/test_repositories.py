from datetime import timedelta

import pytest

from schemas.order_definitions import Lead, OrderState, utcnow
from storage.repositories import (
    DuplicateOrderError,
    InMemoryLeadLedger,
    InMemoryPendingOrderStore,
)


class TestPendingOrderStore:
    async def test_put_then_get(self, ana):
        store = InMemoryPendingOrderStore()
        created = await store.put("corr-1", "pref-1", ana)

        fetched = await store.get("corr-1")
        assert fetched == created
        assert fetched.state == OrderState.PENDING
        assert fetched.order_input.email == "ana@x.com"
        assert await store.get_by_session("pref-1") == created

    async def test_unknown_ids(self):
        store = InMemoryPendingOrderStore()
        assert await store.get("missing") is None
        assert await store.get_by_session("missing") is None
        assert await store.state_of("missing") == OrderState.ORPHANED

    async def test_duplicate_put_rejected(self, ana):
        store = InMemoryPendingOrderStore()
        await store.put("corr-1", "pref-1", ana)
        with pytest.raises(DuplicateOrderError):
            await store.put("corr-1", "pref-2", ana)

    async def test_mark_fulfilled_only_once(self, ana):
        store = InMemoryPendingOrderStore()
        await store.put("corr-1", "pref-1", ana)

        assert await store.mark_fulfilled("corr-1") is True
        assert await store.mark_fulfilled("corr-1") is False
        assert await store.mark_fulfilled("missing") is False

        order = await store.get("corr-1")
        assert order.state == OrderState.FULFILLED
        assert order.fulfilled_at is not None
        assert await store.state_of("corr-1") == OrderState.FULFILLED

    async def test_delete(self, ana):
        store = InMemoryPendingOrderStore()
        await store.put("corr-1", "pref-1", ana)
        assert await store.delete("corr-1") is True
        assert await store.delete("corr-1") is False
        assert await store.get("corr-1") is None

    async def test_list_stale_oldest_first_pending_only(self, ana):
        store = InMemoryPendingOrderStore()
        for i in range(3):
            await store.put(f"corr-{i}", f"pref-{i}", ana)
        await store.mark_fulfilled("corr-1")

        stale = await store.list_stale(utcnow() + timedelta(seconds=1))
        assert [o.correlation_id for o in stale] == ["corr-0", "corr-2"]
        assert await store.list_stale(utcnow() - timedelta(hours=1)) == []
        assert len(await store.list_stale(utcnow() + timedelta(seconds=1), limit=1)) == 1

    async def test_list_orders_and_counts(self, ana):
        store = InMemoryPendingOrderStore()
        for i in range(3):
            await store.put(f"corr-{i}", f"pref-{i}", ana)
        await store.mark_fulfilled("corr-0")

        newest_first = await store.list_orders()
        assert [o.correlation_id for o in newest_first] == ["corr-2", "corr-1", "corr-0"]
        fulfilled = await store.list_orders(state=OrderState.FULFILLED)
        assert [o.correlation_id for o in fulfilled] == ["corr-0"]
        assert await store.count_by_state() == {"pending": 2, "fulfilled": 1}


class TestLeadLedger:
    async def test_one_lead_per_correlation_id(self):
        ledger = InMemoryLeadLedger()
        lead = Lead(correlation_id="corr-1", name="Ana", email="ana@x.com")

        assert await ledger.append(lead) is True
        assert await ledger.append(lead.model_copy()) is False
        assert await ledger.count_by_email("ana@x.com") == 1

    async def test_same_email_different_orders(self):
        ledger = InMemoryLeadLedger()
        await ledger.append(Lead(correlation_id="corr-1", email="ana@x.com"))
        await ledger.append(Lead(correlation_id="corr-2", email="ana@x.com"))
        await ledger.append(Lead(correlation_id="corr-3", email="bia@x.com"))

        assert await ledger.count_by_email("ana@x.com") == 2
        leads = await ledger.list_leads()
        assert [lead.correlation_id for lead in leads] == ["corr-3", "corr-2", "corr-1"]
        assert len(await ledger.list_leads(limit=2)) == 2

    def test_lead_from_order(self, ana):
        lead = Lead.from_order("corr-1", ana)
        assert lead.email == "ana@x.com"
        assert lead.name == "Ana"
        assert lead.whatsapp == "+55 11 99999-0000"
