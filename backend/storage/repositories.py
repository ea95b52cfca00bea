# storage/repositories.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — PENDING ORDER STORE & LEAD LEDGER
# ============================================================================
# Persistence interfaces with in-memory implementations (tests, local dev)
# and PostgreSQL implementations over the shared asyncpg pool.
# ============================================================================

import asyncio
import json
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional

import asyncpg
import structlog

from database import Database, affected_rows
from schemas.order_definitions import (
    Lead,
    OrderInput,
    OrderState,
    PendingOrder,
    utcnow,
)

logger = structlog.get_logger(component="repositories")


class DuplicateOrderError(Exception):
    """put() was called with a correlation id that already exists."""


# =============================================================================
# INTERFACES
# =============================================================================

class IPendingOrderStore(ABC):
    """Correlation id -> pending order, with an explicit state column"""

    @abstractmethod
    async def put(self, correlation_id: str, session_id: str, order_input: OrderInput) -> PendingOrder:
        pass

    @abstractmethod
    async def get(self, correlation_id: str) -> Optional[PendingOrder]:
        pass

    @abstractmethod
    async def get_by_session(self, session_id: str) -> Optional[PendingOrder]:
        pass

    @abstractmethod
    async def mark_fulfilled(self, correlation_id: str) -> bool:
        """Flip PENDING -> FULFILLED. Returns False if it was not pending."""
        pass

    @abstractmethod
    async def delete(self, correlation_id: str) -> bool:
        pass

    @abstractmethod
    async def list_stale(self, older_than: datetime, limit: int = 100) -> List[PendingOrder]:
        """Pending orders created before ``older_than``, oldest first."""
        pass

    @abstractmethod
    async def list_orders(self, state: Optional[OrderState] = None, limit: int = 100) -> List[PendingOrder]:
        pass

    @abstractmethod
    async def count_by_state(self) -> Dict[str, int]:
        pass

    async def state_of(self, correlation_id: str) -> OrderState:
        order = await self.get(correlation_id)
        return order.state if order else OrderState.ORPHANED


class ILeadLedger(ABC):
    """Append-only record of paying customers"""

    @abstractmethod
    async def append(self, lead: Lead) -> bool:
        """Record a lead. Returns False if this order already has one."""
        pass

    @abstractmethod
    async def list_leads(self, limit: int = 100) -> List[Lead]:
        pass

    @abstractmethod
    async def count_by_email(self, email: str) -> int:
        pass


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class InMemoryPendingOrderStore(IPendingOrderStore):
    """Thread-safe in-memory pending order store"""

    def __init__(self):
        self._orders: Dict[str, PendingOrder] = {}
        self._lock = asyncio.Lock()

    async def put(self, correlation_id: str, session_id: str, order_input: OrderInput) -> PendingOrder:
        async with self._lock:
            if correlation_id in self._orders:
                raise DuplicateOrderError(correlation_id)
            order = PendingOrder(
                correlation_id=correlation_id,
                session_id=session_id,
                order_input=order_input,
            )
            self._orders[correlation_id] = order
            return order

    async def get(self, correlation_id: str) -> Optional[PendingOrder]:
        async with self._lock:
            return self._orders.get(correlation_id)

    async def get_by_session(self, session_id: str) -> Optional[PendingOrder]:
        async with self._lock:
            for order in self._orders.values():
                if order.session_id == session_id:
                    return order
            return None

    async def mark_fulfilled(self, correlation_id: str) -> bool:
        async with self._lock:
            order = self._orders.get(correlation_id)
            if order is None or order.state != OrderState.PENDING:
                return False
            self._orders[correlation_id] = order.model_copy(update={
                "state": OrderState.FULFILLED,
                "fulfilled_at": utcnow(),
            })
            return True

    async def delete(self, correlation_id: str) -> bool:
        async with self._lock:
            return self._orders.pop(correlation_id, None) is not None

    async def list_stale(self, older_than: datetime, limit: int = 100) -> List[PendingOrder]:
        async with self._lock:
            stale = [
                o for o in self._orders.values()
                if o.state == OrderState.PENDING and o.created_at < older_than
            ]
        stale.sort(key=lambda o: o.created_at)
        return stale[:limit]

    async def list_orders(self, state: Optional[OrderState] = None, limit: int = 100) -> List[PendingOrder]:
        async with self._lock:
            orders = [o for o in self._orders.values() if state is None or o.state == state]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders[:limit]

    async def count_by_state(self) -> Dict[str, int]:
        async with self._lock:
            return dict(Counter(o.state.value for o in self._orders.values()))


class InMemoryLeadLedger(ILeadLedger):
    """Append-only in-memory lead ledger"""

    def __init__(self):
        self._leads: List[Lead] = []
        self._seen: set[str] = set()
        self._lock = asyncio.Lock()

    async def append(self, lead: Lead) -> bool:
        async with self._lock:
            if lead.correlation_id in self._seen:
                return False
            self._seen.add(lead.correlation_id)
            self._leads.append(lead)
            return True

    async def list_leads(self, limit: int = 100) -> List[Lead]:
        async with self._lock:
            return list(reversed(self._leads))[:limit]

    async def count_by_email(self, email: str) -> int:
        async with self._lock:
            return sum(1 for lead in self._leads if lead.email == email)


# =============================================================================
# POSTGRES IMPLEMENTATIONS
# =============================================================================

def _row_to_order(row: asyncpg.Record) -> PendingOrder:
    data = row["data"]
    if isinstance(data, str):
        data = json.loads(data)
    return PendingOrder(
        correlation_id=row["correlation_id"],
        session_id=row["session_id"],
        order_input=OrderInput.model_validate(data),
        state=OrderState(row["state"]),
        created_at=row["created_at"],
        fulfilled_at=row["fulfilled_at"],
    )


class PostgresPendingOrderStore(IPendingOrderStore):
    """pending_orders table. Single-statement operations are atomic per key."""

    def __init__(self, db: Database):
        self.db = db

    async def put(self, correlation_id: str, session_id: str, order_input: OrderInput) -> PendingOrder:
        try:
            row = await self.db.fetch_one(
                """
                INSERT INTO pending_orders (correlation_id, session_id, data, state)
                VALUES ($1, $2, $3::jsonb, $4)
                RETURNING *
                """,
                correlation_id,
                session_id,
                order_input.model_dump_json(),
                OrderState.PENDING.value,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateOrderError(correlation_id) from e
        return _row_to_order(row)

    async def get(self, correlation_id: str) -> Optional[PendingOrder]:
        row = await self.db.fetch_one(
            "SELECT * FROM pending_orders WHERE correlation_id = $1",
            correlation_id,
        )
        return _row_to_order(row) if row else None

    async def get_by_session(self, session_id: str) -> Optional[PendingOrder]:
        row = await self.db.fetch_one(
            "SELECT * FROM pending_orders WHERE session_id = $1",
            session_id,
        )
        return _row_to_order(row) if row else None

    async def mark_fulfilled(self, correlation_id: str) -> bool:
        result = await self.db.execute(
            """
            UPDATE pending_orders
            SET state = $1, fulfilled_at = NOW()
            WHERE correlation_id = $2 AND state = $3
            """,
            OrderState.FULFILLED.value,
            correlation_id,
            OrderState.PENDING.value,
        )
        return affected_rows(result) == 1

    async def delete(self, correlation_id: str) -> bool:
        result = await self.db.execute(
            "DELETE FROM pending_orders WHERE correlation_id = $1",
            correlation_id,
        )
        return affected_rows(result) == 1

    async def list_stale(self, older_than: datetime, limit: int = 100) -> List[PendingOrder]:
        rows = await self.db.fetch_all(
            """
            SELECT * FROM pending_orders
            WHERE state = $1 AND created_at < $2
            ORDER BY created_at ASC
            LIMIT $3
            """,
            OrderState.PENDING.value,
            older_than,
            limit,
        )
        return [_row_to_order(row) for row in rows]

    async def list_orders(self, state: Optional[OrderState] = None, limit: int = 100) -> List[PendingOrder]:
        if state is None:
            rows = await self.db.fetch_all(
                "SELECT * FROM pending_orders ORDER BY created_at DESC LIMIT $1",
                limit,
            )
        else:
            rows = await self.db.fetch_all(
                "SELECT * FROM pending_orders WHERE state = $1 ORDER BY created_at DESC LIMIT $2",
                state.value,
                limit,
            )
        return [_row_to_order(row) for row in rows]

    async def count_by_state(self) -> Dict[str, int]:
        rows = await self.db.fetch_all(
            "SELECT state, COUNT(*) AS count FROM pending_orders GROUP BY state"
        )
        return {row["state"]: row["count"] for row in rows}


class PostgresLeadLedger(ILeadLedger):
    """leads table, unique per correlation id"""

    def __init__(self, db: Database):
        self.db = db

    async def append(self, lead: Lead) -> bool:
        result = await self.db.execute(
            """
            INSERT INTO leads (correlation_id, name, email, whatsapp, created_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (correlation_id) DO NOTHING
            """,
            lead.correlation_id,
            lead.name,
            lead.email,
            lead.whatsapp,
            lead.created_at,
        )
        return affected_rows(result) == 1

    async def list_leads(self, limit: int = 100) -> List[Lead]:
        rows = await self.db.fetch_all(
            """
            SELECT correlation_id, name, email, whatsapp, created_at
            FROM leads ORDER BY created_at DESC LIMIT $1
            """,
            limit,
        )
        return [Lead(**dict(row)) for row in rows]

    async def count_by_email(self, email: str) -> int:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS count FROM leads WHERE email = $1",
            email,
        )
        return row["count"] if row else 0
