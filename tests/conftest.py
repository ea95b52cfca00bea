from decimal import Decimal
from typing import Dict, List, Mapping, Optional

import pytest
from fastapi.testclient import TestClient

from api.context import AppContext
from api.server import create_app
from config import AppConfig
from pipeline.agents.delivery_agent import INotifier
from pipeline.errors import PaymentSessionError, PaymentStatusError
from pipeline.processors import PaymentProcessor, _json_body
from schemas.order_definitions import (
    CheckoutSession,
    CheckoutSessionRequest,
    ConfirmationEvent,
    OrderInput,
    PaymentDetails,
    PaymentStatus,
    PendingOrder,
)
from services.renderer import PdfRenderer
from storage.artifact_store import LocalArtifactStore
from storage.repositories import InMemoryLeadLedger, InMemoryPendingOrderStore


# =============================================================================
# DOUBLES
# =============================================================================

class FakeProcessor(PaymentProcessor):
    """Processor double: numbered preferences, payments registered by the test."""

    name = "fake"

    def __init__(self):
        self.requests: List[CheckoutSessionRequest] = []
        self.payments: Dict[str, PaymentDetails] = {}
        self.lookups: List[str] = []
        self.fail_create = False
        self.fail_lookup = False
        self.closed = False

    async def create_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        if self.fail_create:
            raise PaymentSessionError("processor down")
        self.requests.append(request)
        session_id = f"pref-{len(self.requests)}"
        return CheckoutSession(
            session_id=session_id,
            redirect_url=f"https://pay.example/checkout/{session_id}",
            sandbox_redirect_url=f"https://sandbox.pay.example/checkout/{session_id}",
        )

    async def get_payment(self, payment_id: str) -> PaymentDetails:
        self.lookups.append(payment_id)
        if self.fail_lookup:
            raise PaymentStatusError("lookup failed")
        return self.payments.get(
            payment_id,
            PaymentDetails(payment_id=payment_id, status=PaymentStatus.OTHER),
        )

    def parse_notification(
        self,
        body: bytes,
        query: Mapping[str, str],
        headers: Mapping[str, str],
    ) -> ConfirmationEvent:
        data = _json_body(body) or {}
        inner = data.get("data") or {}
        return ConfirmationEvent(
            kind=data.get("type") or data.get("kind"),
            payment_id=inner.get("id") or data.get("paymentId"),
        )

    async def close(self) -> None:
        self.closed = True

    def set_payment(
        self,
        payment_id: str,
        correlation_id: Optional[str],
        status: PaymentStatus = PaymentStatus.APPROVED,
    ) -> None:
        self.payments[payment_id] = PaymentDetails(
            payment_id=payment_id,
            status=status,
            raw_status=status.value,
            external_reference=correlation_id,
        )

    @property
    def last_correlation_id(self) -> str:
        return self.requests[-1].correlation_id


class RecordingNotifier(INotifier):
    def __init__(self):
        self.sent: List[tuple] = []
        self.fail = False

    async def send_artifact(self, order: PendingOrder, session_id: str, artifact: bytes) -> bool:
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((order.correlation_id, session_id, len(artifact)))
        return True


class FlakyLeadLedger(InMemoryLeadLedger):
    def __init__(self):
        super().__init__()
        self.fail = False

    async def append(self, lead):
        if self.fail:
            raise ConnectionError("leads table unavailable")
        return await super().append(lead)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ana() -> OrderInput:
    return OrderInput.model_validate({
        "name": "Ana",
        "email": "ana@x.com",
        "whatsapp": "+55 11 99999-0000",
        "lastSalary": 3000,
        "startDate": "2022-01-10",
        "endDate": "2023-06-20",
        "vacationPeriods": 1,
        "irregularities": ["Horas extras não pagas", "FGTS não depositado"],
    })


@pytest.fixture
def ana_payload() -> dict:
    return {
        "name": "Ana",
        "email": "ana@x.com",
        "lastSalary": 3000,
        "startDate": "2022-01-10",
        "endDate": "2023-06-20",
        "vacationPeriods": 1,
    }


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(
        payment_processor="mercadopago",
        mercadopago_access_token="TEST-token",
        site_url="https://calc.example",
        webhook_url="https://calc.example/webhook",
        public_base_url="https://calc.example",
        artifact_dir=str(tmp_path / "pdfs"),
        product_price=Decimal("29.90"),
        log_format="console",
    )


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def pending_orders() -> InMemoryPendingOrderStore:
    return InMemoryPendingOrderStore()


@pytest.fixture
def leads() -> FlakyLeadLedger:
    return FlakyLeadLedger()


@pytest.fixture
def artifacts(config) -> LocalArtifactStore:
    return LocalArtifactStore(config.artifact_dir)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def context(config, processor, pending_orders, leads, artifacts, notifier) -> AppContext:
    return AppContext.assemble(
        config=config,
        processor=processor,
        pending_orders=pending_orders,
        leads=leads,
        artifacts=artifacts,
        notifier=notifier,
        renderer=PdfRenderer(timeout=30),
    )


@pytest.fixture
def client(context):
    with TestClient(create_app(context)) as test_client:
        yield test_client

