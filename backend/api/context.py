# api/context.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — APPLICATION CONTEXT
# ============================================================================
# Every long-lived component, built once per process and handed to the
# routes. Opened in the FastAPI lifespan, closed on shutdown.
# ============================================================================

from dataclasses import dataclass
from typing import Optional

import structlog

from config import AppConfig
from database import Database
from pipeline.agents import (
    CheckoutInitiator,
    FulfillmentOrchestrator,
    INotifier,
    build_notifier,
)
from pipeline.processors import PaymentProcessor, build_processor
from pipeline.status import ArtifactStatusService
from services.renderer import PdfRenderer
from storage import (
    IArtifactStore,
    ILeadLedger,
    IPendingOrderStore,
    InMemoryLeadLedger,
    InMemoryPendingOrderStore,
    PostgresLeadLedger,
    PostgresPendingOrderStore,
    build_artifact_store,
)

logger = structlog.get_logger(component="context")


@dataclass
class AppContext:
    config: AppConfig
    processor: PaymentProcessor
    pending_orders: IPendingOrderStore
    leads: ILeadLedger
    artifacts: IArtifactStore
    renderer: PdfRenderer
    notifier: INotifier
    checkout: CheckoutInitiator
    fulfillment: FulfillmentOrchestrator
    status: ArtifactStatusService
    database: Optional[Database] = None

    @classmethod
    def assemble(
        cls,
        config: AppConfig,
        processor: PaymentProcessor,
        pending_orders: IPendingOrderStore,
        leads: ILeadLedger,
        artifacts: IArtifactStore,
        notifier: INotifier,
        renderer: Optional[PdfRenderer] = None,
        database: Optional[Database] = None,
    ) -> "AppContext":
        """Wire the services over already-built collaborators."""
        renderer = renderer or PdfRenderer(timeout=config.render_timeout_seconds)
        return cls(
            config=config,
            processor=processor,
            pending_orders=pending_orders,
            leads=leads,
            artifacts=artifacts,
            renderer=renderer,
            notifier=notifier,
            checkout=CheckoutInitiator(
                processor=processor,
                pending_orders=pending_orders,
                site_url=config.site_url,
                webhook_url=config.webhook_url,
                product_title=config.product_title,
                product_price=config.product_price,
                product_currency=config.product_currency,
            ),
            fulfillment=FulfillmentOrchestrator(
                processor=processor,
                pending_orders=pending_orders,
                leads=leads,
                artifacts=artifacts,
                renderer=renderer,
                notifier=notifier,
                lock_timeout=config.lock_timeout_seconds,
            ),
            status=ArtifactStatusService(
                artifacts=artifacts,
                pending_orders=pending_orders,
                one_time_download=config.artifact_one_time_download,
            ),
            database=database,
        )

    @classmethod
    async def from_config(cls, config: AppConfig) -> "AppContext":
        """Open real collaborators. Call config.validate() first."""
        database = None
        if config.database_url:
            database = Database(
                config.database_url,
                acquire_timeout=config.db_acquire_timeout_seconds,
            )
            await database.initialize()
            pending_orders = PostgresPendingOrderStore(database)
            leads = PostgresLeadLedger(database)
        else:
            logger.warning("database_not_configured", fallback="in_memory")
            pending_orders = InMemoryPendingOrderStore()
            leads = InMemoryLeadLedger()

        return cls.assemble(
            config=config,
            processor=build_processor(config),
            pending_orders=pending_orders,
            leads=leads,
            artifacts=build_artifact_store(config),
            notifier=build_notifier(config),
            database=database,
        )

    async def close(self) -> None:
        await self.processor.close()
        if self.database:
            await self.database.close()
