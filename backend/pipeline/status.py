"""
Status and download surface.

Read-only queries the browser polls after returning from the processor.
The only mutation is the optional delete after a one-time download.
"""

import structlog

from pipeline.errors import NotFoundError
from schemas.order_definitions import ArtifactStatus
from storage.artifact_store import IArtifactStore
from storage.repositories import IPendingOrderStore

logger = structlog.get_logger(component="status")


class ArtifactStatusService:
    def __init__(
        self,
        artifacts: IArtifactStore,
        pending_orders: IPendingOrderStore,
        one_time_download: bool = False,
    ):
        self.artifacts = artifacts
        self.pending_orders = pending_orders
        self.one_time_download = one_time_download

    async def status(self, session_id: str) -> ArtifactStatus:
        """READY once the artifact is persisted, PENDING while its order waits."""
        if await self.artifacts.exists(session_id):
            return ArtifactStatus.READY

        order = await self.pending_orders.get_by_session(session_id)
        if order is None:
            raise NotFoundError(session_id)
        if order.is_pending:
            return ArtifactStatus.PENDING

        # Fulfilled between the two reads, or already downloaded once
        if await self.artifacts.exists(session_id):
            return ArtifactStatus.READY
        raise NotFoundError(session_id)

    async def download(self, session_id: str) -> bytes:
        data = await self.artifacts.read(session_id)
        logger.info("artifact_downloaded", session_id=session_id, size=len(data))
        return data

    async def after_download(self, session_id: str) -> None:
        """Applies the retention policy once the response has been sent."""
        if self.one_time_download:
            await self.artifacts.delete_after_read(session_id)
