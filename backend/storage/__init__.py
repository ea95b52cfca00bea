# storage/__init__.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — STORAGE MODULE
# ============================================================================
# Pending orders, leads and rendered artifacts
# ============================================================================

from storage.artifact_store import (
    IArtifactStore,
    LocalArtifactStore,
    S3ArtifactStore,
    build_artifact_store,
    validate_session_id,
)
from storage.repositories import (
    DuplicateOrderError,
    ILeadLedger,
    IPendingOrderStore,
    InMemoryLeadLedger,
    InMemoryPendingOrderStore,
    PostgresLeadLedger,
    PostgresPendingOrderStore,
)

__all__ = [
    "DuplicateOrderError",
    "IArtifactStore",
    "ILeadLedger",
    "IPendingOrderStore",
    "InMemoryLeadLedger",
    "InMemoryPendingOrderStore",
    "LocalArtifactStore",
    "PostgresLeadLedger",
    "PostgresPendingOrderStore",
    "S3ArtifactStore",
    "build_artifact_store",
    "validate_session_id",
]
