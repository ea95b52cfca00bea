# services/__init__.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — SERVICES MODULE
# ============================================================================
# Severance calculation and PDF rendering
# ============================================================================

from services.calculator import (
    calculate_breakdown,
    format_brl,
    months_worked,
)

from services.renderer import (
    PdfRenderer,
    render_artifact,
)

__all__ = [
    # Calculation
    "calculate_breakdown",
    "format_brl",
    "months_worked",
    # Rendering
    "PdfRenderer",
    "render_artifact",
]
