# pipeline/__init__.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — PAYMENT & FULFILLMENT PIPELINE
# ============================================================================
# Checkout initiation, processor adapters, confirmation handling, delivery
# ============================================================================
