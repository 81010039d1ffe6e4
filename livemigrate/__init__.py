"""
Live Migration Toolkit

Zero-downtime schema migration for a document store that keeps serving
traffic while its records move from the legacy shape to the modern shape.

Supports:
- Dual-shape normalization of trades, conversations and messages
- Compatibility services that read either shape transparently
- A migration registry coordinating migration mode with live traffic
- A batch migration engine with retries, rate limiting, rollback,
  emergency stop and graceful shutdown
"""

__version__ = "0.1.0"
