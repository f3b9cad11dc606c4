"""
Bulkwrite Kernel - shared infrastructure for the bulk write system.

Provides:
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with context propagation
- Injectable clocks
- Deterministic hashing
- SQLAlchemy declarative base and engine management
"""

__version__ = "0.1.0"
