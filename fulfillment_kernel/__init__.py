"""
Fulfillment Kernel

The shared core of the editing marketplace order workflow:
- Compare-and-swap order transitions
- Per-order monotonic event sequences
- Append-only activity trail
- Structured JSON logging and typed errors
"""

__version__ = "0.1.0"
