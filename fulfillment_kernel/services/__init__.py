"""Kernel services (flush only; callers own the transaction)."""

from fulfillment_kernel.services.outbox_writer import OrderEvent, OutboxWriter
from fulfillment_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = ["OrderEvent", "OutboxWriter", "SequenceCounter", "SequenceService"]
