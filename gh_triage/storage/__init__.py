"""Local JSON persistence for triage history."""

from .manager import DeliveryRecord, MessageRecord, RunArchive, TriageStore

__all__ = ["DeliveryRecord", "MessageRecord", "RunArchive", "TriageStore"]
