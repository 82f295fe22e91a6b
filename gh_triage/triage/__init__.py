"""Triage policy: classification, priority and recalibration."""

from .orchestrator import ClassificationSignal, TriageOrchestrator

__all__ = ["ClassificationSignal", "TriageOrchestrator"]
