"""VAT request lifecycle: failure classification, check cycle, admission."""

from vatwatch.lifecycle.admission import MonitoringService, ServiceReply
from vatwatch.lifecycle.classifier import ValidityCheckError, ValidityErrorKind, classify
from vatwatch.lifecycle.engine import CycleReport, LifecycleEngine, StopReason

__all__ = [
    "classify",
    "ValidityCheckError",
    "ValidityErrorKind",
    "LifecycleEngine",
    "CycleReport",
    "StopReason",
    "MonitoringService",
    "ServiceReply",
]
