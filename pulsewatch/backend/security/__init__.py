"""security/__init__.py"""
from .detectors import BruteForceGuard, PayloadFinding, RequestInspector
from .models import SecurityNotice, ThreatEvent, ThreatProfile
from .tracker import ThreatProfileTracker, compute_threat_severity

__all__ = [
    "BruteForceGuard",
    "PayloadFinding",
    "RequestInspector",
    "SecurityNotice",
    "ThreatEvent",
    "ThreatProfile",
    "ThreatProfileTracker",
    "compute_threat_severity",
]
