"""
aggregation/__init__.py

Public API for the aggregation sub-package.
"""

from .aggregator import Aggregator
from .models import AggregatedReport, EndpointCount, MemoryPoint, ReportPeriod
from .resources import ProcessResourceProbe, ResourceProbe
from .sample_store import SampleStore

__all__ = [
    "Aggregator",
    "AggregatedReport",
    "EndpointCount",
    "MemoryPoint",
    "ReportPeriod",
    "ProcessResourceProbe",
    "ResourceProbe",
    "SampleStore",
]
