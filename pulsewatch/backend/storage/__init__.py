"""storage/__init__.py"""
from .database import Database
from .repository import ThreatRepository

__all__ = ["Database", "ThreatRepository"]
