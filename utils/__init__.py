"""
Utilities module for Maestro Test Manager.
"""
from .history import RunHistory

__all__ = ["RunHistory"]
