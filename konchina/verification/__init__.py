"""
Statistical verification of the Konchina deck engine.
"""

from konchina.verification.statistics import ShuffleReport, ShuffleValidator

__all__ = ["ShuffleReport", "ShuffleValidator"]
