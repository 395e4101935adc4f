"""
Test factories for DE-MainFrame.
"""

from .detection_factory import (
    DetectionDataFactory,
    DetectionRecordFactory,
    LegacyDetectionDataFactory,
)
from .macro_factory import MacroDataFactory, MacroFactory

__all__ = [
    "DetectionDataFactory",
    "DetectionRecordFactory",
    "LegacyDetectionDataFactory",
    "MacroDataFactory",
    "MacroFactory",
]
