"""
Pydantic schemas for detections, macros and SPL parse results.
"""

from de_mainframe.schemas.detection import DetectionRecord, RevalidationEntry, RiskEntry
from de_mainframe.schemas.macro import Macro, MacroSort, MacroUsage, MacroValidationResult
from de_mainframe.schemas.spl import ParsedSPL, ParsingRule

__all__ = [
    "DetectionRecord",
    "RevalidationEntry",
    "RiskEntry",
    "Macro",
    "MacroSort",
    "MacroUsage",
    "MacroValidationResult",
    "ParsedSPL",
    "ParsingRule",
]
