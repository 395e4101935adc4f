"""
Detection analysis engine: SPL parsing, lifecycle classification and corpus indexes.
"""

from de_mainframe.engine.corpus import CorpusIndexer, DetectionFilter, DetectionSort
from de_mainframe.engine.lifecycle import LifecycleClassifier, LifecycleStatus
from de_mainframe.engine.spl_parser import SplParser, parse_spl

__all__ = [
    "CorpusIndexer",
    "DetectionFilter",
    "DetectionSort",
    "LifecycleClassifier",
    "LifecycleStatus",
    "SplParser",
    "parse_spl",
]
