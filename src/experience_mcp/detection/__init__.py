from experience_mcp.detection.detector import build_detection_summary, detect_all
from experience_mcp.detection.matching import name_similarity, resolve_matches
from experience_mcp.detection.models import (
    DetectedItem,
    DetectedSection,
    DetectionResult,
    ExistingMatch,
)
from experience_mcp.detection.service import detect_app_items, detect_connections

__all__ = [
    "DetectedItem",
    "DetectedSection",
    "DetectionResult",
    "ExistingMatch",
    "build_detection_summary",
    "detect_all",
    "detect_app_items",
    "detect_connections",
    "name_similarity",
    "resolve_matches",
]
