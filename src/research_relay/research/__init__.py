"""Four-phase research pipeline: plan, execute, publish, finalize."""

from .orchestrator import ResearchOrchestrator
from .progress import ProgressChannel

__all__ = ["ProgressChannel", "ResearchOrchestrator"]
