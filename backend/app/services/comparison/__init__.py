"""Framework comparison jobs."""

from app.services.comparison.orchestrator import ComparisonOrchestrator, mean_score
from app.services.comparison.repository import ComparisonRepository

__all__ = [
    "ComparisonOrchestrator",
    "ComparisonRepository",
    "mean_score",
]
