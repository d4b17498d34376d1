"""Framework processing state: transitions, persistence and orchestration."""

from app.services.processing.repository import FrameworkRepository
from app.services.processing.service import FrameworkProcessingService

__all__ = [
    "FrameworkProcessingService",
    "FrameworkRepository",
]
