"""
Directory: scoped reads, lifecycle writes and batch execution over users.
"""

from src.kernel.directory.batch import BatchItemError, BatchOrchestrator, BatchOutcome
from src.kernel.directory.lifecycle import LifecycleManager, PasswordResetOutcome
from src.kernel.directory.query_engine import DirectoryQueryEngine
from src.kernel.directory.service import DirectoryService

__all__ = [
    "BatchItemError",
    "BatchOrchestrator",
    "BatchOutcome",
    "DirectoryQueryEngine",
    "DirectoryService",
    "LifecycleManager",
    "PasswordResetOutcome",
]
