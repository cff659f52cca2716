from ...core.config import settings
from .repository_base import ApprovalRepositoryBase
from .memory import InMemoryApprovalRepository
from .sqlite import SQLiteApprovalRepository


def create_repository(backend: str | None = None, db_path: str | None = None) -> ApprovalRepositoryBase:
    """Build the repository selected by STORAGE_BACKEND ("memory" or "sqlite")"""
    backend = backend or settings.storage_backend
    if backend == "sqlite":
        return SQLiteApprovalRepository(db_path or settings.approval_db_path)
    if backend == "memory":
        return InMemoryApprovalRepository()
    raise ValueError(f"Unknown storage backend: {backend}")


__all__ = [
    "ApprovalRepositoryBase",
    "InMemoryApprovalRepository",
    "SQLiteApprovalRepository",
    "create_repository",
]
