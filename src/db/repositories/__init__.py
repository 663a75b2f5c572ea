"""Database repository layer — one repo per aggregate root."""

from src.db.repositories.cache_repo import CacheRepo
from src.db.repositories.cursor_repo import CursorRepo
from src.db.repositories.document_repo import DocumentRepo
from src.db.repositories.job_repo import JobRepo

__all__ = [
    "CacheRepo",
    "CursorRepo",
    "DocumentRepo",
    "JobRepo",
]
