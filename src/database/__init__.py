"""
Database package exports for Supabase and in-memory persistence.
"""

from src.database.supabase import PollRepository, DatabaseError
from src.database.memory import InMemoryRepository

__all__ = ["PollRepository", "InMemoryRepository", "DatabaseError"]
