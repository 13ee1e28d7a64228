"""
Repository Layer Package.

Provides data-access abstractions over Supabase (cloud) and SQLite (local).
All credential-store operations flow through repositories; services never
access db.supabase or db.sqlite directly.

Usage:
    from portal.repositories.principal_repository import PrincipalRepository
"""

from portal.repositories.base_repository import BaseRepository
from portal.repositories.principal_repository import PrincipalRepository

__all__ = [
    "BaseRepository",
    "PrincipalRepository",
]
