"""Database adapter interfaces and the asyncpg implementation."""

from .ports import AsyncpgDatabaseAdapter, IDatabaseAdapter

__all__ = ["AsyncpgDatabaseAdapter", "IDatabaseAdapter"]
