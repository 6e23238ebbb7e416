"""
Persistence for remediation jobs.

Provides the job store contract plus in-memory, SQLite and DynamoDB backends.
"""

from .base import JobStore, active_key
from .dynamodb_store import DynamoDBJobStore
from .memory_store import InMemoryJobStore
from .sqlite_store import SQLiteJobStore

__all__ = ["JobStore", "active_key", "InMemoryJobStore", "SQLiteJobStore", "DynamoDBJobStore"]
