"""
Adapters layer - Key-value store implementations (DynamoDB, in-memory).
"""

from .dynamo_store import DynamoStore
from .memory_store import InMemoryStore

__all__ = ["DynamoStore", "InMemoryStore"]
