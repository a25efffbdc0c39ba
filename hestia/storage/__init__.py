"""
Storage abstractions.

Integration points:
- AuthStore → PostgreSQL (conditional UPDATEs) or DynamoDB (condition expressions)
- InMemoryAuthStore → development and tests
"""

from hestia.storage.base import AuthStore
from hestia.storage.local import InMemoryAuthStore, create_local_storage

__all__ = [
    "AuthStore",
    "InMemoryAuthStore",
    "create_local_storage",
]
