"""
Shared utility functions for the hestia platform.

This module contains common utilities used across the codebase.
"""

from __future__ import annotations

import asyncio
import hashlib
import uuid
from datetime import datetime, timezone
from typing import Awaitable, TypeVar

from hestia.core.errors import DependencyUnavailable

T = TypeVar("T")


def generate_id(prefix: str = "") -> str:
    """
    Generate a unique ID with optional prefix.

    Args:
        prefix: Optional prefix (e.g., "user", "role", "asg")

    Returns:
        A unique ID like "user_a1b2c3d4e5f6"
    """
    uid = uuid.uuid4().hex
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    """Case-normalize an email address for lookups and uniqueness."""
    return (email or "").strip().lower()


def token_digest(token: str) -> str:
    """SHA-256 hex digest of a one-time token (only digests are stored)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


async def bounded(awaitable: Awaitable[T], timeout: float, what: str) -> T:
    """
    Await an external call with a hard timeout.

    Timeouts surface as DependencyUnavailable so callers can retry with
    backoff. Nothing is retried here.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise DependencyUnavailable(f"{what} timed out after {timeout}s") from e
