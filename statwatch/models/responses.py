"""HTTP response models.

Every route answers with the same envelope:
{ success: bool, data: T | None, error: str | None, meta: dict | None }

Cached reads describe how the value was obtained in ``meta`` (see
``CacheMeta``).
"""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """JSON envelope for all API responses."""

    success: bool
    data: T | None = None
    error: str | None = None
    meta: dict | None = None


class CacheMeta(BaseModel):
    """Freshness of a value served from the cache layer."""

    fresh: bool
    degraded: bool
