from __future__ import annotations

"""Catalog lookups the entitlement services need.

Content (price, storage path, access window) and users (resolved by email
when a checkout carries no user id) are owned by other subsystems; this
module only reads them.
"""

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class ContentRecord:
    id: str
    kind: str  # collection|video
    title: str
    price_cents: int
    currency: str
    storage_path: str
    access_duration_seconds: Optional[int] = None


@dataclass
class UserRecord:
    id: str
    email: str
    is_active: bool = True


class CatalogRepositoryProtocol:
    async def get_content(self, content_id: str) -> Optional[ContentRecord]:
        raise NotImplementedError

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        raise NotImplementedError

    async def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        """Case-insensitive email match."""
        raise NotImplementedError


class MemoryCatalogRepository(CatalogRepositoryProtocol):
    def __init__(self) -> None:
        self._contents: Dict[str, ContentRecord] = {}
        self._users: Dict[str, UserRecord] = {}

    def add_content(self, record: ContentRecord) -> ContentRecord:
        self._contents[record.id] = record
        return record

    def add_user(self, record: UserRecord) -> UserRecord:
        self._users[record.id] = record
        return record

    async def get_content(self, content_id: str) -> Optional[ContentRecord]:
        return self._contents.get(content_id)

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)

    async def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        needle = (email or "").strip().lower()
        if not needle:
            return None
        for user in self._users.values():
            if user.email.lower() == needle:
                return user
        return None


__all__ = [
    "ContentRecord",
    "UserRecord",
    "CatalogRepositoryProtocol",
    "MemoryCatalogRepository",
]
