from __future__ import annotations

from typing import List, Optional, Protocol

from estategate.service.errors import NotFoundError
from estategate.storage.models import User


class CommunityAdminStore(Protocol):
    def find_community_admins(self, community_id: str) -> Optional[List[User]]: ...


class CommunityAdminLookup:
    """Answer ``is_admin_of_tenant`` from a store's community admin list."""

    def __init__(self, store: CommunityAdminStore) -> None:
        self.store = store

    def is_admin_of_tenant(self, tenant_id: str, identity: str) -> bool:
        admins = self.store.find_community_admins(tenant_id)
        if admins is None:
            raise NotFoundError("community not found", detail={"community_id": tenant_id})
        return any(admin.id == identity for admin in admins)


__all__ = ["CommunityAdminLookup", "CommunityAdminStore"]
