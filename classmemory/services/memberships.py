# services/memberships.py
"""
(user, school, role) records, stored as ``membership`` posts in the school thread.

There is no secondary index: every read scans the membership posts. ``add`` does
not deduplicate, so callers check ``get`` first; when duplicates exist anyway the
earliest (joinedAt, id) record is the one reads return.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from classmemory.clock import Clock, utcnow
from classmemory.errors import NotFoundError
from classmemory.forum_client import ForumClient
from classmemory.schemas import Membership, MembershipInfo, RecordType, Role
from classmemory.services.mappers import from_domain, map_records, with_store_identity

logger = logging.getLogger(__name__)


def _earliest_first(items: List[Membership]) -> List[Membership]:
    return sorted(items, key=lambda m: (m.joined_at, m.id))


class MembershipStore:
    def __init__(self, forum: ForumClient, clock: Clock = utcnow):
        self.forum = forum
        self.clock = clock

    async def _scan(self) -> List[Membership]:
        raws = await self.forum.list_posts(type=RecordType.membership.value)
        return [m for m in map_records(raws, Membership) if m.user_id and m.school_id]

    async def _records(self, user_id: str, school_id: str) -> List[Membership]:
        found = [m for m in await self._scan() if m.user_id == user_id and m.school_id == school_id]
        return _earliest_first(found)

    async def get(self, user_id: str, school_id: str) -> Optional[Membership]:
        records = await self._records(user_id, school_id)
        return records[0] if records else None

    async def add(self, user_id: str, school_id: str, role: Role, *, is_sandbox: bool = False) -> Membership:
        now = self.clock()
        entity = Membership(
            owner_id=user_id,
            created_at=now,
            is_sandbox=is_sandbox,
            user_id=user_id,
            school_id=school_id,
            role=Role(role),
            joined_at=now,
        )
        created = await self.forum.create_post(from_domain(entity))
        logger.info("membership added user=%s school=%s role=%s", user_id, school_id, entity.role.value)
        return with_store_identity(entity, created)

    async def list_for_user(self, user_id: str) -> Dict[str, MembershipInfo]:
        out: Dict[str, MembershipInfo] = {}
        for m in _earliest_first([m for m in await self._scan() if m.user_id == user_id]):
            if m.school_id not in out:
                out[m.school_id] = MembershipInfo(role=m.role, joined_at=m.joined_at)
        return out

    async def list_for_school(self, school_id: str) -> List[Membership]:
        seen: Dict[str, Membership] = {}
        for m in _earliest_first([m for m in await self._scan() if m.school_id == school_id]):
            seen.setdefault(m.user_id, m)
        return list(seen.values())

    async def update_role(self, user_id: str, school_id: str, role: Role) -> Membership:
        current = await self.get(user_id, school_id)
        if current is None:
            raise NotFoundError("Member not found")
        updated = current.model_copy(update={"role": Role(role)})
        await self.forum.update_post(current.id, {"extendedData": from_domain(updated)["extendedData"]})
        logger.info("membership role user=%s school=%s %s->%s",
                    user_id, school_id, current.role.value, updated.role.value)
        return updated

    async def remove(self, user_id: str, school_id: str) -> int:
        """Delete every record for (user, school); returns how many were removed."""
        records = await self._records(user_id, school_id)
        if not records:
            raise NotFoundError("Member not found")
        for m in records:
            await self.forum.delete_post(m.id)
        return len(records)


__all__ = ["MembershipStore"]
