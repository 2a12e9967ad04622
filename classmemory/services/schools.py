# services/schools.py
"""School lifecycle: create, join, membership administration and AI settings."""
from __future__ import annotations

import logging
import secrets
import string
from typing import List, Optional

from classmemory.clock import Clock, utcnow
from classmemory.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from classmemory.forum_client import ForumClient, ForumError
from classmemory.schemas import (
    AISettingsUpdate,
    CreatedSchool,
    JoinedSchool,
    Membership,
    PermissionCheck,
    RecordType,
    Role,
    School,
    SchoolSettings,
    SchoolWithRole,
)
from classmemory.services.hierarchy import Hierarchy
from classmemory.services.mappers import from_domain, map_records, with_store_identity
from classmemory.services.memberships import MembershipStore
from classmemory.services.permissions import (
    SANDBOX_JOIN_KEY,
    SANDBOX_SCHOOL_ID,
    SANDBOX_SCHOOL_NAME,
    Action,
    can,
    is_sandbox_school,
)
from classmemory.services.sandbox import SandboxBootstrapper
from classmemory.services.school_settings import SchoolSettingsStore

logger = logging.getLogger(__name__)

JOIN_KEY_LENGTH = 6
MIN_NAME_LENGTH = 2


def _join_key(n: int = JOIN_KEY_LENGTH) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(n))


def require(membership: Optional[Membership], action: Action) -> Membership:
    if not can(membership, action):
        raise ForbiddenError()
    return membership


def parse_role(value: str) -> Role:
    try:
        return Role((value or "").strip().lower())
    except ValueError:
        raise ValidationFailedError("Invalid role. Must be student, teacher, or admin", field="newRole")


class SchoolService:
    def __init__(
        self,
        forum: ForumClient,
        memberships: MembershipStore,
        settings_store: SchoolSettingsStore,
        sandbox: SandboxBootstrapper,
        clock: Clock = utcnow,
    ):
        self.forum = forum
        self.memberships = memberships
        self.settings_store = settings_store
        self.sandbox = sandbox
        self.clock = clock

    async def _schools(self) -> List[School]:
        raws = await self.forum.list_threads(type=RecordType.school.value)
        return map_records(raws, School)

    async def _unique_join_key(self) -> str:
        taken = {s.join_key for s in await self._schools()} | {SANDBOX_JOIN_KEY}
        for _ in range(20):
            key = _join_key()
            if key not in taken:
                return key
        raise ConflictError("Could not allocate a join key. Please try again.")

    async def _add_participant(self, school_id: str, user_id: str) -> None:
        try:
            await self.forum.add_thread_participant(school_id, user_id)
        except ForumError as e:
            logger.warning("could not add %s to participants of %s: %s", user_id, school_id, e)

    # ---------- create / join ----------

    async def create_school(self, name: str, description: Optional[str], user_id: str) -> CreatedSchool:
        name = (name or "").strip()
        if len(name) < MIN_NAME_LENGTH:
            raise ValidationFailedError("School name must be at least 2 characters", field="name")
        description = (description or "").strip() or None

        now = self.clock()
        school = School(
            owner_id=user_id,
            created_at=now,
            name=name,
            description=description or f"Welcome to {name}!",
            join_key=await self._unique_join_key(),
            created_by=user_id,
        )
        created = await self.forum.create_thread(from_domain(school))
        school = with_store_identity(school, created)
        await self.memberships.add(user_id, school.id, Role.admin)
        await self._add_participant(school.id, user_id)
        logger.info("school %s created by %s", school.id, user_id)
        return CreatedSchool(school_id=school.id, join_key=school.join_key)

    async def join_school(self, user_id: str, join_key: str) -> JoinedSchool:
        key = (join_key or "").strip().upper()
        if len(key) != JOIN_KEY_LENGTH:
            raise ValidationFailedError("Join key must be exactly 6 characters", field="joinKey")

        if key == SANDBOX_JOIN_KEY:
            school_id, school_name = SANDBOX_SCHOOL_ID, SANDBOX_SCHOOL_NAME
        else:
            school = next((s for s in await self._schools() if s.join_key == key and s.id), None)
            if school is None:
                raise NotFoundError("Invalid join key")
            school_id, school_name = school.id, school.name

        if await self.memberships.get(user_id, school_id) is not None:
            raise ConflictError("Already a member of this school")

        if is_sandbox_school(school_id):
            membership = await self.sandbox.auto_enroll(user_id)
        else:
            membership = await self.memberships.add(user_id, school_id, Role.student)
            await self._add_participant(school_id, user_id)
        return JoinedSchool(school_id=school_id, school_name=school_name, role=membership.role)

    async def join_sandbox(self, user_id: str) -> JoinedSchool:
        existing = await self.memberships.get(user_id, SANDBOX_SCHOOL_ID)
        membership = existing or await self.sandbox.auto_enroll(user_id)
        return JoinedSchool(
            school_id=SANDBOX_SCHOOL_ID,
            school_name=SANDBOX_SCHOOL_NAME,
            role=membership.role,
            already_member=existing is not None,
        )

    async def _school(self, hierarchy: Hierarchy, school_id: str) -> Optional[School]:
        school = await hierarchy.school(school_id)
        if school is None and is_sandbox_school(school_id):
            school = School(id=SANDBOX_SCHOOL_ID, name=SANDBOX_SCHOOL_NAME, join_key=SANDBOX_JOIN_KEY,
                            is_sandbox=True)
        return school

    async def get_school(self, user_id: str, school_id: str) -> SchoolWithRole:
        """One school as seen by a member; outsiders get 403 whether or not it exists."""
        membership = await self.memberships.get(user_id, school_id)
        if membership is None:
            raise ForbiddenError()
        school = await self._school(Hierarchy(self.forum), school_id)
        if school is None:
            raise NotFoundError("School not found")
        return SchoolWithRole(school=school, role=membership.role, joined_at=membership.joined_at)

    async def list_schools_for_user(self, user_id: str) -> List[SchoolWithRole]:
        hierarchy = Hierarchy(self.forum)
        out: List[SchoolWithRole] = []
        for school_id, info in (await self.memberships.list_for_user(user_id)).items():
            school = await self._school(hierarchy, school_id)
            if school is None:
                logger.debug("membership of %s points at missing school %s", user_id, school_id)
                continue
            out.append(SchoolWithRole(school=school, role=info.role, joined_at=info.joined_at))
        out.sort(key=lambda s: s.joined_at)
        return out

    # ---------- permissions ----------

    async def check_permission(self, user_id: str, school_id: str, action: str) -> PermissionCheck:
        membership = await self.memberships.get(user_id, school_id)
        return PermissionCheck(
            allowed=can(membership, action),
            user_id=user_id,
            school_id=school_id,
            role=membership.role if membership else None,
        )

    # ---------- administration ----------

    async def regenerate_join_key(self, user_id: str, school_id: str) -> CreatedSchool:
        require(await self.memberships.get(user_id, school_id), Action.regenerate_join_key)
        school = await Hierarchy(self.forum).school(school_id)
        if school is None:
            raise NotFoundError("School not found")
        updated = school.model_copy(update={"join_key": await self._unique_join_key()})
        await self.forum.update_thread(school_id, {"extendedData": from_domain(updated)["extendedData"]})
        logger.info("join key regenerated for school %s by %s", school_id, user_id)
        return CreatedSchool(school_id=school_id, join_key=updated.join_key)

    async def list_members(self, user_id: str, school_id: str) -> List[Membership]:
        require(await self.memberships.get(user_id, school_id), Action.manage_members)
        return await self.memberships.list_for_school(school_id)

    async def update_member_role(self, user_id: str, school_id: str, target_user_id: str, new_role: str) -> Membership:
        role = parse_role(new_role)
        require(await self.memberships.get(user_id, school_id), Action.promote_members)
        if target_user_id == user_id and role is not Role.admin:
            raise ValidationFailedError("Cannot change your own admin role", field="newRole")
        return await self.memberships.update_role(target_user_id, school_id, role)

    async def remove_member(self, user_id: str, school_id: str, target_user_id: str) -> None:
        require(await self.memberships.get(user_id, school_id), Action.remove_members)
        if target_user_id == user_id:
            raise ValidationFailedError("Cannot remove yourself from the school", field="userId")
        await self.memberships.remove(target_user_id, school_id)
        logger.info("member %s removed from %s by %s", target_user_id, school_id, user_id)

    # ---------- AI settings ----------

    async def get_ai_settings(self, user_id: str, school_id: str) -> SchoolSettings:
        if await self.memberships.get(user_id, school_id) is None:
            raise ForbiddenError()
        return await self.settings_store.get(school_id)

    async def update_ai_settings(self, user_id: str, school_id: str, update: AISettingsUpdate) -> SchoolSettings:
        require(await self.memberships.get(user_id, school_id), Action.change_ai_settings)
        return await self.settings_store.update(
            school_id,
            min_contributions=update.min_contributions,
            student_cooldown=update.student_cooldown,
            teacher_cooldown=update.teacher_cooldown,
            user_id=user_id,
        )


__all__ = ["SchoolService", "require", "parse_role"]
