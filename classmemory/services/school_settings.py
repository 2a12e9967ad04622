# services/school_settings.py
"""Per-school AI generation settings, stored as ``school_settings`` posts in the school thread."""
from __future__ import annotations

import logging
from typing import Any, Optional

from classmemory.clock import Clock, utcnow
from classmemory.errors import ValidationFailedError
from classmemory.forum_client import ForumClient
from classmemory.schemas import RecordType, SchoolSettings
from classmemory.services.mappers import from_domain, map_records, with_store_identity

logger = logging.getLogger(__name__)

MIN_CONTRIBUTIONS_RANGE = (1, 50)
COOLDOWN_HOURS_RANGE = (0, 24)


def _validate_min_contributions(value: Any) -> int:
    lo, hi = MIN_CONTRIBUTIONS_RANGE
    is_int = isinstance(value, int) or (isinstance(value, float) and value.is_integer())
    if isinstance(value, bool) or not is_int or not lo <= value <= hi:
        raise ValidationFailedError(
            f"minContributions must be an integer between {lo} and {hi}", field="minContributions")
    return int(value)


def _validate_cooldown(value: Any, field: str) -> float:
    lo, hi = COOLDOWN_HOURS_RANGE
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value or not lo <= value <= hi:
        raise ValidationFailedError(f"{field} must be a number of hours between {lo} and {hi}", field=field)
    return float(value)


class SchoolSettingsStore:
    def __init__(
        self,
        forum: ForumClient,
        clock: Clock = utcnow,
        *,
        min_contributions: int = 5,
        student_cooldown: float = 2.0,
        teacher_cooldown: float = 0.5,
    ):
        self.forum = forum
        self.clock = clock
        self.min_contributions = min_contributions
        self.student_cooldown = student_cooldown
        self.teacher_cooldown = teacher_cooldown

    def defaults(self, school_id: str) -> SchoolSettings:
        return SchoolSettings(
            school_id=school_id,
            min_contributions=self.min_contributions,
            student_cooldown=self.student_cooldown,
            teacher_cooldown=self.teacher_cooldown,
        )

    async def _latest(self, school_id: str) -> Optional[SchoolSettings]:
        raws = await self.forum.list_posts(thread_id=school_id, type=RecordType.school_settings.value)
        records = [s for s in map_records(raws, SchoolSettings) if s.school_id == school_id]
        if not records:
            return None
        return max(records, key=lambda s: (s.updated_at, s.id))

    async def get(self, school_id: str) -> SchoolSettings:
        """The most recently updated record for the school, else configured defaults."""
        return await self._latest(school_id) or self.defaults(school_id)

    async def save(self, settings: SchoolSettings) -> SchoolSettings:
        """Write ``settings`` as-is (no range checks); patches the existing record when there is one."""
        current = await self._latest(settings.school_id)
        record = settings.model_copy(update={"updated_at": self.clock()})
        if current is not None:
            record = record.model_copy(update={"id": current.id, "created_at": current.created_at})
            await self.forum.update_post(current.id, {"extendedData": from_domain(record)["extendedData"]})
            return record
        record = record.model_copy(update={"id": "", "created_at": record.updated_at})
        created = await self.forum.create_post(from_domain(record))
        return with_store_identity(record, created)

    async def update(
        self,
        school_id: str,
        *,
        min_contributions: Any = None,
        student_cooldown: Any = None,
        teacher_cooldown: Any = None,
        user_id: str = "",
    ) -> SchoolSettings:
        changes = {}
        if min_contributions is not None:
            changes["min_contributions"] = _validate_min_contributions(min_contributions)
        if student_cooldown is not None:
            changes["student_cooldown"] = _validate_cooldown(student_cooldown, "studentCooldown")
        if teacher_cooldown is not None:
            changes["teacher_cooldown"] = _validate_cooldown(teacher_cooldown, "teacherCooldown")
        if not changes:
            raise ValidationFailedError("No valid settings provided")

        current = await self.get(school_id)
        if not current.owner_id and user_id:
            changes["owner_id"] = user_id
        saved = await self.save(current.model_copy(update=changes))
        logger.info("ai settings updated school=%s %s", school_id, changes)
        return saved


__all__ = ["SchoolSettingsStore", "MIN_CONTRIBUTIONS_RANGE", "COOLDOWN_HOURS_RANGE"]
