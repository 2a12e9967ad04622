# services/hierarchy.py
"""
Ownership lookups along school -> subject -> course -> chapter.

One ``Hierarchy`` lives for one request: lookups are memoised on the instance and
nothing is shared across calls. A record the store reports missing (404) resolves
to None; any other store failure propagates.
"""
from __future__ import annotations

from typing import Dict, Optional

from classmemory.forum_client import ForumClient, ForumNotFound
from classmemory.schemas import Chapter, Course, DomainEntity, School, Subject
from classmemory.services.mappers import to_domain


class Hierarchy:
    def __init__(self, forum: ForumClient):
        self.forum = forum
        self._threads: Dict[str, Optional[DomainEntity]] = {}
        self._posts: Dict[str, Optional[DomainEntity]] = {}

    async def thread(self, thread_id: str) -> Optional[DomainEntity]:
        if not thread_id:
            return None
        if thread_id not in self._threads:
            try:
                raw = await self.forum.get_thread(thread_id)
            except ForumNotFound:
                raw = None
            self._threads[thread_id] = to_domain(raw) if raw else None
        return self._threads[thread_id]

    async def post(self, post_id: str) -> Optional[DomainEntity]:
        if not post_id:
            return None
        if post_id not in self._posts:
            try:
                raw = await self.forum.get_post(post_id)
            except ForumNotFound:
                raw = None
            self._posts[post_id] = to_domain(raw) if raw else None
        return self._posts[post_id]

    async def school(self, school_id: str) -> Optional[School]:
        entity = await self.thread(school_id)
        return entity if isinstance(entity, School) else None

    async def chapter(self, chapter_id: str) -> Optional[Chapter]:
        entity = await self.thread(chapter_id)
        return entity if isinstance(entity, Chapter) else None

    async def subject(self, subject_id: str) -> Optional[Subject]:
        entity = await self.post(subject_id)
        return entity if isinstance(entity, Subject) else None

    async def course(self, course_id: str) -> Optional[Course]:
        entity = await self.post(course_id)
        return entity if isinstance(entity, Course) else None

    async def school_of_subject(self, subject: Subject) -> Optional[str]:
        return subject.school_id or None

    async def school_of_course(self, course: Course) -> Optional[str]:
        if not course.subject_id:
            return course.school_id or None
        subject = await self.subject(course.subject_id)
        if subject is None:
            return None
        return await self.school_of_subject(subject)

    async def school_of_chapter(self, chapter: Chapter) -> Optional[str]:
        course = await self.course(chapter.course_id)
        if course is None:
            return None
        return await self.school_of_course(course)

    async def school_of_chapter_id(self, chapter_id: str) -> Optional[str]:
        chapter = await self.chapter(chapter_id)
        if chapter is None:
            return None
        return await self.school_of_chapter(chapter)


__all__ = ["Hierarchy"]
