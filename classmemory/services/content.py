# services/content.py
"""Subjects, courses, chapters, contributions, replies and the "helpful" toggle."""
from __future__ import annotations

import logging
from collections import Counter
from typing import List, Optional, Tuple

from classmemory.clock import Clock, utcnow
from classmemory.errors import ForbiddenError, NotFoundError, ValidationFailedError
from classmemory.forum_client import ForumClient
from classmemory.schemas import (
    Chapter,
    ChapterCreate,
    ChapterStatus,
    Contribution,
    ContributionCreate,
    Course,
    CourseCreate,
    Membership,
    RecordType,
    ReplyCreate,
    Subject,
    SubjectCreate,
    UnifiedNotes,
)
from classmemory.services.hierarchy import Hierarchy
from classmemory.services.mappers import from_domain, map_records, with_store_identity
from classmemory.services.memberships import MembershipStore
from classmemory.services.permissions import Action, is_sandbox_school
from classmemory.services.school_settings import SchoolSettingsStore
from classmemory.services.schools import require

logger = logging.getLogger(__name__)


def derive_status(contribution_count: int, has_notes: bool, min_contributions: int) -> ChapterStatus:
    if has_notes:
        return ChapterStatus.compiled
    if contribution_count >= min_contributions:
        return ChapterStatus.ai_ready
    return ChapterStatus.collecting


def _public(contribution: Contribution) -> Contribution:
    """Anonymous posts leave no author trace in responses."""
    if not contribution.anonymous:
        return contribution
    return contribution.model_copy(update={"author_id": "", "author_name": None})


class ContentService:
    def __init__(
        self,
        forum: ForumClient,
        memberships: MembershipStore,
        settings_store: SchoolSettingsStore,
        clock: Clock = utcnow,
    ):
        self.forum = forum
        self.memberships = memberships
        self.settings_store = settings_store
        self.clock = clock

    async def _member(self, user_id: str, school_id: Optional[str]) -> Membership:
        membership = await self.memberships.get(user_id, school_id) if school_id else None
        if membership is None:
            raise ForbiddenError()
        return membership

    async def chapter_membership(self, user_id: str, chapter_id: str) -> Tuple[Chapter, Membership]:
        """The chapter and the caller's membership in the school that owns it."""
        hierarchy = Hierarchy(self.forum)
        chapter = await hierarchy.chapter(chapter_id)
        if chapter is None:
            raise NotFoundError("Chapter not found")
        school_id = await hierarchy.school_of_chapter(chapter)
        return chapter, await self._member(user_id, school_id)

    # ---------- structure ----------

    async def create_subject(self, user_id: str, school_id: str, body: SubjectCreate) -> Subject:
        require(await self.memberships.get(user_id, school_id), Action.create_subject)
        if await Hierarchy(self.forum).school(school_id) is None:
            raise NotFoundError("School not found")
        name = body.name.strip()
        if not name:
            raise ValidationFailedError("Subject name is required", field="name")
        subject = Subject(
            owner_id=user_id,
            created_at=self.clock(),
            is_sandbox=is_sandbox_school(school_id),
            school_id=school_id,
            name=name,
            description=body.description,
            color=body.color or "#3B82F6",
        )
        return with_store_identity(subject, await self.forum.create_post(from_domain(subject)))

    async def create_course(self, user_id: str, subject_id: str, body: CourseCreate) -> Course:
        subject = await Hierarchy(self.forum).subject(subject_id)
        if subject is None:
            raise NotFoundError("Subject not found")
        require(await self.memberships.get(user_id, subject.school_id), Action.create_course)
        code, title = body.code.strip().upper(), body.title.strip()
        if not code or not title:
            raise ValidationFailedError("Course code and title are required", field="code" if not code else "title")
        course = Course(
            owner_id=user_id,
            created_at=self.clock(),
            is_sandbox=subject.is_sandbox,
            school_id=subject.school_id,
            subject_id=subject.id,
            code=code,
            title=title,
            description=body.description,
            teacher=body.teacher or "TBD",
            term=body.term or "Current",
        )
        return with_store_identity(course, await self.forum.create_post(from_domain(course)))

    async def create_chapter(self, user_id: str, course_id: str, body: ChapterCreate) -> Chapter:
        hierarchy = Hierarchy(self.forum)
        course = await hierarchy.course(course_id)
        if course is None:
            raise NotFoundError("Course not found")
        require(await self.memberships.get(user_id, await hierarchy.school_of_course(course)), Action.create_course)
        title = body.title.strip()
        if not title:
            raise ValidationFailedError("Chapter title is required", field="title")
        chapter = Chapter(
            owner_id=user_id,
            created_at=self.clock(),
            is_sandbox=course.is_sandbox,
            course_id=course.id,
            label=body.label or "Chapter",
            title=title,
            description=body.description,
        )
        return with_store_identity(chapter, await self.forum.create_thread(from_domain(chapter)))

    async def _with_status(self, chapter: Chapter, min_contributions: int) -> Chapter:
        posts = await self.forum.list_posts(thread_id=chapter.id)
        count = len([c for c in map_records(posts, Contribution) if not c.parent_id])
        has_notes = bool(map_records(posts, UnifiedNotes))
        return chapter.model_copy(update={"status": derive_status(count, has_notes, min_contributions)})

    async def list_chapters(self, user_id: str, course_id: str) -> List[Chapter]:
        """Chapters of a course, each with its status derived from contributions and notes."""
        hierarchy = Hierarchy(self.forum)
        course = await hierarchy.course(course_id)
        if course is None:
            raise NotFoundError("Course not found")
        school_id = await hierarchy.school_of_course(course)
        await self._member(user_id, school_id)
        settings = await self.settings_store.get(school_id)

        raws = await self.forum.list_threads(type=RecordType.chapter.value)
        out: List[Chapter] = []
        for chapter in map_records(raws, Chapter):
            if chapter.course_id != course_id:
                continue
            out.append(await self._with_status(chapter, settings.min_contributions))
        out.sort(key=lambda c: (c.created_at, c.id))
        return out

    async def get_chapter(self, user_id: str, chapter_id: str) -> Chapter:
        chapter, membership = await self.chapter_membership(user_id, chapter_id)
        settings = await self.settings_store.get(membership.school_id)
        return await self._with_status(chapter, settings.min_contributions)

    # ---------- browse ----------

    async def list_subjects(self, user_id: str, school_id: str) -> List[Subject]:
        await self._member(user_id, school_id)
        raws = await self.forum.list_posts(thread_id=school_id, type=RecordType.subject.value)
        items = [s for s in map_records(raws, Subject) if s.school_id == school_id]
        items.sort(key=lambda s: (s.name.lower(), s.id))
        return items

    async def get_subject(self, user_id: str, subject_id: str) -> Subject:
        subject = await Hierarchy(self.forum).subject(subject_id)
        if subject is None:
            raise NotFoundError("Subject not found")
        await self._member(user_id, subject.school_id)
        return subject

    async def list_courses(self, user_id: str, subject_id: str) -> List[Course]:
        subject = await self.get_subject(user_id, subject_id)
        raws = await self.forum.list_posts(thread_id=subject.school_id, type=RecordType.course.value)
        items = [c for c in map_records(raws, Course) if c.subject_id == subject.id]
        items.sort(key=lambda c: (c.code, c.id))
        return items

    async def get_course(self, user_id: str, course_id: str) -> Course:
        hierarchy = Hierarchy(self.forum)
        course = await hierarchy.course(course_id)
        if course is None:
            raise NotFoundError("Course not found")
        await self._member(user_id, await hierarchy.school_of_course(course))
        return course

    # ---------- contributions ----------

    async def create_contribution(
        self, user_id: str, chapter_id: str, body: ContributionCreate, *, author_name: Optional[str] = None
    ) -> Contribution:
        chapter, _ = await self.chapter_membership(user_id, chapter_id)
        content = (body.content or "").strip()
        if not content:
            raise ValidationFailedError("Contribution content is required", field="content")
        contribution = Contribution(
            owner_id=user_id,
            created_at=self.clock(),
            is_sandbox=chapter.is_sandbox,
            chapter_id=chapter.id,
            type=body.type,
            title=(body.title or "").strip() or None,
            content=content,
            anonymous=body.anonymous,
            author_id=user_id,
            author_name=None if body.anonymous else author_name,
            link=body.link,
            image_url=body.image_url,
            links=list(body.links),
            parent_id=body.parent_id,
        )
        created = await self.forum.create_post(from_domain(contribution))
        logger.info("contribution (%s) added to chapter %s", contribution.type.value, chapter.id)
        return with_store_identity(contribution, created)

    async def list_contributions(self, user_id: str, chapter_id: str) -> List[Contribution]:
        """Top-level contributions, newest first; replies are only counted."""
        await self.chapter_membership(user_id, chapter_id)
        raws = await self.forum.list_posts(thread_id=chapter_id, type=RecordType.contribution.value)
        posts = [c for c in map_records(raws, Contribution) if c.chapter_id == chapter_id]
        replies = Counter(c.parent_id for c in posts if c.parent_id)
        items = [c.model_copy(update={"reply_count": replies[c.id]}) for c in posts if not c.parent_id]
        items.sort(key=lambda c: (c.created_at, c.id), reverse=True)
        return [_public(c) for c in items]

    async def _contribution(self, user_id: str, post_id: str) -> Contribution:
        post = await Hierarchy(self.forum).post(post_id)
        if not isinstance(post, Contribution):
            raise NotFoundError("Contribution not found")
        await self.chapter_membership(user_id, post.chapter_id)
        return post

    async def get_contribution(self, user_id: str, post_id: str) -> Contribution:
        return _public(await self._contribution(user_id, post_id))

    # ---------- replies ----------

    async def list_replies(self, user_id: str, post_id: str) -> List[Contribution]:
        """Replies to one contribution, oldest first."""
        parent = await self._contribution(user_id, post_id)
        raws = await self.forum.list_posts(thread_id=parent.chapter_id, type=RecordType.contribution.value)
        items = [c for c in map_records(raws, Contribution) if c.parent_id == parent.id]
        items.sort(key=lambda c: (c.created_at, c.id))
        return [_public(c) for c in items]

    async def create_reply(
        self, user_id: str, post_id: str, body: ReplyCreate, *, author_name: Optional[str] = None
    ) -> Contribution:
        parent = await self._contribution(user_id, post_id)
        content = (body.content or "").strip()
        if not content:
            raise ValidationFailedError("Reply content is required", field="content")
        reply = Contribution(
            owner_id=user_id,
            created_at=self.clock(),
            is_sandbox=parent.is_sandbox,
            chapter_id=parent.chapter_id,
            type=parent.type,
            content=content,
            anonymous=body.anonymous,
            author_id=user_id,
            author_name=None if body.anonymous else author_name,
            parent_id=parent.id,
        )
        created = await self.forum.create_post(from_domain(reply))
        logger.info("reply added to contribution %s", parent.id)
        return with_store_identity(reply, created)

    # ---------- helpful ----------

    async def _liked_by(self, post_id: str, user_id: str) -> Tuple[bool, int]:
        likes = await self.forum.get_post_likes(post_id)
        liked = any(str(like.get("userId")) == user_id for like in likes["likes"])
        return liked, likes["count"]

    async def mark_helpful(self, user_id: str, post_id: str) -> int:
        """Idempotent: marking twice counts once. Returns the helpful count."""
        await self._contribution(user_id, post_id)
        liked, count = await self._liked_by(post_id, user_id)
        if liked:
            return count
        await self.forum.like_post(post_id, user_id)
        return count + 1

    async def unmark_helpful(self, user_id: str, post_id: str) -> int:
        await self._contribution(user_id, post_id)
        liked, count = await self._liked_by(post_id, user_id)
        if not liked:
            return count
        await self.forum.unlike_post(post_id, user_id)
        return max(count - 1, 0)


__all__ = ["ContentService", "derive_status"]
