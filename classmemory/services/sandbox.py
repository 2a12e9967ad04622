# services/sandbox.py
"""
The sandbox ("demo") school: a shared, pre-seeded tenant any user can join.

Provisioning is idempotent: a healthy sandbox is left alone, a missing or
damaged one is (re)created together with its sample content. Everyone joins
as a student, and the permission engine denies administrative actions there.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from classmemory.clock import Clock, utcnow
from classmemory.forum_client import ForumClient, ForumError, ForumNotFound
from classmemory.schemas import (
    Chapter,
    ChapterStatus,
    Contribution,
    ContributionType,
    Course,
    Membership,
    ProvisionSummary,
    RecordType,
    Role,
    School,
    SchoolSettings,
    Subject,
)
from classmemory.services.mappers import from_domain, map_records, to_domain, with_store_identity
from classmemory.services.memberships import MembershipStore
from classmemory.services.permissions import SANDBOX_JOIN_KEY, SANDBOX_SCHOOL_ID, SANDBOX_SCHOOL_NAME
from classmemory.services.school_settings import SchoolSettingsStore

logger = logging.getLogger(__name__)

SANDBOX_OWNER = "system"

SANDBOX_SETTINGS = {"min_contributions": 3, "student_cooldown": 0.5, "teacher_cooldown": 0.25}

SUBJECTS = [
    ("Mathematics", "Core mathematical concepts and problem solving", "#3B82F6"),
    ("Physics", "Understanding the physical world through scientific principles", "#10B981"),
    ("Computer Science", "Programming, algorithms, and computational thinking", "#8B5CF6"),
]

# (subject, code, title, description, teacher, term)
COURSES = [
    ("Mathematics", "MATH101", "Calculus I", "Introduction to differential and integral calculus",
     "Dr. Sarah Johnson", "Fall 2024"),
    ("Mathematics", "MATH201", "Linear Algebra", "Vector spaces, matrices, and linear transformations",
     "Prof. Michael Chen", "Spring 2024"),
    ("Physics", "PHYS101", "Classical Mechanics", "Newton's laws, energy, and momentum",
     "Dr. Emily Rodriguez", "Fall 2024"),
    ("Computer Science", "CS101", "Introduction to Programming", "Basic programming concepts using Python",
     "Prof. David Kim", "Fall 2024"),
]

# (course code, label, title, description)
CHAPTERS = [
    ("MATH101", "Chapter 1", "Limits and Continuity", "Understanding limits and continuous functions"),
    ("MATH101", "Chapter 2", "Derivatives", "Rules of differentiation and applications"),
    ("MATH201", "Chapter 1", "Vector Spaces", "Introduction to vector spaces and subspaces"),
    ("PHYS101", "Chapter 1", "Newton's Laws", "The three laws of motion and their applications"),
    ("CS101", "Chapter 1", "Variables and Data Types", "Basic programming concepts and data structures"),
]

# (course code, chapter title, type, title, content, anonymous, links)
CONTRIBUTIONS = [
    ("MATH101", "Limits and Continuity", ContributionType.takeaway, "Key Insight on Limits",
     "A limit describes the behavior of a function as the input approaches a particular value. "
     "It doesn't matter what happens exactly at that point, only what happens as we get arbitrarily close.",
     False, []),
    ("MATH101", "Limits and Continuity", ContributionType.solved_example, "Limit Calculation Example",
     "Find lim(x→2) (x² - 4)/(x - 2)\n\nSolution: Factor the numerator: (x² - 4) = (x + 2)(x - 2)\n"
     "So we have: lim(x→2) (x + 2)(x - 2)/(x - 2) = lim(x→2) (x + 2) = 4",
     False, []),
    ("MATH101", "Limits and Continuity", ContributionType.confusion, "Confusion about Continuity",
     "I'm having trouble understanding when a function is continuous vs when it just has a limit. "
     "Can someone explain the difference?",
     True, []),
    ("MATH101", "Derivatives", ContributionType.takeaway, "Power Rule",
     "The power rule is fundamental: d/dx(x^n) = n·x^(n-1). This works for any real number n.",
     False, []),
    ("MATH101", "Derivatives", ContributionType.resource, "Derivative Rules Cheat Sheet",
     "Here's a comprehensive list of derivative rules that I found helpful for the exam.",
     False, ["https://example.com/derivative-rules"]),
    ("PHYS101", "Newton's Laws", ContributionType.takeaway, "Newton's First Law",
     "An object at rest stays at rest, and an object in motion stays in motion, unless acted upon by an "
     "external force. This is also called the law of inertia.",
     False, []),
    ("PHYS101", "Newton's Laws", ContributionType.solved_example, "Force Calculation",
     "A 5kg object accelerates at 2 m/s². What force is applied?\n\nUsing F = ma:\nF = 5 kg × 2 m/s² = 10 N",
     False, []),
    ("CS101", "Variables and Data Types", ContributionType.takeaway, "Variable Naming Best Practices",
     "Use descriptive names for variables. Instead of 'x' or 'temp', use names like 'student_count' or "
     "'temperature_celsius' that clearly indicate what the variable represents.",
     False, []),
    ("CS101", "Variables and Data Types", ContributionType.solved_example, "Python Data Types Example",
     '# Different data types in Python\nname = "Alice"  # string\nage = 20        # integer\n'
     "height = 5.6    # float\nis_student = True  # boolean\ngrades = [85, 92, 78]  # list",
     False, []),
]


class SandboxBootstrapper:
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

    # ----- health -----

    async def _school_thread(self) -> Optional[School]:
        try:
            raw = await self.forum.get_thread(SANDBOX_SCHOOL_ID)
        except ForumNotFound:
            return None
        entity = to_domain(raw) if raw else None
        return entity if isinstance(entity, School) else None

    async def _has_subjects(self) -> bool:
        raws = await self.forum.list_posts(thread_id=SANDBOX_SCHOOL_ID, type=RecordType.subject.value)
        return any(s.is_sandbox and s.school_id == SANDBOX_SCHOOL_ID for s in map_records(raws, Subject))

    async def is_provisioned(self) -> bool:
        school = await self._school_thread()
        if school is None or not school.is_sandbox:
            return False
        return await self._has_subjects()

    # ----- provisioning -----

    def _school(self) -> School:
        return School(
            id=SANDBOX_SCHOOL_ID,
            owner_id=SANDBOX_OWNER,
            created_at=self.clock(),
            is_sandbox=True,
            name=SANDBOX_SCHOOL_NAME,
            description="A demonstration school showcasing Class Memory Rooms features",
            join_key=SANDBOX_JOIN_KEY,
            created_by=SANDBOX_OWNER,
        )

    async def _write_school(self) -> None:
        payload = from_domain(self._school())
        try:
            await self.forum.get_thread(SANDBOX_SCHOOL_ID)
        except ForumNotFound:
            await self.forum.create_thread(payload)
            logger.info("created sandbox school thread %s", SANDBOX_SCHOOL_ID)
            return
        update = {k: v for k, v in payload.items() if k != "id"}
        await self.forum.update_thread(SANDBOX_SCHOOL_ID, update)
        logger.info("repaired sandbox school thread %s", SANDBOX_SCHOOL_ID)

    async def _create_post(self, entity):
        created = await self.forum.create_post(from_domain(entity))
        return with_store_identity(entity, created)

    async def _seed(self) -> ProvisionSummary:
        now = self.clock()
        common = {"owner_id": SANDBOX_OWNER, "created_at": now, "is_sandbox": True}

        subjects: Dict[str, Subject] = {}
        for name, description, color in SUBJECTS:
            subjects[name] = await self._create_post(Subject(
                **common, school_id=SANDBOX_SCHOOL_ID, name=name, description=description, color=color))

        courses: Dict[str, Course] = {}
        for subject_name, code, title, description, teacher, term in COURSES:
            courses[code] = await self._create_post(Course(
                **common, school_id=SANDBOX_SCHOOL_ID, subject_id=subjects[subject_name].id, code=code,
                title=title, description=description, teacher=teacher, term=term))

        chapters: Dict[tuple, Chapter] = {}
        for code, label, title, description in CHAPTERS:
            chapter = Chapter(**common, course_id=courses[code].id, label=label, title=title,
                              description=description, status=ChapterStatus.collecting)
            created = await self.forum.create_thread(from_domain(chapter))
            chapters[(code, title)] = with_store_identity(chapter, created)

        contributions: List[Contribution] = []
        for code, chapter_title, ctype, title, content, anonymous, links in CONTRIBUTIONS:
            chapter = chapters[(code, chapter_title)]
            contributions.append(await self._create_post(Contribution(
                **common, chapter_id=chapter.id, type=ctype, title=title, content=content,
                anonymous=anonymous, author_id=SANDBOX_OWNER, links=links)))

        await self.settings_store.save(SchoolSettings(
            **common, school_id=SANDBOX_SCHOOL_ID, **SANDBOX_SETTINGS))

        return ProvisionSummary(
            school_id=SANDBOX_SCHOOL_ID,
            school_name=SANDBOX_SCHOOL_NAME,
            subject_count=len(subjects),
            course_count=len(courses),
            chapter_count=len(chapters),
            contribution_count=len(contributions),
        )

    async def ensure_provisioned(self) -> ProvisionSummary:
        if await self.is_provisioned():
            return ProvisionSummary(
                school_id=SANDBOX_SCHOOL_ID, school_name=SANDBOX_SCHOOL_NAME, already_provisioned=True)
        logger.info("provisioning sandbox school")
        await self._write_school()
        summary = await self._seed()
        logger.info("sandbox ready: %s", summary.model_dump())
        return summary

    # ----- enrolment -----

    async def auto_enroll(self, user_id: str, requested_role: Optional[Role] = None) -> Membership:
        """Join the sandbox. Always as a student, whatever ``requested_role`` says."""
        existing = await self.memberships.get(user_id, SANDBOX_SCHOOL_ID)
        if existing is not None:
            return existing
        if requested_role not in (None, Role.student):
            logger.info("sandbox enrolment for %s requested %s; enrolling as student", user_id, requested_role)
        membership = await self.memberships.add(user_id, SANDBOX_SCHOOL_ID, Role.student, is_sandbox=True)
        try:
            await self.forum.add_thread_participant(SANDBOX_SCHOOL_ID, user_id)
        except ForumError as e:
            logger.warning("could not add %s to sandbox thread participants: %s", user_id, e)
        return membership


__all__ = ["SandboxBootstrapper", "SANDBOX_SETTINGS", "SANDBOX_OWNER"]
