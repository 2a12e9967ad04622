# services/notes_generation.py
"""
AI note generation: threshold and cooldown admission, prompt building, and
versioned persistence of ``unified_notes``.

Everything from the eligibility check to the last write runs under a
per-chapter lock, so versions stay contiguous and cooldowns hold within this
process. A post-write re-read catches writers from other processes.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import List, Optional, Union

from classmemory.background import KeyedLock
from classmemory.clock import Clock, utcnow
from classmemory.errors import ConflictError, NotFoundError, UpstreamError
from classmemory.forum_client import ForumClient, ForumError
from classmemory.llm_client import LLMError, TextGenerator, _sanitize_llm_text, parse_json_object
from classmemory.schemas import (
    AIGenerationRecord,
    Chapter,
    Contribution,
    ContributionType,
    Eligibility,
    GenerationResult,
    KeyConcept,
    NoteResource,
    NoteSections,
    RecordType,
    Role,
    SchoolSettings,
    UnifiedNotes,
    WorkedExample,
)
from classmemory.services.hierarchy import Hierarchy
from classmemory.services.mappers import coerce_sections, from_domain, map_records, with_store_identity
from classmemory.services.school_settings import SchoolSettingsStore

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000
MS_PER_MINUTE = 60_000

SYSTEM_PROMPT = (
    "You are a helpful study assistant that creates comprehensive lecture notes. "
    "Always respond with valid JSON only."
)


# ---------- eligibility ----------

def cooldown_hours(role: Role, settings: SchoolSettings) -> float:
    role = Role(role)
    if role is Role.admin:
        return 0.0
    if role is Role.teacher:
        return settings.teacher_cooldown
    return settings.student_cooldown


def evaluate_eligibility(
    role: Role,
    contribution_count: int,
    settings: SchoolSettings,
    last_generation: Optional[AIGenerationRecord],
    now: datetime,
) -> Eligibility:
    """Pure admission rule: threshold first, then the role's cooldown since the last generation."""
    required = settings.min_contributions
    if contribution_count < required:
        return Eligibility(
            allowed=False,
            reason=f"Need at least {required} contributions to generate notes",
            contribution_count=contribution_count,
            required=required,
        )
    if last_generation is None:
        return Eligibility(allowed=True, contribution_count=contribution_count, required=required)

    cooldown_ms = cooldown_hours(role, settings) * MS_PER_HOUR
    elapsed_ms = max((now - last_generation.generated_at).total_seconds() * 1000, 0.0)
    if elapsed_ms >= cooldown_ms:
        return Eligibility(allowed=True, contribution_count=contribution_count, required=required)

    remaining = math.ceil((cooldown_ms - elapsed_ms) / MS_PER_MINUTE)
    return Eligibility(
        allowed=False,
        reason=f"Please wait {remaining} minutes before generating notes again",
        contribution_count=contribution_count,
        required=required,
        remaining_minutes=remaining,
    )


# ---------- compilation ----------

def build_prompt(chapter: Chapter, contributions: List[Contribution]) -> str:
    lines = [
        "Generate comprehensive, well-structured unified notes for a lecture chapter.",
        "",
        f"Chapter: {chapter.title}",
        f"Contributions: {len(contributions)} student posts",
        "",
        "Student contributions:",
        "",
    ]
    for i, c in enumerate(contributions, 1):
        lines.append(f"{i}. [{c.type.value}] {c.title or 'Untitled'}\n{c.content}\n")
    lines += [
        "Return a JSON object with these fields:",
        "- overview: array of 3-5 key points",
        "- keyConcepts: array of {title, explanation} objects",
        "- definitions: array of {term, definition} objects",
        "- formulas: array of {name, formula, description} objects",
        "- steps: array of step-by-step explanation strings",
        "- examples: array of {title, problem, solution} objects",
        "- mistakes: array of common mistake strings",
        "- resources: array of {title, url, type} objects",
        "- quickRevision: array of quick review point strings",
        "",
        "Return ONLY valid JSON, no markdown.",
    ]
    return "\n".join(lines)


def parse_notes(raw: str) -> NoteSections:
    try:
        return coerce_sections(parse_json_object(raw))
    except LLMError:
        logger.warning("model output was not JSON; keeping it as a single overview point")
        text = _sanitize_llm_text(raw)[:200]
        return NoteSections(overview=[text] if text else [])


def compile_offline(contributions: List[Contribution]) -> NoteSections:
    """Deterministic notes from the contributions themselves, used when no model is configured."""
    takeaways = [c for c in contributions if c.type is ContributionType.takeaway]
    confusions = [c for c in contributions if c.type is ContributionType.confusion]
    examples = [c for c in contributions if c.type is ContributionType.solved_example]
    resources = [c for c in contributions if c.type is ContributionType.resource or c.link or c.links]

    return NoteSections(
        overview=[t.content or t.title or "Key concept from class" for t in takeaways[:3]],
        key_concepts=[
            KeyConcept(title=t.title or f"Concept {i}", explanation=t.content or "Important concept discussed in class")
            for i, t in enumerate(takeaways[:4], 1)
        ],
        steps=["Review the key concepts", "Practice with examples", "Ask questions about confusing topics"],
        examples=[
            WorkedExample(title=e.title or f"Example {i}", problem=e.content or "Practice problem",
                          solution="Work through the steps shared by your classmates")
            for i, e in enumerate(examples[:2], 1)
        ],
        mistakes=[c.content or c.title or "Common confusion point" for c in confusions[:3]],
        resources=[
            NoteResource(title=r.title or "Resource", url=r.link or (r.links[0] if r.links else "#"))
            for r in resources[:3]
        ],
        quick_revision=[t.title or t.content[:50] or "Review point" for t in takeaways[:5]],
    )


# ---------- governor ----------

class NotesGovernor:
    def __init__(
        self,
        forum: ForumClient,
        settings_store: SchoolSettingsStore,
        *,
        generator: Optional[TextGenerator] = None,
        clock: Clock = utcnow,
        locks: Optional[KeyedLock] = None,
    ):
        self.forum = forum
        self.settings_store = settings_store
        self.generator = generator
        self.clock = clock
        self.locks = locks if locks is not None else KeyedLock()

    # ----- reads -----

    async def contributions(self, chapter_id: str) -> List[Contribution]:
        raws = await self.forum.list_posts(thread_id=chapter_id, type=RecordType.contribution.value)
        items = [c for c in map_records(raws, Contribution) if c.chapter_id == chapter_id and not c.parent_id]
        return sorted(items, key=lambda c: (c.created_at, c.id))

    async def list_versions(self, chapter_id: str) -> List[UnifiedNotes]:
        """Every notes version of the chapter, newest first."""
        raws = await self.forum.list_posts(thread_id=chapter_id, type=RecordType.unified_notes.value)
        notes = [n for n in map_records(raws, UnifiedNotes) if n.chapter_id == chapter_id]
        return sorted(notes, key=lambda n: (n.version, n.created_at, n.id), reverse=True)

    async def latest_notes(self, chapter_id: str) -> Optional[UnifiedNotes]:
        versions = await self.list_versions(chapter_id)
        return versions[0] if versions else None

    async def last_generation(self, chapter_id: str) -> Optional[AIGenerationRecord]:
        raws = await self.forum.list_posts(thread_id=chapter_id, type=RecordType.ai_generation.value)
        records = [r for r in map_records(raws, AIGenerationRecord) if r.chapter_id == chapter_id]
        if not records:
            return None
        return max(records, key=lambda r: (r.generated_at, r.id))

    async def check_eligibility(
        self, chapter_id: str, role: Role, contribution_count: int, settings: SchoolSettings
    ) -> Eligibility:
        last = None
        if contribution_count >= settings.min_contributions:
            last = await self.last_generation(chapter_id)
        return evaluate_eligibility(role, contribution_count, settings, last, self.clock())

    # ----- writes -----

    async def _discard(self, post_id: str) -> None:
        if not post_id:
            return
        try:
            await self.forum.delete_post(post_id)
        except ForumError:
            logger.warning("could not delete post %s while rolling back a generation", post_id, exc_info=True)

    async def record_and_version(
        self,
        chapter_id: str,
        user_id: str,
        role: Role,
        contribution_count: int,
        sections: NoteSections,
        *,
        is_sandbox: bool = False,
    ) -> UnifiedNotes:
        """Write the next notes version and its generation record. Call with the chapter lock held."""
        role = Role(role)
        existing = await self.list_versions(chapter_id)
        version = len(existing) + 1
        now = self.clock()

        notes = UnifiedNotes(
            owner_id=user_id,
            created_at=now,
            is_sandbox=is_sandbox,
            chapter_id=chapter_id,
            version=version,
            generated_by=user_id,
            generator_role=role,
            generated_at=now,
            contribution_count=contribution_count,
            sections=sections,
        )
        try:
            created = await self.forum.create_post(from_domain(notes))
        except ForumError as e:
            raise UpstreamError("Failed to save generated notes") from e
        notes = with_store_identity(notes, created)

        record = AIGenerationRecord(
            owner_id=user_id,
            created_at=now,
            is_sandbox=is_sandbox,
            chapter_id=chapter_id,
            generated_by=user_id,
            generator_role=role,
            contribution_count=contribution_count,
            generated_at=now,
        )
        try:
            created = await self.forum.create_post(from_domain(record))
        except ForumError as e:
            await self._discard(notes.id)
            raise UpstreamError("Failed to save generated notes") from e
        record = with_store_identity(record, created)

        same_version = [n for n in await self.list_versions(chapter_id) if n.version == version]
        winner = min(same_version, key=lambda n: (n.created_at, n.id), default=notes)
        if winner.id != notes.id:
            await self._discard(notes.id)
            await self._discard(record.id)
            raise ConflictError("Notes for this chapter were generated at the same time. Please try again.")

        logger.info("notes v%s written chapter=%s by=%s (%s) contributions=%s",
                    version, chapter_id, user_id, role.value, contribution_count)
        return notes

    async def _compile(self, chapter: Chapter, contributions: List[Contribution]) -> NoteSections:
        if self.generator is None:
            return compile_offline(contributions)
        try:
            raw = await self.generator.generate(build_prompt(chapter, contributions), system=SYSTEM_PROMPT)
        except LLMError as e:
            logger.warning("note generation failed for chapter %s: %s", chapter.id, e)
            raise UpstreamError("AI generation failed. Please try again.") from e
        return parse_notes(raw)

    async def generate_notes(self, chapter_id: str, user_id: str, role: Role) -> Union[GenerationResult, Eligibility]:
        """
        Full generation request. Returns the new version, or the ``Eligibility``
        explaining why nothing was generated. The caller resolves ``role`` from
        the membership store.
        """
        async with self.locks.hold(chapter_id):
            hierarchy = Hierarchy(self.forum)
            chapter = await hierarchy.chapter(chapter_id)
            if chapter is None:
                raise NotFoundError("Chapter not found")

            contributions = await self.contributions(chapter_id)
            school_id = await hierarchy.school_of_chapter(chapter)
            if school_id:
                settings = await self.settings_store.get(school_id)
            else:
                settings = self.settings_store.defaults("")

            eligibility = await self.check_eligibility(chapter_id, role, len(contributions), settings)
            if not eligibility.allowed:
                logger.info("generation refused chapter=%s user=%s: %s", chapter_id, user_id, eligibility.reason)
                return eligibility

            sections = await self._compile(chapter, contributions)
            notes = await self.record_and_version(
                chapter_id, user_id, role, len(contributions), sections, is_sandbox=chapter.is_sandbox,
            )
            return GenerationResult(
                post_id=notes.id,
                version=notes.version,
                content=notes.sections,
                contribution_count=notes.contribution_count,
            )


__all__ = [
    "NotesGovernor",
    "evaluate_eligibility",
    "cooldown_hours",
    "build_prompt",
    "parse_notes",
    "compile_offline",
]
