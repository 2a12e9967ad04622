import asyncio
from datetime import timedelta

import pytest

from classmemory.errors import ConflictError, NotFoundError, UpstreamError
from classmemory.llm_client import LLMError
from classmemory.schemas import (
    AIGenerationRecord,
    AISettingsUpdate,
    ContributionType,
    Eligibility,
    GenerationResult,
    Role,
    SchoolSettings,
)
from classmemory.services.notes_generation import NotesGovernor, compile_offline, evaluate_eligibility

from conftest import StubGenerator

STUDENT = "u-student"


async def school_with_student(services, make_school):
    school = await make_school()
    await services.schools.join_school(STUDENT, school.join_key)
    return school


# ---------- admission rule ----------

def test_threshold_is_checked_before_cooldown(clock):
    last = AIGenerationRecord(chapter_id="ch1", generated_at=clock.now)
    result = evaluate_eligibility(Role.student, 2, SchoolSettings(), last, clock.now)
    assert not result.allowed
    assert result.required == 5
    assert result.contribution_count == 2
    assert result.remaining_minutes is None


def test_cooldown_by_role(clock):
    settings = SchoolSettings(student_cooldown=2, teacher_cooldown=0.5)
    last = AIGenerationRecord(chapter_id="ch1", generated_at=clock.now - timedelta(minutes=10))
    assert evaluate_eligibility(Role.student, 5, settings, last, clock.now).remaining_minutes == 110
    assert evaluate_eligibility(Role.teacher, 5, settings, last, clock.now).remaining_minutes == 20
    assert evaluate_eligibility(Role.admin, 5, settings, last, clock.now).allowed
    assert evaluate_eligibility(Role.student, 5, settings, None, clock.now).allowed


# ---------- end to end through the governor ----------

@pytest.mark.asyncio
async def test_three_of_five_contributions_is_refused(services, make_school, contribute, forum):
    school = await school_with_student(services, make_school)
    await contribute(STUDENT, school.chapter_id, 3)

    result = await services.governor.generate_notes(school.chapter_id, STUDENT, Role.student)

    assert isinstance(result, Eligibility)
    assert not result.allowed
    assert (result.contribution_count, result.required) == (3, 5)
    assert forum.of_type("unified_notes") == []


@pytest.mark.asyncio
async def test_student_cooldown_is_two_hours(services, make_school, contribute, clock):
    school = await school_with_student(services, make_school)
    await contribute(STUDENT, school.chapter_id, 5)
    governor = services.governor

    first = await governor.generate_notes(school.chapter_id, STUDENT, Role.student)
    assert isinstance(first, GenerationResult)
    assert first.version == 1
    assert first.contribution_count == 5

    again = await governor.generate_notes(school.chapter_id, STUDENT, Role.student)
    assert isinstance(again, Eligibility)
    assert again.remaining_minutes == 120

    clock.advance(minutes=119, seconds=30)
    assert (await governor.generate_notes(school.chapter_id, STUDENT, Role.student)).remaining_minutes == 1

    clock.advance(seconds=30)
    second = await governor.generate_notes(school.chapter_id, STUDENT, Role.student)
    assert isinstance(second, GenerationResult)
    assert second.version == 2


@pytest.mark.asyncio
async def test_concurrent_admin_generations_get_versions_one_and_two(services, make_school, contribute):
    school = await make_school()
    await contribute(school.admin, school.chapter_id, 5)
    governor = services.governor

    results = await asyncio.gather(
        governor.generate_notes(school.chapter_id, school.admin, Role.admin),
        governor.generate_notes(school.chapter_id, school.admin, Role.admin),
    )

    assert sorted(r.version for r in results) == [1, 2]
    assert len(governor.locks) == 0


@pytest.mark.asyncio
async def test_versions_are_contiguous(services, make_school, contribute):
    school = await make_school()
    await contribute(school.admin, school.chapter_id, 5)
    for _ in range(4):
        await services.governor.generate_notes(school.chapter_id, school.admin, Role.admin)

    versions = await services.governor.list_versions(school.chapter_id)
    assert [n.version for n in versions] == [4, 3, 2, 1]
    assert (await services.governor.latest_notes(school.chapter_id)).version == 4


@pytest.mark.asyncio
async def test_school_settings_lower_the_threshold(services, make_school, contribute):
    school = await make_school()
    await services.schools.update_ai_settings(school.admin, school.school_id, AISettingsUpdate(min_contributions=3))
    await contribute(school.admin, school.chapter_id, 3)

    result = await services.governor.generate_notes(school.chapter_id, school.admin, Role.admin)
    assert isinstance(result, GenerationResult)


@pytest.mark.asyncio
async def test_unknown_chapter(services):
    with pytest.raises(NotFoundError):
        await services.governor.generate_notes("nope", "u1", Role.admin)


# ---------- generator and write failures ----------

def governor_with(services, clock, generator):
    return NotesGovernor(services.forum, services.settings_store, generator=generator, clock=clock)


@pytest.mark.asyncio
async def test_generator_failure_writes_nothing(services, make_school, contribute, forum, clock):
    school = await make_school()
    await contribute(school.admin, school.chapter_id, 5)
    governor = governor_with(services, clock, StubGenerator(error=LLMError("ollama down")))

    with pytest.raises(UpstreamError):
        await governor.generate_notes(school.chapter_id, school.admin, Role.admin)

    assert forum.of_type("unified_notes") == []
    assert forum.of_type("ai_generation") == []


@pytest.mark.asyncio
async def test_failed_generation_record_removes_the_notes_post(services, make_school, contribute, forum):
    school = await make_school()
    await contribute(school.admin, school.chapter_id, 5)
    forum.failures["create_post"] = lambda p: p["extendedData"]["type"] == "ai_generation"

    with pytest.raises(UpstreamError):
        await services.governor.generate_notes(school.chapter_id, school.admin, Role.admin)

    assert forum.of_type("unified_notes") == []


@pytest.mark.asyncio
async def test_duplicate_version_from_another_writer_is_a_conflict(services, make_school, contribute, forum):
    school = await make_school()
    await contribute(school.admin, school.chapter_id, 5)

    def rogue_writer(record):
        if record["extendedData"]["type"] != "unified_notes" or "rogue" in forum.posts:
            return
        forum.posts["rogue"] = {
            "id": "rogue",
            "threadId": school.chapter_id,
            "createdAt": "2000-01-01T00:00:00+00:00",
            "tags": ["unified_notes"],
            "body": "{}",
            "extendedData": {"type": "unified_notes", "version": record["extendedData"]["version"]},
        }

    forum.after_create_post.append(rogue_writer)

    with pytest.raises(ConflictError):
        await services.governor.generate_notes(school.chapter_id, school.admin, Role.admin)

    assert [p["id"] for p in forum.of_type("unified_notes")] == ["rogue"]
    assert forum.of_type("ai_generation") == []


# ---------- compilation ----------

@pytest.mark.asyncio
async def test_model_output_is_parsed_into_sections(services, make_school, contribute, clock):
    school = await make_school()
    await contribute(school.admin, school.chapter_id, 5)
    generator = StubGenerator(
        'Here is your notes:\n```json\n{"overview": ["Limits describe approach"], '
        '"keyConcepts": [{"title": "Limit", "explanation": "value approached"}], "steps": "one step"}\n```'
    )

    result = await governor_with(services, clock, generator).generate_notes(
        school.chapter_id, school.admin, Role.admin)

    assert result.content.overview == ["Limits describe approach"]
    assert result.content.key_concepts[0].title == "Limit"
    assert result.content.steps == ["one step"]
    prompt = generator.prompts[0]
    assert "Chapter: Limits" in prompt
    assert all(f"[takeaway] Point {i}" in prompt for i in range(1, 6))


@pytest.mark.asyncio
async def test_prose_output_becomes_overview(services, make_school, contribute, clock):
    school = await make_school()
    await contribute(school.admin, school.chapter_id, 5)
    result = await governor_with(services, clock, StubGenerator("Limits are neat.")).generate_notes(
        school.chapter_id, school.admin, Role.admin)
    assert result.content.overview == ["Limits are neat."]


@pytest.mark.asyncio
async def test_contributions_added_during_generation_are_not_counted(services, make_school, contribute, forum, clock):
    school = await make_school()
    await contribute(school.admin, school.chapter_id, 5)
    generator = StubGenerator('{"overview": ["x"]}', on_call=lambda: contribute(school.admin, school.chapter_id, 1))

    result = await governor_with(services, clock, generator).generate_notes(
        school.chapter_id, school.admin, Role.admin)

    assert result.contribution_count == 5
    assert len(forum.of_type("contribution", school.chapter_id)) == 6
    record = forum.of_type("ai_generation")[0]
    assert record["extendedData"]["contributionCount"] == 5


@pytest.mark.asyncio
async def test_offline_compilation(services, make_school, contribute):
    school = await make_school()
    await contribute(school.admin, school.chapter_id, 3)
    await contribute(school.admin, school.chapter_id, 1, type=ContributionType.confusion, content="Epsilon?")
    await contribute(school.admin, school.chapter_id, 1, type=ContributionType.solved_example, content="Solve")

    result = await services.governor.generate_notes(school.chapter_id, school.admin, Role.admin)

    assert len(result.content.overview) == 3
    assert result.content.mistakes == ["Epsilon? number 1"]
    assert result.content.examples[0].title == "Solve 1"
    assert len(result.content.steps) == 3


def test_offline_resources_use_links():
    from classmemory.schemas import Contribution

    sections = compile_offline([
        Contribution(type=ContributionType.resource, title="Sheet", links=["https://example.com/d"]),
        Contribution(type=ContributionType.takeaway, content="idea", link="https://example.com/t"),
    ])
    assert [(r.title, r.url) for r in sections.resources] == [
        ("Sheet", "https://example.com/d"), ("Resource", "https://example.com/t")]
