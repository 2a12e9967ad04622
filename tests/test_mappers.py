import json
from datetime import datetime, timezone

import pytest

from classmemory.schemas import (
    EPOCH,
    AIGenerationRecord,
    Chapter,
    ChapterStatus,
    Contribution,
    ContributionType,
    Course,
    KeyConcept,
    Membership,
    NoteSections,
    Role,
    School,
    SchoolSettings,
    Subject,
    UnifiedNotes,
)
from classmemory.services.mappers import coerce_sections, from_domain, map_records, to_domain

WHEN = datetime(2024, 10, 1, 12, 30, tzinfo=timezone.utc)

ENTITIES = [
    School(id="s1", owner_id="u1", name="Springfield High", description="Go team", join_key="ABC123",
           created_by="u1"),
    Subject(id="sub1", owner_id="u1", school_id="s1", name="Physics", description="Forces", color="#10B981"),
    Course(id="c1", owner_id="u1", school_id="s1", subject_id="sub1", code="PHYS101", title="Mechanics",
           teacher="Dr. Rodriguez", term="Fall 2024"),
    Chapter(id="ch1", owner_id="u1", course_id="c1", label="Chapter 2", title="Newton's Laws",
            status=ChapterStatus.ai_ready),
    Contribution(id="p1", owner_id="u2", author_id="u2", chapter_id="ch1", type=ContributionType.resource,
                 title="Cheat sheet", content="All the rules", links=["https://example.com"], is_sandbox=True),
    UnifiedNotes(id="n1", owner_id="u3", chapter_id="ch1", version=3, generated_by="u3",
                 generator_role=Role.teacher, generated_at=WHEN, contribution_count=7,
                 sections=NoteSections(overview=["F = ma"], key_concepts=[KeyConcept(title="Inertia")])),
    Membership(id="m1", owner_id="u2", user_id="u2", school_id="s1", role=Role.teacher, joined_at=WHEN),
    AIGenerationRecord(id="g1", owner_id="u3", chapter_id="ch1", generated_by="u3", generator_role=Role.admin,
                       contribution_count=7, generated_at=WHEN),
    SchoolSettings(id="ss1", owner_id="u1", school_id="s1", min_contributions=4, student_cooldown=1.5,
                   teacher_cooldown=0.0, updated_at=WHEN),
]


@pytest.mark.parametrize("entity", ENTITIES, ids=lambda e: e.kind)
def test_write_payload_maps_back_to_the_same_entity(entity):
    assert to_domain(from_domain(entity)) == entity


@pytest.mark.parametrize("entity", [
    Contribution(id="p2", owner_id="u2", author_id="u2", chapter_id="ch1", content="def f():\n    return 1\n"),
    Contribution(id="p3", owner_id="u2", author_id="u2", chapter_id="ch1", content="   indented first line",
                 title=" Padded title "),
    Contribution(id="p4", owner_id="u2", author_id="u2", chapter_id="ch1", content="a reply", parent_id="p1"),
    Subject(id="sub2", owner_id="u1", school_id="s1", name="Math ", description="\tAlgebra\n"),
    Course(id="c2", owner_id="u1", school_id="s1", subject_id="sub1", code="PHYS101", title=" Mechanics"),
], ids=["trailing-newline", "leading-spaces", "reply", "subject-name", "course-title"])
def test_text_is_kept_verbatim(entity):
    payload = from_domain(entity)
    assert to_domain(payload) == entity
    assert from_domain(to_domain(payload)) == payload


def test_deeply_nested_json_does_not_raise():
    deep_body = "[" * 100000
    c = to_domain({"id": "p1", "threadId": "c1", "body": deep_body, "extendedData": {"type": "contribution"}})
    assert isinstance(c, Contribution)
    assert c.content == deep_body

    assert to_domain({"id": "x", "extendedData": '{"a":' * 100000}) is None
    assert to_domain({"id": "x", "metadata": "[" * 100000}) is None


@pytest.mark.parametrize("raw", [
    None,
    "not a record",
    {},
    {"id": "x", "extendedData": {}},
    {"id": "x", "extendedData": {"type": "homework"}},
    {"id": "x", "extendedData": {"type": None}},
    {"id": "x", "extendedData": "{not json"},
])
def test_unusable_discriminator_maps_to_none(raw):
    assert to_domain(raw) is None


def test_bag_wins_over_body():
    raw = {
        "id": "p1",
        "threadId": "ch1",
        "body": json.dumps({"content": "from body", "title": "Body title"}),
        "extendedData": {"type": "contribution", "content": "from bag"},
    }
    c = to_domain(raw)
    assert c.content == "from bag"


def test_body_json_fills_gaps_then_raw_text():
    from_json = to_domain({
        "id": "p1",
        "threadId": "ch1",
        "body": json.dumps({"content": "from body", "title": "Body title", "contributionType": "confusion"}),
        "extendedData": {"type": "contribution"},
    })
    assert from_json.content == "from body"
    assert from_json.title == "Body title"
    assert from_json.type is ContributionType.confusion

    from_text = to_domain({"id": "p2", "threadId": "ch1", "body": "plain words",
                           "extendedData": {"type": "contribution"}})
    assert from_text.content == "plain words"


def test_defaults_and_clamping():
    c = to_domain({
        "id": "p1",
        "threadId": "ch1",
        "helpfulCount": -4,
        "createdAt": "yesterday-ish",
        "extendedData": {"type": "contribution", "contributionType": "rant", "links": "https://a.example"},
    })
    assert c.helpful_count == 0
    assert c.type is ContributionType.takeaway
    assert c.links == ["https://a.example"]
    assert c.created_at == EPOCH
    assert c.content == ""

    ch = to_domain({"id": "t1", "extendedData": {"type": "chapter", "courseId": "c1", "status": "Done"}})
    assert ch.status is ChapterStatus.collecting
    assert ch.title == "Untitled Chapter"


def test_metadata_bag_as_json_string():
    m = to_domain({"id": "m1", "threadId": "s1", "userId": "u9",
                   "metadata": json.dumps({"type": "membership", "role": "admin"})})
    assert isinstance(m, Membership)
    assert m.user_id == "u9"
    assert m.school_id == "s1"
    assert m.role is Role.admin


def test_contribution_type_from_tag():
    c = to_domain({"id": "p1", "threadId": "ch1", "tags": ["contribution", "type:solved_example"],
                   "extendedData": {"type": "contribution", "content": "x"}})
    assert c.type is ContributionType.solved_example


def test_sections_drop_invalid_items_individually():
    sections = coerce_sections({
        "overview": "single point",
        "keyConcepts": [{"explanation": "no title"}, "Momentum", {"title": "Energy", "explanation": "E"}],
        "formulas": [{"name": "missing formula"}],
        "quickRevision": ["a", 3, None],
    })
    assert sections.overview == ["single point"]
    assert [k.title for k in sections.key_concepts] == ["Momentum", "Energy"]
    assert sections.formulas == []
    assert sections.quick_revision == ["a", "3"]


def test_notes_sections_from_raw_text_body():
    n = to_domain({"id": "n1", "threadId": "ch1", "body": "The model said things",
                   "extendedData": {"type": "unified_notes", "version": 0}})
    assert n.version == 1
    assert n.sections.overview == ["The model said things"]


def test_sandbox_flag_and_tags():
    payload = from_domain(ENTITIES[4])
    assert payload["extendedData"]["isDemo"] is True
    assert "demo" in payload["tags"]
    assert "type:resource" in payload["tags"]

    plain = from_domain(ENTITIES[1])
    assert "isDemo" not in plain["extendedData"]
    assert plain["extendedData"]["type"] == "subject"


def test_map_records_keeps_one_kind():
    raws = [from_domain(e) for e in ENTITIES] + [{"junk": True}]
    assert [m.id for m in map_records(raws, Membership)] == ["m1"]
    assert map_records(None, School) == []
