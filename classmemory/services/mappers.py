# classmemory/services/mappers.py
"""
Thread/post records <-> typed domain entities.

The forum store only knows threads and posts with an open ``extendedData`` bag.
Everything here is pure: no I/O, and no input (however malformed) raises.
Downstream code only ever sees the entity types from ``classmemory.schemas``.
"""
from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from classmemory.clock import parse_dt, to_iso
from classmemory.schemas import (
    AIGenerationRecord,
    Chapter,
    ChapterStatus,
    Contribution,
    ContributionType,
    Course,
    Definition,
    DomainEntity,
    Formula,
    KeyConcept,
    Membership,
    NoteResource,
    NoteSections,
    RecordType,
    Role,
    School,
    SchoolSettings,
    Subject,
    UnifiedNotes,
    WorkedExample,
)

SANDBOX_TAG = "demo"

E = TypeVar("E", bound=BaseModel)


# ---------- primitive coercion ----------

def _json_object(text: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(text, str) or not text.strip():
        return None
    try:
        data = json.loads(text)
    except (ValueError, TypeError, RecursionError):
        return None
    return data if isinstance(data, dict) else None


def _as_dict(raw: Any) -> Optional[Dict[str, Any]]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, BaseModel):
        return raw.model_dump(by_alias=True)
    return None


def parse_bag(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """The attribute bag, whether it arrives as ``extendedData`` or ``metadata``, dict or JSON."""
    for key in ("extendedData", "extended_data", "metadata"):
        bag = raw.get(key)
        if isinstance(bag, Mapping):
            return dict(bag)
        parsed = _json_object(bag)
        if parsed is not None:
            return parsed
    return {}


def _str(value: Any, default: str = "") -> str:
    """Text as stored; blank or non-scalar values fall back to ``default``."""
    if value is None or isinstance(value, (dict, list)):
        return default
    s = str(value)
    return s if s.strip() else default


def _opt_str(value: Any) -> Optional[str]:
    s = _str(value)
    return s or None


def _int(value: Any, default: int = 0, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        out = default
    else:
        try:
            out = int(float(value))
        except (TypeError, ValueError, OverflowError):
            out = default
    if minimum is not None and out < minimum:
        out = minimum
    return out


def _float(value: Any, default: float = 0.0, minimum: Optional[float] = None) -> float:
    if isinstance(value, bool):
        out = default
    else:
        try:
            out = float(value)
        except (TypeError, ValueError, OverflowError):
            out = default
        if out != out:  # NaN
            out = default
    if minimum is not None and out < minimum:
        out = minimum
    return out


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _enum(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except (ValueError, TypeError):
        return default


def _str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def _tags(raw: Mapping[str, Any]) -> List[str]:
    return [t for t in _str_list(raw.get("tags")) if t]


def _fields(bag: Dict[str, Any], body: Any, key_field: str, text_key: Optional[str] = None) -> Dict[str, Any]:
    """Three-tier content lookup: attribute bag, then body as JSON object, then body as raw text."""
    if bag.get(key_field) not in (None, ""):
        return bag
    merged = dict(bag)
    parsed = _json_object(body)
    if parsed is not None:
        for k, v in parsed.items():
            if merged.get(k) in (None, "") or k == key_field:
                merged[k] = v
        merged["type"] = bag.get("type")
        return merged
    if text_key and isinstance(body, str) and body.strip() and merged.get(text_key) in (None, ""):
        merged[text_key] = body
    return merged


# ---------- note sections ----------

_SECTION_ITEMS: Dict[str, tuple[Type[BaseModel], str]] = {
    "key_concepts": (KeyConcept, "title"),
    "definitions": (Definition, "term"),
    "formulas": (Formula, "formula"),
    "examples": (WorkedExample, "problem"),
    "resources": (NoteResource, "title"),
}
_SECTION_KEYS = {
    "overview": ("overview",),
    "key_concepts": ("keyConcepts", "key_concepts"),
    "definitions": ("definitions",),
    "formulas": ("formulas",),
    "steps": ("steps",),
    "examples": ("examples",),
    "mistakes": ("mistakes",),
    "resources": ("resources",),
    "quick_revision": ("quickRevision", "quick_revision", "revision"),
}


def _coerce_items(items: Any, model: Type[E], text_field: str) -> List[E]:
    if isinstance(items, (str, Mapping)):
        items = [items]
    if not isinstance(items, (list, tuple)):
        return []
    out: List[E] = []
    for item in items:
        if isinstance(item, str):
            item = {text_field: item}
        if not isinstance(item, Mapping):
            continue
        try:
            out.append(model.model_validate(dict(item)))
        except ValidationError:
            continue
    return out


def coerce_sections(data: Any) -> NoteSections:
    """Build ``NoteSections`` from whatever a model or a stored body produced, item by item."""
    if not isinstance(data, Mapping):
        return NoteSections()
    values: Dict[str, Any] = {}
    for field, keys in _SECTION_KEYS.items():
        raw = next((data[k] for k in keys if k in data), None)
        if field in _SECTION_ITEMS:
            model, text_field = _SECTION_ITEMS[field]
            values[field] = _coerce_items(raw, model, text_field)
        else:
            values[field] = _str_list(raw)
    return NoteSections.model_validate(values)


def _sections(bag: Dict[str, Any], body: Any) -> NoteSections:
    if isinstance(bag.get("sections"), Mapping):
        return coerce_sections(bag["sections"])
    parsed = _json_object(body)
    if parsed is not None:
        return coerce_sections(parsed)
    text = _str(body)
    return NoteSections(overview=[text]) if text else NoteSections()


# ---------- per-kind builders ----------

def _common(raw: Dict[str, Any], bag: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": _str(raw.get("id")),
        "owner_id": _str(raw.get("userId") or raw.get("user_id") or raw.get("authorId")),
        "created_at": parse_dt(raw.get("createdAt") or raw.get("created_at")),
        "is_sandbox": _bool(bag.get("isDemo")) or _bool(bag.get("isSandbox")),
    }


def _thread_id(raw: Dict[str, Any]) -> str:
    return _str(raw.get("threadId") or raw.get("thread_id"))


def _school(raw, bag, common) -> School:
    body = raw.get("body")
    f = _fields(bag, body, "name", text_key="description")
    plain_body = body if _json_object(body) is None else None
    return School(
        **common,
        name=_str(f.get("name")) or _str(raw.get("title"), "Untitled School"),
        description=_opt_str(f.get("description")) or _opt_str(plain_body),
        join_key=_str(bag.get("joinKey")).upper(),
        created_by=_opt_str(bag.get("createdBy")),
    )


def _subject(raw, bag, common) -> Subject:
    f = _fields(bag, raw.get("body"), "name", text_key="name")
    return Subject(
        **common,
        school_id=_thread_id(raw) or _str(f.get("schoolId")),
        name=_str(f.get("name"), "Untitled Subject"),
        description=_opt_str(f.get("description")),
        color=_str(f.get("color") or f.get("colorTag"), "#3B82F6"),
    )


def _course(raw, bag, common) -> Course:
    f = _fields(bag, raw.get("body"), "code", text_key="title")
    return Course(
        **common,
        school_id=_thread_id(raw) or _str(f.get("schoolId")),
        subject_id=_str(f.get("subjectId")) or _str(raw.get("parentId")),
        code=_str(f.get("code"), "COURSE"),
        title=_str(f.get("title")) or _str(f.get("name"), "Untitled Course"),
        description=_opt_str(f.get("description")),
        teacher=_str(f.get("teacher"), "TBD"),
        term=_str(f.get("term"), "Current"),
    )


def _chapter(raw, bag, common) -> Chapter:
    f = _fields(bag, raw.get("body"), "courseId", text_key="description")
    return Chapter(
        **common,
        course_id=_str(f.get("courseId")),
        label=_str(f.get("label"), "Chapter"),
        title=_str(raw.get("title")) or _str(f.get("title"), "Untitled Chapter"),
        description=_opt_str(f.get("description")),
        status=_enum(ChapterStatus, f.get("status"), ChapterStatus.collecting),
    )


def _contribution_type(bag: Dict[str, Any], tags: List[str]) -> ContributionType:
    value = bag.get("contributionType")
    if value is None:
        value = next((t[len("type:"):] for t in tags if t.startswith("type:")), None)
    return _enum(ContributionType, value, ContributionType.takeaway)


def _contribution(raw, bag, common) -> Contribution:
    f = _fields(bag, raw.get("body"), "content", text_key="content")
    helpful = raw.get("helpfulCount")
    if helpful is None:
        helpful = raw.get("likeCount", raw.get("likesCount"))
    return Contribution(
        **common,
        chapter_id=_thread_id(raw) or _str(f.get("chapterId")),
        type=_contribution_type(f, _tags(raw)),
        title=_opt_str(f.get("title")),
        content=_str(f.get("content")),
        anonymous=_bool(f.get("anonymous")),
        author_id=common["owner_id"],
        author_name=_opt_str(f.get("authorName")),
        helpful_count=_int(helpful, 0, minimum=0),
        reply_count=_int(raw.get("replyCount"), 0, minimum=0),
        link=_opt_str(f.get("link")),
        image_url=_opt_str(f.get("imageUrl")),
        links=_str_list(f.get("links")),
        parent_id=_opt_str(raw.get("parentId")) or _opt_str(f.get("parentPostId")),
    )


def _unified_notes(raw, bag, common) -> UnifiedNotes:
    return UnifiedNotes(
        **common,
        chapter_id=_thread_id(raw) or _str(bag.get("chapterId")),
        version=_int(bag.get("version"), 1, minimum=1),
        generated_by=_str(bag.get("generatedBy")) or common["owner_id"],
        generator_role=_enum(Role, bag.get("generatorRole"), Role.student),
        generated_at=parse_dt(bag.get("generatedAt"), default=common["created_at"]),
        contribution_count=_int(bag.get("contributionCount"), 0, minimum=0),
        sections=_sections(bag, raw.get("body")),
    )


def _membership(raw, bag, common) -> Membership:
    return Membership(
        **common,
        user_id=_str(bag.get("userId")) or common["owner_id"],
        school_id=_str(bag.get("schoolId")) or _thread_id(raw),
        role=_enum(Role, bag.get("role"), Role.student),
        joined_at=parse_dt(bag.get("joinedAt"), default=common["created_at"]),
    )


def _ai_generation(raw, bag, common) -> AIGenerationRecord:
    return AIGenerationRecord(
        **common,
        chapter_id=_str(bag.get("chapterId")) or _thread_id(raw),
        generated_by=_str(bag.get("generatedBy")) or common["owner_id"],
        generator_role=_enum(Role, bag.get("generatorRole"), Role.student),
        contribution_count=_int(bag.get("contributionCount"), 0, minimum=0),
        generated_at=parse_dt(bag.get("generatedAt"), default=common["created_at"]),
    )


def _school_settings(raw, bag, common) -> SchoolSettings:
    defaults = SchoolSettings()
    return SchoolSettings(
        **common,
        school_id=_str(bag.get("schoolId")) or _thread_id(raw),
        min_contributions=_int(bag.get("minContributions"), defaults.min_contributions, minimum=1),
        student_cooldown=_float(bag.get("studentCooldown"), defaults.student_cooldown, minimum=0.0),
        teacher_cooldown=_float(bag.get("teacherCooldown"), defaults.teacher_cooldown, minimum=0.0),
        updated_at=parse_dt(bag.get("updatedAt"), default=common["created_at"]),
    )


_BUILDERS = {
    RecordType.school: _school,
    RecordType.subject: _subject,
    RecordType.course: _course,
    RecordType.chapter: _chapter,
    RecordType.contribution: _contribution,
    RecordType.unified_notes: _unified_notes,
    RecordType.membership: _membership,
    RecordType.ai_generation: _ai_generation,
    RecordType.school_settings: _school_settings,
}


def record_type(raw: Any) -> Optional[RecordType]:
    data = _as_dict(raw)
    if data is None:
        return None
    return _enum(RecordType, parse_bag(data).get("type"), None)


def to_domain(raw: Any) -> Optional[DomainEntity]:
    """Map one thread/post record to its entity, or None when the discriminator is unusable."""
    data = _as_dict(raw)
    if data is None:
        return None
    bag = parse_bag(data)
    kind = _enum(RecordType, bag.get("type"), None)
    if kind is None:
        return None
    try:
        return _BUILDERS[kind](data, bag, _common(data, bag))
    except (ValueError, TypeError, RecursionError):
        # every builder coerces its inputs; this is the last line for the totality guarantee
        return None


def map_records(raws: Iterable[Any], kind: Type[E]) -> List[E]:
    """Map a list of records and keep only entities of ``kind``."""
    out: List[E] = []
    for raw in raws or []:
        entity = to_domain(raw)
        if isinstance(entity, kind):
            out.append(entity)
    return out


# ---------- domain -> write payload ----------

def _tag_list(kind: RecordType, entity, *extra: str) -> List[str]:
    tags = [kind.value, *extra]
    if entity.is_sandbox:
        tags.append(SANDBOX_TAG)
    return tags


def _drop_none(bag: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in bag.items() if v is not None}


def _thread_payload(entity, kind: RecordType, title: str, body: str, bag: Dict[str, Any], tags: List[str]):
    payload: Dict[str, Any] = {
        "title": title,
        "body": body,
        "userId": entity.owner_id,
        "tags": tags,
        "extendedData": _drop_none({"type": kind.value, **bag, "isDemo": entity.is_sandbox or None}),
    }
    if entity.id:
        payload["id"] = entity.id
    return payload


def _post_payload(entity, kind: RecordType, thread_id: str, body: str, bag: Dict[str, Any],
                  tags: List[str], parent_id: Optional[str] = None):
    payload: Dict[str, Any] = {
        "threadId": thread_id,
        "body": body,
        "userId": entity.owner_id,
        "tags": tags,
        "extendedData": _drop_none({"type": kind.value, **bag, "isDemo": entity.is_sandbox or None}),
    }
    if parent_id:
        payload["parentId"] = parent_id
    if entity.id:
        payload["id"] = entity.id
    return payload


def from_domain(entity: DomainEntity) -> Dict[str, Any]:
    """Structural inverse of ``to_domain``: the create/update payload for the forum store."""
    if isinstance(entity, School):
        return _thread_payload(entity, RecordType.school, entity.name, entity.description or "", {
            "name": entity.name,
            "description": entity.description,
            "joinKey": entity.join_key,
            "createdBy": entity.created_by,
        }, _tag_list(RecordType.school, entity))
    if isinstance(entity, Chapter):
        return _thread_payload(entity, RecordType.chapter, entity.title, entity.description or "", {
            "title": entity.title,
            "label": entity.label,
            "description": entity.description,
            "courseId": entity.course_id,
            "status": entity.status.value,
        }, _tag_list(RecordType.chapter, entity))
    if isinstance(entity, Subject):
        return _post_payload(entity, RecordType.subject, entity.school_id, entity.description or entity.name, {
            "name": entity.name,
            "description": entity.description,
            "color": entity.color,
            "schoolId": entity.school_id,
        }, _tag_list(RecordType.subject, entity))
    if isinstance(entity, Course):
        return _post_payload(entity, RecordType.course, entity.school_id, entity.description or entity.title, {
            "code": entity.code,
            "name": entity.title,
            "title": entity.title,
            "description": entity.description,
            "teacher": entity.teacher,
            "term": entity.term,
            "subjectId": entity.subject_id,
            "schoolId": entity.school_id,
        }, _tag_list(RecordType.course, entity))
    if isinstance(entity, Contribution):
        return _post_payload(entity, RecordType.contribution, entity.chapter_id, entity.content, {
            "contributionType": entity.type.value,
            "title": entity.title,
            "content": entity.content,
            "anonymous": entity.anonymous,
            "authorName": entity.author_name,
            "link": entity.link,
            "imageUrl": entity.image_url,
            "links": list(entity.links),
            "chapterId": entity.chapter_id,
            "parentPostId": entity.parent_id,
        }, _tag_list(RecordType.contribution, entity, f"type:{entity.type.value}"), parent_id=entity.parent_id)
    if isinstance(entity, UnifiedNotes):
        body = json.dumps(entity.sections.model_dump(by_alias=True), ensure_ascii=False)
        return _post_payload(entity, RecordType.unified_notes, entity.chapter_id, body, {
            "version": entity.version,
            "generatedBy": entity.generated_by,
            "generatorRole": entity.generator_role.value,
            "generatedAt": to_iso(entity.generated_at),
            "contributionCount": entity.contribution_count,
            "chapterId": entity.chapter_id,
        }, _tag_list(RecordType.unified_notes, entity))
    if isinstance(entity, Membership):
        return _post_payload(entity, RecordType.membership, entity.school_id, "", {
            "userId": entity.user_id,
            "schoolId": entity.school_id,
            "role": entity.role.value,
            "joinedAt": to_iso(entity.joined_at),
        }, _tag_list(RecordType.membership, entity))
    if isinstance(entity, AIGenerationRecord):
        return _post_payload(entity, RecordType.ai_generation, entity.chapter_id, "", {
            "chapterId": entity.chapter_id,
            "generatedBy": entity.generated_by,
            "generatorRole": entity.generator_role.value,
            "contributionCount": entity.contribution_count,
            "generatedAt": to_iso(entity.generated_at),
        }, _tag_list(RecordType.ai_generation, entity))
    if isinstance(entity, SchoolSettings):
        return _post_payload(entity, RecordType.school_settings, entity.school_id, "", {
            "schoolId": entity.school_id,
            "minContributions": entity.min_contributions,
            "studentCooldown": entity.student_cooldown,
            "teacherCooldown": entity.teacher_cooldown,
            "updatedAt": to_iso(entity.updated_at),
        }, _tag_list(RecordType.school_settings, entity))
    raise TypeError(f"Unsupported entity: {type(entity).__name__}")


def is_thread_kind(entity: DomainEntity) -> bool:
    return isinstance(entity, (School, Chapter))


def with_store_identity(entity: E, created: Any) -> E:
    """Copy the id (and creation time, when given) the store assigned back onto ``entity``."""
    data = _as_dict(created) or {}
    update: Dict[str, Any] = {}
    if _str(data.get("id")):
        update["id"] = _str(data.get("id"))
    if data.get("createdAt"):
        update["created_at"] = parse_dt(data.get("createdAt"), default=entity.created_at)
    return entity.model_copy(update=update) if update else entity


__all__ = [
    "SANDBOX_TAG",
    "parse_bag",
    "coerce_sections",
    "record_type",
    "to_domain",
    "map_records",
    "from_domain",
    "is_thread_kind",
    "with_store_identity",
]
