# services/search.py
"""
Tenant-scoped search over the forum store.

The store's full-text search is global, so every hit is mapped to its entity
and kept only when its ownership chain ends at the requesting school:

    chapter -> course -> subject -> school

Lookups are memoised for the duration of one call.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from classmemory.errors import ValidationFailedError
from classmemory.forum_client import ForumClient
from classmemory.schemas import (
    Chapter,
    Contribution,
    ContributionType,
    Course,
    DomainEntity,
    RecordType,
    School,
    SearchHit,
    SearchResults,
    Subject,
    UnifiedNotes,
)
from classmemory.services.hierarchy import Hierarchy
from classmemory.services.mappers import to_domain

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 150
MIN_QUERY_LENGTH = 2

# UI filter -> store tags
FILTER_TAGS: Dict[str, List[str]] = {
    "chapters": ["chapter"],
    "contributions": ["contribution"],
    "notes": ["unified_notes"],
    "takeaways": ["contribution", "type:takeaway"],
    "resources": ["contribution", "type:resource"],
    "examples": ["contribution", "type:solved_example"],
    "confusions": ["contribution", "type:confusion"],
    "photos": ["contribution", "type:notes_photo"],
}
DEFAULT_TAGS = ["chapter", "contribution", "unified_notes"]

_FILTER_CONTRIBUTION_TYPES = {
    "takeaways": ContributionType.takeaway,
    "resources": ContributionType.resource,
    "examples": ContributionType.solved_example,
    "confusions": ContributionType.confusion,
    "photos": ContributionType.notes_photo,
}


def normalize_filters(filters: Optional[Iterable[str]]) -> List[str]:
    """Known filter names only, lowercased and de-duplicated in order."""
    out: List[str] = []
    for f in filters or []:
        name = (f or "").strip().lower()
        if name in FILTER_TAGS and name not in out:
            out.append(name)
    return out


def build_search_tags(filters: Optional[Iterable[str]]) -> List[str]:
    names = normalize_filters(filters)
    if not names:
        return list(DEFAULT_TAGS)
    tags: List[str] = []
    for name in names:
        for tag in FILTER_TAGS[name]:
            if tag not in tags:
                tags.append(tag)
    return tags


def matches_filters(entity: DomainEntity, filters: Sequence[str]) -> bool:
    if not filters:
        return True
    for name in filters:
        if name == "chapters" and isinstance(entity, Chapter):
            return True
        if name == "notes" and isinstance(entity, UnifiedNotes):
            return True
        if name == "contributions" and isinstance(entity, Contribution):
            return True
        ctype = _FILTER_CONTRIBUTION_TYPES.get(name)
        if ctype is not None and isinstance(entity, Contribution) and entity.type is ctype:
            return True
    return False


def excerpt(text: Optional[str]) -> str:
    text = (text or "").strip()
    if len(text) > EXCERPT_LENGTH:
        return text[:EXCERPT_LENGTH] + "..."
    return text


def _first_line_title(content: str) -> Optional[str]:
    line = (content or "").strip().split("\n")[0].strip()
    return line if 0 < len(line) < 100 else None


def to_hit(entity: DomainEntity) -> Optional[SearchHit]:
    if isinstance(entity, School):
        return SearchHit(kind=RecordType.school.value, id=entity.id, title=entity.name,
                         excerpt=excerpt(entity.description), created_at=entity.created_at)
    if isinstance(entity, Subject):
        return SearchHit(kind=RecordType.subject.value, id=entity.id, title=entity.name,
                         excerpt=excerpt(entity.description), created_at=entity.created_at)
    if isinstance(entity, Course):
        return SearchHit(kind=RecordType.course.value, id=entity.id, title=f"{entity.code}: {entity.title}",
                         excerpt=excerpt(entity.description), created_at=entity.created_at)
    if isinstance(entity, Chapter):
        return SearchHit(kind=RecordType.chapter.value, id=entity.id, title=entity.title,
                         excerpt=excerpt(entity.description), chapter_id=entity.id,
                         created_at=entity.created_at)
    if isinstance(entity, Contribution):
        return SearchHit(kind=RecordType.contribution.value, id=entity.id,
                         title=entity.title or _first_line_title(entity.content) or "Untitled Contribution",
                         excerpt=excerpt(entity.content), chapter_id=entity.chapter_id,
                         contribution_type=entity.type, created_at=entity.created_at)
    if isinstance(entity, UnifiedNotes):
        return SearchHit(kind=RecordType.unified_notes.value, id=entity.id, title=f"AI Notes v{entity.version}",
                         excerpt=excerpt(" ".join(entity.sections.overview)), chapter_id=entity.chapter_id,
                         version=entity.version, created_at=entity.created_at)
    return None


class SearchScope:
    """Decides, per hit, whether it belongs to the tenant school. One instance per search call."""

    def __init__(self, forum: ForumClient):
        self.hierarchy = Hierarchy(forum)
        self._chapters: Dict[str, bool] = {}

    async def _chapter_in_scope(self, chapter_id: str, tenant_id: str) -> bool:
        if chapter_id not in self._chapters:
            self._chapters[chapter_id] = await self.hierarchy.school_of_chapter_id(chapter_id) == tenant_id
        return self._chapters[chapter_id]

    async def in_scope(self, entity: DomainEntity, tenant_id: str) -> bool:
        if isinstance(entity, School):
            return entity.id == tenant_id
        if isinstance(entity, (Subject, Course)):
            return entity.school_id == tenant_id
        if isinstance(entity, Chapter):
            if entity.id not in self._chapters:
                self._chapters[entity.id] = await self.hierarchy.school_of_chapter(entity) == tenant_id
            return self._chapters[entity.id]
        if isinstance(entity, (Contribution, UnifiedNotes)):
            return bool(entity.chapter_id) and await self._chapter_in_scope(entity.chapter_id, tenant_id)
        return False

    async def scope(self, raw_hits: Iterable[dict], tenant_id: str,
                    filters: Optional[Iterable[str]] = None) -> SearchResults:
        names = normalize_filters(filters)
        hits: List[SearchHit] = []
        seen = set()
        for raw in raw_hits:
            entity = to_domain(raw)
            if entity is None or not entity.id or entity.id in seen:
                continue
            hit = to_hit(entity)
            if hit is None:
                continue
            if not await self.in_scope(entity, tenant_id):
                continue
            if not matches_filters(entity, names):
                continue
            seen.add(entity.id)
            hits.append(hit)

        hits.sort(key=lambda h: h.created_at, reverse=True)
        by_type: Dict[str, List[SearchHit]] = {}
        for h in hits:
            by_type.setdefault(h.kind, []).append(h)
        return SearchResults(results=hits, results_by_type=by_type)


async def search(forum: ForumClient, query: str, tenant_id: str,
                 filters: Optional[Iterable[str]] = None) -> SearchResults:
    q = (query or "").strip()
    if len(q) < MIN_QUERY_LENGTH:
        raise ValidationFailedError("Search query must be at least 2 characters", field="q")
    if not tenant_id:
        raise ValidationFailedError("School ID is required", field="schoolId")
    filters = list(filters or [])
    raw = await forum.search(q, tags=build_search_tags(filters))
    results = await SearchScope(forum).scope([*raw["threads"], *raw["posts"]], tenant_id, filters)
    logger.debug("search %r school=%s -> %s hits", q, tenant_id, len(results.results))
    return results


__all__ = ["build_search_tags", "normalize_filters", "SearchScope", "search", "excerpt"]
