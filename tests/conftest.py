import asyncio
import copy
import itertools
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

from classmemory.forum_client import ForumAuthError, ForumError, ForumNotFound
from classmemory.schemas import ChapterCreate, ContributionCreate, ContributionType, CourseCreate, SubjectCreate
from classmemory.settings.config import Settings
from classmemory.utils import build_services

START = datetime(2024, 9, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeForum:
    """In-memory stand-in for ForumClient with the same async surface."""

    def __init__(self):
        self.threads: Dict[str, dict] = {}
        self.posts: Dict[str, dict] = {}
        self.likes: Dict[str, List[str]] = {}
        self.participants: Dict[str, set] = {}
        self.tokens: Dict[str, dict] = {}
        self.failures: Dict[str, Callable[[Any], bool]] = {}
        self.after_create_post: List[Callable[[dict], None]] = []
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)

    # ---- helpers ----

    def _stamp(self) -> str:
        return (START + timedelta(milliseconds=next(self._ticks))).isoformat()

    def _maybe_fail(self, method: str, arg: Any = None) -> None:
        pred = self.failures.get(method)
        if pred is not None and pred(arg):
            raise ForumError(f"injected failure in {method}", status=500)

    @staticmethod
    def _type(record: dict) -> Optional[str]:
        return (record.get("extendedData") or {}).get("type")

    def _store(self, payload: dict, prefix: str) -> dict:
        record = copy.deepcopy(payload)
        record["id"] = record.get("id") or f"{prefix}{next(self._ids)}"
        record.setdefault("createdAt", self._stamp())
        record.setdefault("tags", [])
        return record

    # ---- identity ----

    async def me(self, token: str) -> dict:
        await asyncio.sleep(0)
        if token not in self.tokens:
            raise ForumAuthError("bad token", status=401)
        return dict(self.tokens[token])

    # ---- threads ----

    async def create_thread(self, payload: dict) -> dict:
        await asyncio.sleep(0)
        self._maybe_fail("create_thread", payload)
        record = self._store(payload, "t")
        self.threads[record["id"]] = record
        return copy.deepcopy(record)

    async def get_thread(self, thread_id: str) -> dict:
        await asyncio.sleep(0)
        if thread_id not in self.threads:
            raise ForumNotFound(f"thread {thread_id}", status=404)
        return copy.deepcopy(self.threads[thread_id])

    async def update_thread(self, thread_id: str, data: dict) -> dict:
        await asyncio.sleep(0)
        if thread_id not in self.threads:
            raise ForumNotFound(f"thread {thread_id}", status=404)
        record = self.threads[thread_id]
        for k, v in data.items():
            if k == "extendedData":
                record.setdefault("extendedData", {}).update(v)
            else:
                record[k] = v
        return copy.deepcopy(record)

    async def delete_thread(self, thread_id: str) -> None:
        await asyncio.sleep(0)
        self.threads.pop(thread_id, None)

    async def list_threads(self, *, tag=None, type=None) -> List[dict]:
        await asyncio.sleep(0)
        out = []
        for t in self.threads.values():
            if tag and tag not in t.get("tags", []):
                continue
            if type and self._type(t) != type:
                continue
            out.append(copy.deepcopy(t))
        return out

    # ---- posts ----

    async def create_post(self, payload: dict) -> dict:
        await asyncio.sleep(0)
        self._maybe_fail("create_post", payload)
        record = self._store(payload, "p")
        self.posts[record["id"]] = record
        for hook in list(self.after_create_post):
            hook(copy.deepcopy(record))
        return copy.deepcopy(record)

    async def get_post(self, post_id: str) -> dict:
        await asyncio.sleep(0)
        if post_id not in self.posts:
            raise ForumNotFound(f"post {post_id}", status=404)
        return copy.deepcopy(self.posts[post_id])

    async def update_post(self, post_id: str, data: dict) -> dict:
        await asyncio.sleep(0)
        if post_id not in self.posts:
            raise ForumNotFound(f"post {post_id}", status=404)
        record = self.posts[post_id]
        for k, v in data.items():
            if k == "extendedData":
                record.setdefault("extendedData", {}).update(v)
            else:
                record[k] = v
        return copy.deepcopy(record)

    async def delete_post(self, post_id: str) -> None:
        await asyncio.sleep(0)
        self._maybe_fail("delete_post", post_id)
        self.posts.pop(post_id, None)

    async def list_posts(self, *, thread_id=None, tag=None, type=None) -> List[dict]:
        await asyncio.sleep(0)
        out = []
        for p in self.posts.values():
            if thread_id and p.get("threadId") != thread_id:
                continue
            if tag and tag not in p.get("tags", []):
                continue
            if type and self._type(p) != type:
                continue
            out.append(copy.deepcopy(p))
        return out

    # ---- search ----

    async def search(self, query: str, *, tags=None, thread_id=None) -> dict:
        await asyncio.sleep(0)
        q = query.lower()

        def hit(r: dict) -> bool:
            text = f"{r.get('title', '')} {r.get('body', '')}".lower()
            if q not in text:
                return False
            return not tags or any(t in r.get("tags", []) for t in tags)

        return {
            "threads": [copy.deepcopy(t) for t in self.threads.values() if hit(t)],
            "posts": [copy.deepcopy(p) for p in self.posts.values()
                      if hit(p) and (not thread_id or p.get("threadId") == thread_id)],
        }

    # ---- participants / likes ----

    async def add_thread_participant(self, thread_id: str, user_id: str) -> None:
        await asyncio.sleep(0)
        if thread_id not in self.threads:
            raise ForumNotFound(f"thread {thread_id}", status=404)
        self.participants.setdefault(thread_id, set()).add(user_id)

    async def like_post(self, post_id: str, user_id: str) -> None:
        await asyncio.sleep(0)
        self.likes.setdefault(post_id, []).append(user_id)

    async def unlike_post(self, post_id: str, user_id: str) -> None:
        await asyncio.sleep(0)
        self.likes[post_id] = [u for u in self.likes.get(post_id, []) if u != user_id]

    async def get_post_likes(self, post_id: str) -> dict:
        await asyncio.sleep(0)
        likes = [{"userId": u} for u in self.likes.get(post_id, [])]
        return {"likes": likes, "count": len(likes)}

    # ---- test conveniences ----

    def of_type(self, kind: str, thread_id: Optional[str] = None) -> List[dict]:
        return [p for p in self.posts.values()
                if self._type(p) == kind and (thread_id is None or p.get("threadId") == thread_id)]


class StubGenerator:
    """Text generator double: returns ``output`` and records prompts."""

    def __init__(self, output: str = "", on_call: Optional[Callable[[], Any]] = None, error: Exception = None):
        self.output = output
        self.on_call = on_call
        self.error = error
        self.prompts: List[str] = []

    async def generate(self, prompt: str, *, system=None, temperature=0.2) -> str:
        self.prompts.append(prompt)
        await asyncio.sleep(0)
        if self.on_call is not None:
            result = self.on_call()
            if asyncio.iscoroutine(result):
                await result
        if self.error is not None:
            raise self.error
        return self.output


@pytest.fixture
def forum():
    return FakeForum()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cfg():
    return Settings(_env_file=None, LLM_PROVIDER="offline")


@pytest.fixture
def services(cfg, forum, clock):
    return build_services(cfg, forum, None, clock)


@pytest.fixture
def make_school(services):
    """Async factory: a school with one subject, course and chapter, created by ``admin``."""

    async def _make(admin: str = "u-admin", name: str = "Springfield High", chapter_title: str = "Limits"):
        created = await services.schools.create_school(name, None, admin)
        subject = await services.content.create_subject(admin, created.school_id, SubjectCreate(name="Mathematics"))
        course = await services.content.create_course(
            admin, subject.id, CourseCreate(code="MATH101", title="Calculus I"))
        chapter = await services.content.create_chapter(admin, course.id, ChapterCreate(title=chapter_title))
        return SimpleNamespace(
            school_id=created.school_id,
            join_key=created.join_key,
            subject_id=subject.id,
            course_id=course.id,
            chapter_id=chapter.id,
            admin=admin,
        )

    return _make


@pytest.fixture
def contribute(services):
    """Async helper: add ``n`` contributions to a chapter as ``user``."""

    async def _contribute(user: str, chapter_id: str, n: int = 1,
                          type: ContributionType = ContributionType.takeaway, content: str = "Point"):
        out = []
        for i in range(n):
            body = ContributionCreate(type=type, title=f"{content} {i + 1}", content=f"{content} number {i + 1}")
            out.append(await services.content.create_contribution(user, chapter_id, body))
        return out

    return _contribute
