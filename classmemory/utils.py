import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from .background import KeyedLock
from .clock import Clock, utcnow
from .errors import UnauthorizedError
from .forum_client import ForumAuthError, ForumClient, ForumNotFound
from .llm_client import TextGenerator
from .schemas import CurrentUser
from .services.content import ContentService
from .services.memberships import MembershipStore
from .services.notes_generation import NotesGovernor
from .services.sandbox import SandboxBootstrapper
from .services.school_settings import SchoolSettingsStore
from .services.schools import SchoolService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    forum: ForumClient
    memberships: MembershipStore
    settings_store: SchoolSettingsStore
    sandbox: SandboxBootstrapper
    schools: SchoolService
    content: ContentService
    governor: NotesGovernor


def build_services(cfg, forum: ForumClient, generator: Optional[TextGenerator], clock: Clock = utcnow) -> Services:
    memberships = MembershipStore(forum, clock)
    settings_store = SchoolSettingsStore(
        forum,
        clock,
        min_contributions=cfg.DEFAULT_MIN_CONTRIBUTIONS,
        student_cooldown=cfg.DEFAULT_STUDENT_COOLDOWN_HOURS,
        teacher_cooldown=cfg.DEFAULT_TEACHER_COOLDOWN_HOURS,
    )
    sandbox = SandboxBootstrapper(forum, memberships, settings_store, clock)
    return Services(
        forum=forum,
        memberships=memberships,
        settings_store=settings_store,
        sandbox=sandbox,
        schools=SchoolService(forum, memberships, settings_store, sandbox, clock),
        content=ContentService(forum, memberships, settings_store, clock),
        governor=NotesGovernor(forum, settings_store, generator=generator, clock=clock, locks=KeyedLock()),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> CurrentUser:
    """Resolve the bearer token through the forum service; any failure to identify is a 401."""
    token = _bearer(authorization)
    if not token:
        raise UnauthorizedError()
    try:
        data = await services.forum.me(token)
    except (ForumAuthError, ForumNotFound):
        raise UnauthorizedError()
    return CurrentUser(
        id=str(data["id"]),
        name=data.get("displayName") or data.get("name") or data.get("username"),
        email=data.get("email"),
    )
