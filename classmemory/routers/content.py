from typing import List

from fastapi import APIRouter, Depends

from ..errors import IneligibleError, NotFoundError
from ..schemas import (
    Chapter,
    ChapterCreate,
    Contribution,
    ContributionCreate,
    Course,
    CourseCreate,
    CurrentUser,
    Eligibility,
    GenerationResult,
    ReplyCreate,
    Subject,
    UnifiedNotes,
)
from ..services.permissions import Action
from ..services.schools import require
from ..utils import Services, get_current_user, get_services

router = APIRouter(prefix="/api", tags=["content"])


@router.get("/subjects/{subject_id}", response_model=Subject)
async def get_subject(
    subject_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.get_subject(user.id, subject_id)


@router.get("/subjects/{subject_id}/courses", response_model=List[Course])
async def list_courses(
    subject_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.list_courses(user.id, subject_id)


@router.get("/courses/{course_id}", response_model=Course)
async def get_course(
    course_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.get_course(user.id, course_id)


@router.get("/chapters/{chapter_id}", response_model=Chapter)
async def get_chapter(
    chapter_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.get_chapter(user.id, chapter_id)


@router.post("/subjects/{subject_id}/courses", response_model=Course)
async def create_course(
    subject_id: str,
    body: CourseCreate,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.create_course(user.id, subject_id, body)


@router.post("/courses/{course_id}/chapters", response_model=Chapter)
async def create_chapter(
    course_id: str,
    body: ChapterCreate,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.create_chapter(user.id, course_id, body)


@router.get("/courses/{course_id}/chapters", response_model=List[Chapter])
async def list_chapters(
    course_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.list_chapters(user.id, course_id)


# ---------- contributions ----------

@router.get("/chapters/{chapter_id}/contributions", response_model=List[Contribution])
async def list_contributions(
    chapter_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.list_contributions(user.id, chapter_id)


@router.post("/chapters/{chapter_id}/contributions", response_model=Contribution)
async def create_contribution(
    chapter_id: str,
    body: ContributionCreate,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.create_contribution(user.id, chapter_id, body, author_name=user.name)


@router.get("/contributions/{post_id}", response_model=Contribution)
async def get_contribution(
    post_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.get_contribution(user.id, post_id)


@router.get("/posts/{post_id}/replies", response_model=List[Contribution])
async def list_replies(
    post_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.list_replies(user.id, post_id)


@router.post("/posts/{post_id}/replies", response_model=Contribution)
async def create_reply(
    post_id: str,
    body: ReplyCreate,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.create_reply(user.id, post_id, body, author_name=user.name)


@router.post("/posts/{post_id}/helpful")
async def mark_helpful(
    post_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    count = await services.content.mark_helpful(user.id, post_id)
    return {"helpful": True, "helpful_count": count}


@router.delete("/posts/{post_id}/helpful")
async def unmark_helpful(
    post_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    count = await services.content.unmark_helpful(user.id, post_id)
    return {"helpful": False, "helpful_count": count}


# ---------- unified notes ----------

@router.post("/chapters/{chapter_id}/generate-notes", response_model=GenerationResult)
async def generate_notes(
    chapter_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    _, membership = await services.content.chapter_membership(user.id, chapter_id)
    require(membership, Action.generate_ai_notes)
    result = await services.governor.generate_notes(chapter_id, user.id, membership.role)
    if isinstance(result, Eligibility):
        # 400 below the threshold, 429 while cooling down
        status_code = 429 if result.remaining_minutes is not None else 400
        raise IneligibleError(
            result.reason,
            status_code=status_code,
            **result.model_dump(exclude={"allowed", "reason"}, exclude_none=True),
        )
    return result


@router.get("/chapters/{chapter_id}/notes", response_model=UnifiedNotes)
async def latest_notes(
    chapter_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.content.chapter_membership(user.id, chapter_id)
    notes = await services.governor.latest_notes(chapter_id)
    if notes is None:
        raise NotFoundError("No notes have been generated for this chapter yet")
    return notes


@router.get("/chapters/{chapter_id}/notes/versions", response_model=List[UnifiedNotes])
async def notes_versions(
    chapter_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.content.chapter_membership(user.id, chapter_id)
    return await services.governor.list_versions(chapter_id)
