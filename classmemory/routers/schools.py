from typing import List

from fastapi import APIRouter, Depends

from ..schemas import (
    AISettingsUpdate,
    CreatedSchool,
    CurrentUser,
    JoinedSchool,
    JoinRequest,
    Membership,
    PermissionCheck,
    RoleUpdate,
    SchoolCreate,
    SchoolSettings,
    SchoolWithRole,
    Subject,
    SubjectCreate,
)
from ..utils import Services, get_current_user, get_services

router = APIRouter(prefix="/api/schools", tags=["schools"])


@router.post("", response_model=CreatedSchool)
async def create_school(
    body: SchoolCreate,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.create_school(body.name, body.description, user.id)


@router.get("", response_model=List[SchoolWithRole])
async def my_schools(
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.list_schools_for_user(user.id)


@router.post("/join", response_model=JoinedSchool)
async def join_school(
    body: JoinRequest,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.join_school(user.id, body.join_key)


@router.post("/demo/join", response_model=JoinedSchool)
async def join_demo_school(
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.join_sandbox(user.id)


@router.get("/{school_id}/permissions/{action}", response_model=PermissionCheck)
async def check_permission(
    school_id: str,
    action: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.check_permission(user.id, school_id, action)


@router.post("/{school_id}/join-key", response_model=CreatedSchool)
async def regenerate_join_key(
    school_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.regenerate_join_key(user.id, school_id)


@router.get("/{school_id}/members", response_model=List[Membership])
async def list_members(
    school_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.list_members(user.id, school_id)


@router.post("/{school_id}/members/{member_id}/role", response_model=Membership)
async def update_member_role(
    school_id: str,
    member_id: str,
    body: RoleUpdate,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.update_member_role(user.id, school_id, member_id, body.new_role)


@router.delete("/{school_id}/members/{member_id}")
async def remove_member(
    school_id: str,
    member_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.schools.remove_member(user.id, school_id, member_id)
    return {"ok": True}


@router.get("/{school_id}/ai-settings", response_model=SchoolSettings)
async def get_ai_settings(
    school_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.get_ai_settings(user.id, school_id)


@router.patch("/{school_id}/ai-settings", response_model=SchoolSettings)
async def update_ai_settings(
    school_id: str,
    body: AISettingsUpdate,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.update_ai_settings(user.id, school_id, body)


@router.post("/{school_id}/subjects", response_model=Subject)
async def create_subject(
    school_id: str,
    body: SubjectCreate,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.create_subject(user.id, school_id, body)


@router.get("/{school_id}", response_model=SchoolWithRole)
async def get_school(
    school_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.schools.get_school(user.id, school_id)


@router.get("/{school_id}/subjects", response_model=List[Subject])
async def list_subjects(
    school_id: str,
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.content.list_subjects(user.id, school_id)
