from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..errors import ForbiddenError, ValidationFailedError
from ..schemas import CurrentUser, SearchResults
from ..services import search as search_service
from ..utils import Services, get_current_user, get_services

router = APIRouter(prefix="/api", tags=["search"])


@router.get("/search", response_model=SearchResults)
async def search(
    q: str = Query(""),
    school_id: Optional[str] = Query(None, alias="schoolId"),
    filters: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    if not school_id:
        raise ValidationFailedError("School ID is required", field="schoolId")
    if await services.memberships.get(user.id, school_id) is None:
        raise ForbiddenError()
    names = [f for f in (filters or "").split(",") if f.strip()]
    return await search_service.search(services.forum, q, school_id, names)
