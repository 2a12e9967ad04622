from fastapi import APIRouter, Depends

from ..schemas import CurrentUser, ProvisionSummary
from ..services.permissions import SANDBOX_SCHOOL_ID
from ..utils import Services, get_current_user, get_services

router = APIRouter(prefix="/api/admin/sandbox", tags=["sandbox"])


@router.get("")
async def sandbox_status(
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return {"school_id": SANDBOX_SCHOOL_ID, "provisioned": await services.sandbox.is_provisioned()}


@router.post("", response_model=ProvisionSummary)
async def provision_sandbox(
    user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.sandbox.ensure_provisioned()
