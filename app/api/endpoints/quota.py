from fastapi import Depends
from app.api.router import create_router
from app.api.dependencies.auth import CurrentUser, get_current_user
from app.api.dependencies.services import get_quota_service
from app.services.quota_services import QuotaService
from app.schemas.quota import QuotaRead

router = create_router(name="quota")


@router.get("", response_model=QuotaRead)
def get_quota(
	current_user: CurrentUser = Depends(get_current_user),
	quota_service: QuotaService = Depends(get_quota_service),
):
	"""
	Monthly AI usage for the current user. `remaining` is null when limits are bypassed.
	"""
	return quota_service.get_quota(current_user.id)
