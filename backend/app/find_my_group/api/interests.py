"""Interest expression routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.find_my_group.api._errors import to_http_error
from app.find_my_group.domain.formation_service import FormationService
from app.find_my_group.domain.interests_service import InterestsService
from app.find_my_group.schemas import dto
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["find-my-group:interests"])
_service = InterestsService()
_formation = FormationService()


@router.post("/posts/{post_id}/interests", response_model=dto.InterestResponse, status_code=201)
async def express_interest_endpoint(
	post_id: UUID,
	payload: dto.InterestCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.InterestResponse:
	try:
		return await _service.express_interest(auth_user, post_id, payload)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.get("/posts/{post_id}/interests", response_model=dto.InterestListResponse)
async def list_interests_endpoint(
	post_id: UUID,
	status: str | None = Query(default=None, pattern="^(pending|approved|rejected)$"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.InterestListResponse:
	try:
		return await _service.list_by_post(auth_user, post_id, status=status)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.post("/posts/{post_id}/interests/reject", response_model=list[dto.InterestResponse])
async def reject_interests_endpoint(
	post_id: UUID,
	payload: dto.RejectInterestsRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> list[dto.InterestResponse]:
	try:
		return await _formation.reject_interests(auth_user, post_id, payload)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


__all__ = ["router"]
