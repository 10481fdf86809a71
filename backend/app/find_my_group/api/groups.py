"""Group formation and membership routes."""

from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from app.find_my_group.api._errors import to_http_error
from app.find_my_group.domain.formation_service import FormationService
from app.find_my_group.schemas import dto
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["find-my-group:groups"])
_service = FormationService()


@router.post("/posts/{post_id}/groups", response_model=dto.GroupResponse, status_code=201)
async def create_group_endpoint(
	post_id: UUID,
	payload: dto.GroupCreateRequest,
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.GroupResponse:
	try:
		group, created = await _service.create_group_from_post(auth_user, post_id, payload)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc
	if not created:
		response.status_code = status.HTTP_200_OK
	return group


@router.get("/posts/{post_id}/groups", response_model=list[dto.GroupResponse])
async def list_post_groups_endpoint(
	post_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> list[dto.GroupResponse]:
	try:
		return await _service.list_groups_for_post(auth_user, post_id)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.get("/groups", response_model=dto.GroupListResponse)
async def browse_groups_endpoint(
	type: Optional[Literal["study", "transport"]] = Query(default=None),
	visibility: Optional[Literal["public", "private"]] = Query(default=None),
	search: Optional[str] = Query(default=None, max_length=100),
	limit: int = Query(default=20, ge=1, le=50),
	offset: int = Query(default=0, ge=0),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.GroupListResponse:
	try:
		return await _service.browse_groups(
			auth_user,
			kind=type,
			visibility=visibility,
			search=search,
			limit=limit,
			offset=offset,
		)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.get("/groups/mine", response_model=list[dto.GroupResponse])
async def list_my_groups_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> list[dto.GroupResponse]:
	try:
		return await _service.list_my_groups(auth_user)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.get("/groups/{group_id}", response_model=dto.GroupResponse)
async def get_group_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.GroupResponse:
	try:
		return await _service.get_group(auth_user, group_id)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/members", response_model=dto.AdmitMembersResponse)
async def admit_members_endpoint(
	group_id: UUID,
	payload: dto.AdmitMembersRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.AdmitMembersResponse:
	try:
		return await _service.admit_members(auth_user, group_id, payload)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.delete("/groups/{group_id}/members/me", response_model=dto.LeaveGroupResponse)
async def leave_group_endpoint(
	group_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.LeaveGroupResponse:
	try:
		return await _service.leave_group(auth_user, group_id)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


__all__ = ["router"]
