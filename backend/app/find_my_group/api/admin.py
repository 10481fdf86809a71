"""Admin moderation routes for need posts and groups."""

from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.find_my_group.api._errors import to_http_error
from app.find_my_group.domain.moderation_service import ModerationService
from app.find_my_group.domain.posts_service import PostsService
from app.find_my_group.schemas import dto
from app.infra.auth import AuthenticatedUser, get_admin_user

router = APIRouter(prefix="/admin", tags=["find-my-group:admin"])
_service = PostsService()
_moderation = ModerationService()


@router.get("/posts", response_model=dto.NeedPostListResponse)
async def admin_list_posts_endpoint(
	status: Optional[Literal["open", "fulfilled", "closed"]] = Query(default=None),
	type: Optional[Literal["study", "transport"]] = Query(default=None),
	limit: int = Query(default=50, ge=1, le=200),
	offset: int = Query(default=0, ge=0),
	admin: AuthenticatedUser = Depends(get_admin_user),
) -> dto.NeedPostListResponse:
	try:
		return await _service.admin_list_posts(admin, status=status, kind=type, limit=limit, offset=offset)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.get("/posts/{post_id}/audit", response_model=list[dto.AuditEventResponse])
async def admin_post_audit_endpoint(
	post_id: UUID,
	limit: int = Query(default=50, ge=1, le=200),
	admin: AuthenticatedUser = Depends(get_admin_user),
) -> list[dto.AuditEventResponse]:
	try:
		return await _service.admin_list_audit(admin, post_id, limit=limit)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.get("/groups", response_model=dto.GroupListResponse)
async def admin_list_groups_endpoint(
	status: Optional[Literal["active", "archived"]] = Query(default=None),
	type: Optional[Literal["study", "transport"]] = Query(default=None),
	visibility: Optional[Literal["public", "private"]] = Query(default=None),
	limit: int = Query(default=50, ge=1, le=200),
	offset: int = Query(default=0, ge=0),
	admin: AuthenticatedUser = Depends(get_admin_user),
) -> dto.GroupListResponse:
	try:
		return await _moderation.admin_list_groups(
			admin,
			status=status,
			kind=type,
			visibility=visibility,
			limit=limit,
			offset=offset,
		)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.patch("/groups/{group_id}", response_model=dto.GroupResponse)
async def admin_update_group_status_endpoint(
	group_id: UUID,
	payload: dto.GroupStatusUpdateRequest,
	admin: AuthenticatedUser = Depends(get_admin_user),
) -> dto.GroupResponse:
	try:
		return await _moderation.admin_set_group_status(admin, group_id, payload)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.get("/analytics", response_model=dto.AnalyticsResponse)
async def admin_analytics_endpoint(
	admin: AuthenticatedUser = Depends(get_admin_user),
) -> dto.AnalyticsResponse:
	try:
		return await _moderation.analytics(admin)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


__all__ = ["router"]
