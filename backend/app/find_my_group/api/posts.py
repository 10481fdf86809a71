"""Need post routes."""

from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.find_my_group.api._errors import to_http_error
from app.find_my_group.domain.posts_service import PostsService
from app.find_my_group.schemas import dto
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["find-my-group:posts"])
_service = PostsService()


@router.post("/posts", response_model=dto.NeedPostResponse, status_code=201)
async def create_post_endpoint(
	payload: dto.NeedPostCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.NeedPostResponse:
	try:
		return await _service.create_post(auth_user, payload)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.get("/posts", response_model=dto.NeedPostListResponse)
async def list_posts_endpoint(
	type: Optional[Literal["study", "transport"]] = Query(default=None),
	gender: Optional[Literal["any", "female-only", "male-only"]] = Query(default=None),
	search: Optional[str] = Query(default=None, max_length=100),
	limit: int = Query(default=20, ge=1, le=50),
	offset: int = Query(default=0, ge=0),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.NeedPostListResponse:
	try:
		return await _service.list_posts(
			auth_user,
			kind=type,
			gender_preference=gender,
			search=search,
			limit=limit,
			offset=offset,
		)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.get("/posts/mine", response_model=list[dto.NeedPostResponse])
async def list_my_posts_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> list[dto.NeedPostResponse]:
	try:
		return await _service.list_my_posts(auth_user)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.get("/posts/{post_id}", response_model=dto.NeedPostDetailResponse, response_model_exclude_none=True)
async def get_post_endpoint(
	post_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.NeedPostDetailResponse:
	try:
		return await _service.get_post(auth_user, post_id)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


@router.patch("/posts/{post_id}", response_model=dto.NeedPostResponse)
async def close_post_endpoint(
	post_id: UUID,
	payload: dto.NeedPostUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dto.NeedPostResponse:
	try:
		return await _service.close_post(auth_user, post_id)
	except Exception as exc:  # pragma: no cover
		raise to_http_error(exc) from exc


__all__ = ["router"]
