"""Need post lifecycle: creation, listings, detail views, and closing."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from app.find_my_group.domain import models, policies, repo as repo_module
from app.find_my_group.domain.exceptions import (
	ForbiddenError,
	InvalidStateError,
	NotFoundError,
)
from app.find_my_group.schemas import dto
from app.infra import rate_limit
from app.infra.auth import AuthenticatedUser
from app.infra.postgres import get_pool
from app.obs import metrics as obs_metrics
from app.settings import settings

LOGGER = logging.getLogger(__name__)


def can_receive_interest(post: models.NeedPost) -> bool:
	return post.status == "open"


def post_response(post: models.NeedPost) -> dto.NeedPostResponse:
	return dto.NeedPostResponse(
		id=post.id,
		title=post.title,
		description=post.description,
		type=post.type,
		details=post.details,
		gender_preference=post.gender_preference,
		max_members=post.max_members,
		status=post.status,
		created_by=post.created_by,
		created_by_name=post.created_by_name,
		expires_at=post.expires_at,
		created_at=post.created_at,
		updated_at=post.updated_at,
	)


class PostsService:
	"""Owns need post status transitions and creator-only post actions."""

	def __init__(self, repository: repo_module.FindMyGroupRepository | None = None) -> None:
		self.repo = repository or repo_module.FindMyGroupRepository()

	async def _require_post(self, post_id: UUID) -> models.NeedPost:
		post = await self.repo.get_post(post_id)
		if post is None:
			raise NotFoundError("post_not_found")
		return post

	async def create_post(
		self,
		user: AuthenticatedUser,
		payload: dto.NeedPostCreateRequest,
	) -> dto.NeedPostResponse:
		if policies.is_admin(user):
			raise ForbiddenError("admin_not_allowed")
		user_id = policies.actor_id(user)
		await rate_limit.enforce("need_post_create", user.id, limit=settings.post_create_rate_limit)
		expires_at = datetime.now(timezone.utc) + timedelta(days=settings.post_expiration_days)
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				post = await self.repo.create_post(
					title=payload.title,
					description=payload.description,
					details=payload.details,
					gender_preference=payload.gender_preference,
					max_members=payload.max_members,
					created_by=user_id,
					created_by_name=user.display_name,
					created_by_email=user.email,
					expires_at=expires_at,
					conn=conn,
				)
				await self.repo.record_audit_event(
					post_id=post.id,
					user_id=user_id,
					action="post.create",
					details={"type": post.type, "max_members": post.max_members},
					conn=conn,
				)
		obs_metrics.inc_need_post_created(post.type)
		LOGGER.info("need_post_created", extra={"post_id": str(post.id), "kind": post.type})
		return post_response(post)

	async def close_post(self, user: AuthenticatedUser, post_id: UUID) -> dto.NeedPostResponse:
		"""Close an open post; only its creator may do so."""
		post = await self._require_post(post_id)
		policies.assert_creator(user, post)
		if not can_receive_interest(post):
			raise InvalidStateError("post_not_open", status=post.status)
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				closed = await self.repo.transition_post_status(post_id, to_status="closed", conn=conn)
				if closed is None:
					# Lost a race with another close or with the group filling up
					current = await self.repo.get_post(post_id, conn=conn)
					raise InvalidStateError("post_not_open", status=current.status if current else None)
				await self.repo.record_audit_event(
					post_id=post_id,
					user_id=policies.actor_id(user),
					action="post.close",
					conn=conn,
				)
		obs_metrics.inc_need_post_closed("closed")
		LOGGER.info("need_post_closed", extra={"post_id": str(post_id)})
		return post_response(closed)

	async def get_post(self, user: AuthenticatedUser, post_id: UUID) -> dto.NeedPostDetailResponse:
		post = await self._require_post(post_id)
		counts = await self.repo.count_interests(post_id)
		own_interest = await self.repo.get_interest(post_id, policies.actor_id(user))
		group = await self.repo.get_group_for_post(post_id)
		viewer = dto.PostViewerCapabilities(
			is_creator=policies.is_creator(user, post),
			is_admin=policies.is_admin(user),
			can_express_interest=policies.can_express_interest(
				user, post, admins_allowed=settings.admins_may_express_interest
			)
			and own_interest is None,
			can_manage_group=policies.can_manage_group(user, post),
			can_view_interests=policies.can_view_interest_details(user, post),
		)
		interested_users = None
		if viewer.can_view_interests:
			interested_users = [
				dto.InterestResponse.model_validate(item, from_attributes=True)
				for item in await self.repo.list_interests(post_id)
			]
		return dto.NeedPostDetailResponse(
			**post_response(post).model_dump(),
			interest_count=sum(counts.values()),
			interest_counts=dto.InterestCounts(**counts),
			interested_users=interested_users,
			my_interest=dto.InterestResponse.model_validate(own_interest, from_attributes=True)
			if own_interest
			else None,
			group_id=group.id if group else None,
			viewer=viewer,
		)

	async def list_posts(
		self,
		user: AuthenticatedUser,
		*,
		kind: str | None = None,
		gender_preference: str | None = None,
		search: str | None = None,
		limit: int = 20,
		offset: int = 0,
	) -> dto.NeedPostListResponse:
		term = search.strip() if search else None
		posts, total = await self.repo.list_open_posts(
			now=datetime.now(timezone.utc),
			kind=kind,
			gender_preference=gender_preference,
			search=term or None,
			limit=limit,
			offset=offset,
		)
		return dto.NeedPostListResponse(
			items=[post_response(post) for post in posts],
			total=total,
			limit=limit,
			offset=offset,
		)

	async def list_my_posts(self, user: AuthenticatedUser) -> list[dto.NeedPostResponse]:
		posts = await self.repo.list_posts_by_creator(policies.actor_id(user))
		return [post_response(post) for post in posts]

	async def admin_list_posts(
		self,
		user: AuthenticatedUser,
		*,
		status: str | None = None,
		kind: str | None = None,
		limit: int = 50,
		offset: int = 0,
	) -> dto.NeedPostListResponse:
		if not policies.is_admin(user):
			raise ForbiddenError("admin_required")
		posts, total = await self.repo.list_all_posts(status=status, kind=kind, limit=limit, offset=offset)
		return dto.NeedPostListResponse(
			items=[post_response(post) for post in posts],
			total=total,
			limit=limit,
			offset=offset,
		)

	async def admin_list_audit(
		self,
		user: AuthenticatedUser,
		post_id: UUID,
		*,
		limit: int = 50,
	) -> list[dto.AuditEventResponse]:
		if not policies.is_admin(user):
			raise ForbiddenError("admin_required")
		await self._require_post(post_id)
		events = await self.repo.list_audit_events(post_id, limit=limit)
		return [dto.AuditEventResponse.model_validate(event, from_attributes=True) for event in events]
